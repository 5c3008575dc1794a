"""
Decimal precision and unit-of-measure helpers for stock arithmetic.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sr_integration.core.errors import UnitConversionError


Q4 = Decimal("0.0001")
ZERO = Decimal("0")

# unit -> (dimension, factor to the dimension's base unit)
_UNIT_FACTORS: dict[str, tuple[str, Decimal]] = {
    # mass (base: kg)
    "kg": ("mass", Decimal("1")),
    "g": ("mass", Decimal("0.001")),
    "mg": ("mass", Decimal("0.000001")),
    "lb": ("mass", Decimal("0.45359237")),
    "oz": ("mass", Decimal("0.028349523125")),
    # volume (base: l)
    "l": ("volume", Decimal("1")),
    "ml": ("volume", Decimal("0.001")),
    "cl": ("volume", Decimal("0.01")),
    "gal": ("volume", Decimal("3.785411784")),
    # count (base: unit)
    "unit": ("count", Decimal("1")),
    "pz": ("count", Decimal("1")),
    "dozen": ("count", Decimal("12")),
}

_ALIASES = {
    "kgs": "kg", "kilo": "kg", "kilogram": "kg", "kilograms": "kg",
    "gr": "g", "grs": "g", "gram": "g", "grams": "g",
    "lt": "l", "lts": "l", "liter": "l", "liters": "l", "litre": "l", "litro": "l", "litros": "l",
    "mls": "ml",
    "u": "unit", "un": "unit", "units": "unit", "ea": "unit", "each": "unit",
    "pieza": "pz", "piezas": "pz", "pza": "pz", "pcs": "pz",
}


def q4(v: Decimal) -> Decimal:
    # Matches the scale of the Numeric(…, 4) quantity and money columns.
    return v.quantize(Q4, rounding=ROUND_HALF_UP)


def to_decimal(v) -> Decimal:
    """Convert DB aggregates (float on SQLite, Decimal on PostgreSQL) to a 4dp Decimal."""
    if v is None:
        return q4(ZERO)
    if isinstance(v, Decimal):
        return q4(v)
    return q4(Decimal(str(v)))


def normalize_unit(unit: Optional[str]) -> str:
    u = (unit or "").strip().lower().rstrip(".")
    return _ALIASES.get(u, u)


def convert_quantity(quantity: Decimal, from_unit: str, to_unit: str) -> Decimal:
    """
    Convert a quantity between two units of the same dimension.

    Identical (normalized) units are returned unchanged even when the unit is
    not in the table, so custom units like "bolsa" work as long as the
    recipe and the ingredient agree.

    Raises:
        UnitConversionError: units are unknown or belong to different dimensions
    """
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)
    if src == dst:
        return quantity

    if src not in _UNIT_FACTORS or dst not in _UNIT_FACTORS:
        raise UnitConversionError(f"Cannot convert '{from_unit}' to '{to_unit}'")

    src_dim, src_factor = _UNIT_FACTORS[src]
    dst_dim, dst_factor = _UNIT_FACTORS[dst]
    if src_dim != dst_dim:
        raise UnitConversionError(
            f"Cannot convert '{from_unit}' ({src_dim}) to '{to_unit}' ({dst_dim})"
        )
    return quantity * src_factor / dst_factor
