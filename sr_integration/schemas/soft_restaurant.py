"""
Pydantic schemas for the Soft Restaurant wire format.

SR posts Spanish field names (``IdEmpresa``, ``Ventas``, ``Conceptos`` ...).
The models accept those as aliases and expose English attribute names.
Each sale is validated on its own so one bad sale never rejects its siblings;
the raw sale dict is kept separately for audit.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, ValidationError

from sr_integration.core.errors import PayloadError

# Largest values the Numeric(12, 4) money and Numeric(14, 4) quantity columns hold
MAX_AMOUNT = Decimal("99999999.9999")
MAX_QUANTITY = Decimal("10000")
MAX_TAX_RATE = Decimal("100")


def _coerce_code(v: Any) -> Any:
    # SR versions differ in sending codes as numbers or strings
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float, Decimal)):
        return str(v)
    if isinstance(v, str):
        return v.strip()
    return v


class SRTax(BaseModel):
    """One entry of ``Conceptos[].Impuestos[]``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(alias="Impuesto", min_length=1, max_length=50)
    rate: Decimal = Field(default=Decimal("0"), alias="Tasa", ge=0, le=MAX_TAX_RATE)
    amount: Decimal = Field(alias="Importe", ge=-MAX_AMOUNT, le=MAX_AMOUNT)


class SRSaleLine(BaseModel):
    """One product line (``Conceptos[]``)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(alias="IdProducto", min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, alias="Descripcion", max_length=200)
    movement_type: Optional[int] = Field(default=None, alias="Movimiento")
    quantity: Decimal = Field(alias="Cantidad", gt=0, le=MAX_QUANTITY)
    unit_price: Decimal = Field(default=Decimal("0"), alias="PrecioUnitario", ge=0, le=MAX_AMOUNT)
    subtotal_without_tax: Decimal = Field(default=Decimal("0"), alias="ImporteSinImpuestos", ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    discount: Decimal = Field(default=Decimal("0"), alias="Descuento", ge=0, le=MAX_AMOUNT)
    taxes: List[SRTax] = Field(default_factory=list, alias="Impuestos")

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, v):
        return _coerce_code(v)

    @field_validator("taxes", mode="before")
    @classmethod
    def taxes_default(cls, v):
        return [] if v is None else v

    @property
    def tax_total(self) -> Decimal:
        return sum((t.amount for t in self.taxes), Decimal("0"))

    @property
    def line_total(self) -> Decimal:
        return self.subtotal_without_tax - self.discount + self.tax_total


class SRPayment(BaseModel):
    """One tender line (``Pagos[]``)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    method_name: str = Field(alias="FormaPago", min_length=1, max_length=100)
    amount: Decimal = Field(alias="Importe", ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    tip: Decimal = Field(default=Decimal("0"), alias="Propina", ge=0, le=MAX_AMOUNT)


class SRSale(BaseModel):
    """One sale (``Ventas[]``) in strict internal types."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_id: str = Field(alias="NumeroOrden", min_length=1, max_length=50)
    warehouse_code: str = Field(alias="Almacen", min_length=1, max_length=20)
    station_code: Optional[str] = Field(default=None, alias="Estacion", max_length=100)
    area_name: Optional[str] = Field(default=None, alias="Area", max_length=100)
    table_code: Optional[str] = Field(default=None, alias="Mesa", max_length=50)
    user_code: Optional[str] = Field(default=None, alias="IdUsuario", max_length=50)
    customer_code: Optional[str] = Field(default=None, alias="IdCliente", max_length=50)
    sale_date: datetime = Field(alias="FechaVenta")
    total: Decimal = Field(alias="Total", ge=0, le=MAX_AMOUNT)
    lines: List[SRSaleLine] = Field(alias="Conceptos", min_length=1)
    payments: List[SRPayment] = Field(alias="Pagos", min_length=1)

    @field_validator(
        "external_id", "warehouse_code", "station_code", "area_name",
        "table_code", "user_code", "customer_code",
        mode="before",
    )
    @classmethod
    def coerce_codes(cls, v):
        return _coerce_code(v)

    @property
    def tip_total(self) -> Decimal:
        return sum((p.tip for p in self.payments), Decimal("0"))


class SRCancellationRequest(BaseModel):
    """Cancellation notice for a previously sent sale."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    company_id: str = Field(alias="IdEmpresa", min_length=1, max_length=50)
    external_id: str = Field(alias="NumeroOrden", min_length=1, max_length=50)
    cancellation_type: str = Field(alias="TipoCancelacion", min_length=1, max_length=50)
    reason: Optional[str] = Field(default=None, alias="Motivo")
    warehouse_code: Optional[str] = Field(default=None, alias="Almacen", max_length=20)

    @field_validator("company_id", "external_id", "cancellation_type", "warehouse_code", mode="before")
    @classmethod
    def coerce_codes(cls, v):
        return _coerce_code(v)


class SaleOutcome(BaseModel):
    """Per-sale result returned to the webhook caller."""
    status: Literal["processed", "duplicate", "failed"]
    external_id: Optional[str] = None
    internal_id: Optional[UUID] = None
    error: Optional[dict] = None


class CancellationOutcome(BaseModel):
    status: Literal["cancelled", "already_cancelled"]
    external_id: str
    internal_id: UUID
    movements_reversed: int = 0


def format_validation_errors(exc: ValidationError) -> list[dict]:
    """Flatten a Pydantic error into [{"field": "Conceptos.0.Cantidad", "message": ...}]."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "sale",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def split_batch(payload: Any) -> Tuple[str, list]:
    """
    Validate the batch envelope and return (company_id, raw sale dicts).

    Raises:
        PayloadError: payload is not an object, has no company id, or has no sales
    """
    if not isinstance(payload, dict):
        raise PayloadError("Invalid payload: must be a JSON object")

    company_id = _coerce_code(payload.get("IdEmpresa"))
    if not company_id or not isinstance(company_id, str):
        raise PayloadError("IdEmpresa (company id) is required")

    sales = payload.get("Ventas")
    if not isinstance(sales, list) or len(sales) == 0:
        raise PayloadError("Ventas (sales) must be a non-empty array")

    return company_id, sales
