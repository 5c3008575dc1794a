"""
Inventory Ledger Service.

Stock is never stored as an independent counter. Every change is an
append-only InventoryMovement row, and current stock is SUM(quantity) over an
ingredient's movements in a branch. The IngredientStock row is a projection of
that sum, refreshed in the same transaction as each movement, and doubles as
the row lock that serializes concurrent movements on the same ingredient.
"""
import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sr_integration.core.units import q4, to_decimal, ZERO
from sr_integration.models.inventory import InventoryMovement, IngredientStock

logger = logging.getLogger(__name__)


REFERENCE_TYPES = ("sale", "cancellation", "manual")


class InventoryLedgerService:
    """Append-only stock movements with a consistent derived projection."""

    def __init__(self, db: Session):
        self.db = db

    def apply(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        ingredient_id: UUID,
        quantity: Decimal,
        unit: str,
        reference_type: str,
        reference_id: Optional[UUID] = None,
        unit_cost: Decimal = ZERO,
        notes: Optional[str] = None,
    ) -> Decimal:
        """
        Record one signed stock movement and return the resulting stock.

        Negative quantities deduct, positive ones restock. The resulting stock
        may be negative (oversell is logged, not blocked).

        Raises:
            ValueError: unknown reference type or zero quantity
        """
        movement = self.record(
            tenant_id, branch_id, ingredient_id, quantity, unit,
            reference_type, reference_id, unit_cost, notes,
        )
        return movement.new_stock

    def record(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        ingredient_id: UUID,
        quantity: Decimal,
        unit: str,
        reference_type: str,
        reference_id: Optional[UUID] = None,
        unit_cost: Decimal = ZERO,
        notes: Optional[str] = None,
    ) -> InventoryMovement:
        """Same as ``apply`` but returns the inserted movement."""
        if reference_type not in REFERENCE_TYPES:
            raise ValueError(f"Unknown reference type '{reference_type}'")
        quantity = q4(Decimal(quantity))
        if quantity == 0:
            raise ValueError("Movement quantity must be non-zero")
        unit_cost = q4(Decimal(unit_cost))

        stock = self._lock_stock(tenant_id, branch_id, ingredient_id)
        previous_stock = self.current_stock(tenant_id, branch_id, ingredient_id)

        movement = InventoryMovement(
            tenant_id=tenant_id,
            branch_id=branch_id,
            ingredient_id=ingredient_id,
            quantity=quantity,
            unit=unit,
            reference_type=reference_type,
            reference_id=reference_id,
            unit_cost=unit_cost,
            total_cost=q4(abs(quantity) * unit_cost),
            previous_stock=previous_stock,
            new_stock=previous_stock + quantity,
            notes=notes,
        )
        self.db.add(movement)
        self.db.flush()

        new_stock = self.current_stock(tenant_id, branch_id, ingredient_id)
        stock.current_stock = new_stock
        self.db.flush()

        if new_stock < 0:
            logger.warning(
                f"Oversell: ingredient {ingredient_id} in branch {branch_id} is at "
                f"{new_stock} {unit} after {reference_type} movement {quantity}"
            )
        return movement

    def reverse(
        self,
        tenant_id: UUID,
        reference_type: str,
        reference_id: UUID,
    ) -> list[InventoryMovement]:
        """
        Compensate every movement of a reference with a negated "cancellation" movement.

        Originals are left untouched. A reference that already has
        cancellation movements is not reversed a second time.
        """
        already_reversed = self.db.execute(
            select(func.count(InventoryMovement.id)).where(
                InventoryMovement.tenant_id == tenant_id,
                InventoryMovement.reference_type == "cancellation",
                InventoryMovement.reference_id == reference_id,
            )
        ).scalar_one()
        if already_reversed:
            logger.info(f"Movements for {reference_type} {reference_id} were already reversed")
            return []

        originals = self.db.execute(
            select(InventoryMovement)
            .where(
                InventoryMovement.tenant_id == tenant_id,
                InventoryMovement.reference_type == reference_type,
                InventoryMovement.reference_id == reference_id,
            )
            .order_by(InventoryMovement.created_at, InventoryMovement.id)
        ).scalars().all()

        reversals = []
        for original in originals:
            reversal = self.record(
                tenant_id=original.tenant_id,
                branch_id=original.branch_id,
                ingredient_id=original.ingredient_id,
                quantity=-original.quantity,
                unit=original.unit,
                reference_type="cancellation",
                reference_id=reference_id,
                unit_cost=original.unit_cost,
                notes=f"Reversal of movement {original.id}",
            )
            reversals.append(reversal)

        return reversals

    def current_stock(self, tenant_id: UUID, branch_id: UUID, ingredient_id: UUID) -> Decimal:
        """Ledger sum for one ingredient in one branch (0 with no movements)."""
        total = self.db.execute(
            select(func.sum(InventoryMovement.quantity)).where(
                InventoryMovement.tenant_id == tenant_id,
                InventoryMovement.branch_id == branch_id,
                InventoryMovement.ingredient_id == ingredient_id,
            )
        ).scalar()
        return to_decimal(total)

    def rebuild_projection(self, tenant_id: UUID, branch_id: UUID, ingredient_id: UUID) -> Decimal:
        """Re-derive the projected stock from the ledger (repair tool)."""
        stock = self._lock_stock(tenant_id, branch_id, ingredient_id)
        total = self.current_stock(tenant_id, branch_id, ingredient_id)
        if to_decimal(stock.current_stock) != total:
            logger.warning(
                f"Stock projection for ingredient {ingredient_id} in branch {branch_id} "
                f"was {stock.current_stock}, ledger says {total}"
            )
        stock.current_stock = total
        self.db.flush()
        return total

    def _lock_stock(self, tenant_id: UUID, branch_id: UUID, ingredient_id: UUID) -> IngredientStock:
        """Fetch the projection row FOR UPDATE, creating it on first movement."""
        stmt = (
            select(IngredientStock)
            .where(
                IngredientStock.tenant_id == tenant_id,
                IngredientStock.branch_id == branch_id,
                IngredientStock.ingredient_id == ingredient_id,
            )
            .with_for_update()
        )
        stock = self.db.execute(stmt).scalar_one_or_none()
        if stock is not None:
            return stock

        try:
            with self.db.begin_nested():
                stock = IngredientStock(
                    tenant_id=tenant_id,
                    branch_id=branch_id,
                    ingredient_id=ingredient_id,
                    current_stock=ZERO,
                )
                self.db.add(stock)
        except IntegrityError:
            # Created by a concurrent movement; lock theirs instead
            stock = self.db.execute(stmt).scalar_one()
        return stock
