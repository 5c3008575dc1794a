"""
Inventory ledger, stock projection and low-stock alerts.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Numeric, DateTime, ForeignKey, Uuid, func, UniqueConstraint, Index, text,
)
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base


class InventoryMovement(Base):
    """
    Append-only audit trail for stock changes.

    Rows are never updated or deleted. Current stock for an ingredient in a
    branch is ``SUM(quantity)`` over its movements.
    """
    __tablename__ = "inventory_movements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid, nullable=False)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False)  # Positive for in, negative for out
    unit = Column(String(50), nullable=False)
    reference_type = Column(String(20), nullable=False)  # sale, cancellation, manual
    reference_id = Column(Uuid)  # Sale ID for sale/cancellation movements
    unit_cost = Column(Numeric(12, 4), nullable=False, default=0)  # Snapshot at movement time
    total_cost = Column(Numeric(12, 4), nullable=False, default=0)
    previous_stock = Column(Numeric(14, 4), nullable=False)
    new_stock = Column(Numeric(14, 4), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    ingredient = relationship("Ingredient")

    __table_args__ = (
        Index("idx_inventory_movements_stock", "tenant_id", "branch_id", "ingredient_id"),
        Index("idx_inventory_movements_reference", "reference_type", "reference_id"),
    )


class IngredientStock(Base):
    """
    Denormalized current stock per branch.

    Only ever written by the ledger, in the same transaction as the movement,
    from the recomputed ledger sum. The row also serves as the lock that
    serializes concurrent movements on the same ingredient.
    """
    __tablename__ = "ingredient_stock"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid, nullable=False)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id", ondelete="CASCADE"), nullable=False)
    current_stock = Column(Numeric(14, 4), nullable=False, default=0)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "branch_id", "ingredient_id", name="uq_ingredient_stock"),
    )


class LowStockAlert(Base):
    """
    Low-stock alert for one ingredient in one branch.

    At most one ``active`` alert exists per (branch, ingredient); new
    evaluations update it in place.
    """
    __tablename__ = "low_stock_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid, nullable=False)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String(20), nullable=False)  # low_stock, out_of_stock, approaching
    severity = Column(String(20), nullable=False)  # critical, warning
    current_stock = Column(Numeric(14, 4), nullable=False)
    minimum_stock = Column(Numeric(14, 4), nullable=False, default=0)
    reorder_point = Column(Numeric(14, 4), nullable=False, default=0)
    suggested_order_quantity = Column(Numeric(14, 4), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")  # active, acknowledged, resolved
    acknowledged_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    ingredient = relationship("Ingredient")

    __table_args__ = (
        Index(
            "uq_low_stock_alerts_active",
            "branch_id",
            "ingredient_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_low_stock_alerts_tenant_status", "tenant_id", "status"),
    )
