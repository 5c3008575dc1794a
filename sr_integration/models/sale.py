"""
Soft Restaurant sale event store: sales, line items, payments and the
movement-type catalog.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Numeric, DateTime, Date, ForeignKey, Uuid, func,
    UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base, JSONType


SALE_STATUSES = ("pending", "completed", "cancelled", "error")


class MovementType(Base):
    """
    Catalog of SR ``Conceptos[].Movimiento`` codes.

    SR only documents code 1 (normal sale). Other codes must be added here
    after confirming their meaning with SR support; until then they are
    recorded and logged but never drive a stock change.
    """
    __tablename__ = "sr_movement_types"

    code = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(50), nullable=False)
    description = Column(Text)
    affects_inventory = Column(Boolean, nullable=False, default=True)
    is_refund = Column(Boolean, nullable=False, default=False)  # Restocks instead of deducting
    is_complimentary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())


class Sale(Base):
    """
    One POS transaction received from Soft Restaurant.

    Never hard-deleted: cancellation is a status change plus a compensating
    ledger entry.
    """
    __tablename__ = "sr_sales"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid, nullable=False)
    integration_id = Column(Uuid, ForeignKey("integration_connections.id", ondelete="CASCADE"), nullable=False)

    # Idempotency
    external_id = Column(String(50), nullable=False)  # SR "NumeroOrden"
    dedup_key = Column(String(20), nullable=False)  # warehouse code, or "*" for tenant-wide scope

    sr_company_id = Column(String(50))  # SR "IdEmpresa"
    warehouse_code = Column(String(20), nullable=False)  # SR "Almacen"
    station_code = Column(String(100))  # SR "Estacion"
    area_name = Column(String(100))  # SR "Area"
    table_code = Column(String(50))  # SR "Mesa" (not in every SR version)
    user_code = Column(String(50))  # SR "IdUsuario"
    customer_code = Column(String(50))  # SR "IdCliente"

    sale_date = Column(DateTime(timezone=True), nullable=False)  # SR "FechaVenta"
    business_date = Column(Date, nullable=False)
    total = Column(Numeric(12, 4), nullable=False, default=0)
    tip = Column(Numeric(12, 4), nullable=False, default=0)  # Sum of Pagos[].Propina

    # Computed costs
    recipe_cost = Column(Numeric(12, 4), nullable=False, default=0)
    profit_margin = Column(Numeric(12, 4), nullable=False, default=0)  # (total - recipe_cost) / total

    status = Column(String(20), nullable=False, default="pending")

    # Cancellation
    cancellation_type = Column(String(50))  # SR "TipoCancelacion"
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    # Error tracking
    error_message = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)

    raw_payload = Column(JSONType)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    processed_at = Column(DateTime(timezone=True))

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.line_number")
    payments = relationship("Payment", back_populates="sale", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "integration_id", "dedup_key", "external_id", name="uq_sr_sale"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled', 'error')",
            name="ck_sr_sale_status",
        ),
        Index("idx_sr_sales_tenant_branch", "tenant_id", "branch_id"),
        Index("idx_sr_sales_external_id", "external_id"),
        Index("idx_sr_sales_business_date", "tenant_id", "business_date"),
    )


class SaleItem(Base):
    """A product line ("Conceptos[]") within a sale."""
    __tablename__ = "sr_sale_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    sale_id = Column(Uuid, ForeignKey("sr_sales.id", ondelete="CASCADE"), nullable=False)
    line_number = Column(Integer, nullable=False, default=0)

    product_id = Column(String(50), nullable=False)  # SR "IdProducto"
    description = Column(String(200))
    movement_type = Column(Integer)  # SR "Movimiento"; unknown codes are kept as received

    quantity = Column(Numeric(14, 4), nullable=False)
    unit_price = Column(Numeric(12, 4), nullable=False, default=0)
    subtotal_without_tax = Column(Numeric(12, 4), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 4), nullable=False, default=0)
    tax_details = Column(JSONType)  # [{"name", "rate", "amount"}, ...] in POS order
    tax_amount = Column(Numeric(12, 4), nullable=False, default=0)  # Sum of tax_details amounts
    total_amount = Column(Numeric(12, 4), nullable=False, default=0)  # subtotal - discount + tax

    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="SET NULL"))
    recipe_deducted = Column(Boolean, nullable=False, default=False)
    recipe_cost = Column(Numeric(12, 4), nullable=False, default=0)
    deduction_error = Column(Text)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sale = relationship("Sale", back_populates="items")

    __table_args__ = (
        Index("idx_sr_sale_items_sale", "sale_id"),
        Index("idx_sr_sale_items_product", "product_id"),
    )


class Payment(Base):
    """A tender line ("Pagos[]") within a sale."""
    __tablename__ = "sr_payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    sale_id = Column(Uuid, ForeignKey("sr_sales.id", ondelete="CASCADE"), nullable=False)
    payment_method_name = Column(String(100), nullable=False)  # SR "FormaPago"
    payment_method_id = Column(Uuid)  # Null until the method name is mapped
    amount = Column(Numeric(12, 4), nullable=False, default=0)
    tip_amount = Column(Numeric(12, 4), nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    sale = relationship("Sale", back_populates="payments")

    __table_args__ = (
        Index("idx_sr_payments_sale", "sale_id"),
    )
