"""
SR product code -> catalog item mapping.
"""
import uuid
from sqlalchemy import Column, String, Text, Integer, Boolean, Numeric, DateTime, ForeignKey, Uuid, func, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base


class ProductMapping(Base):
    """
    Maps an SR ``IdProducto`` to an internal menu item.

    A row with ``menu_item_id = NULL`` is an unmapped product awaiting manual
    review. Rows are deactivated, never deleted, so historical sales stay
    interpretable.
    """
    __tablename__ = "sr_product_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    integration_id = Column(Uuid, ForeignKey("integration_connections.id", ondelete="CASCADE"), nullable=False)

    external_id = Column(String(50), nullable=False)  # SR "IdProducto"
    external_name = Column(String(200))  # Cached SR "Descripcion"
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="SET NULL"))
    confidence = Column(String(20), nullable=False, default="auto")  # manual, auto
    is_active = Column(Boolean, nullable=False, default=True)

    # Fuzzy name-match hint for the reviewer (never applied automatically)
    suggested_menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="SET NULL"))
    suggestion_score = Column(Numeric(5, 2))

    times_seen = Column(Integer, nullable=False, default=0)
    last_seen_at = Column(DateTime(timezone=True))
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    menu_item = relationship("MenuItem", foreign_keys=[menu_item_id])
    suggested_menu_item = relationship("MenuItem", foreign_keys=[suggested_menu_item_id])

    __table_args__ = (
        UniqueConstraint("tenant_id", "integration_id", "external_id", name="uq_sr_product_mapping"),
        Index("idx_sr_product_mappings_unmapped", "integration_id", "menu_item_id"),
    )
