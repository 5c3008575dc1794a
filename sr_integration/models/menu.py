"""
Catalog items sold by the restaurant.
"""
import uuid
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime, Uuid, func, Index
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base


class MenuItem(Base):
    """A dish or product sold by the restaurant."""
    __tablename__ = "menu_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(12, 4), nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    recipes = relationship("Recipe", back_populates="menu_item", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_menu_items_tenant", "tenant_id"),
    )
