"""
Integration connection and external-identifier mapping tables.
"""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid, func, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base


class IntegrationConnection(Base):
    """
    A connected Soft Restaurant installation for one tenant.

    Holds the API key the POS agent authenticates with and the per-integration
    ingestion settings (expected company id, fallback branch, dedup scope).
    """
    __tablename__ = "integration_connections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    name = Column(String(100), nullable=False, default="Soft Restaurant")
    api_key_hash = Column(String(64), nullable=False, unique=True)  # SHA-256 hex of the API key
    sr_company_id = Column(String(50))  # SR "IdEmpresa"
    status = Column(String(20), nullable=False, default="connected")  # connected, disconnected, error
    default_branch_id = Column(Uuid)  # Fallback when a warehouse code has no mapping
    recipe_deduction_enabled = Column(Boolean, nullable=False, default=True)
    dedup_scope = Column(String(20), nullable=False, default="warehouse")  # warehouse, tenant
    timezone = Column(String(50))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    warehouse_mappings = relationship("WarehouseMapping", back_populates="integration", cascade="all, delete-orphan")
    payment_method_mappings = relationship("PaymentMethodMapping", back_populates="integration", cascade="all, delete-orphan")


class WarehouseMapping(Base):
    """SR warehouse code ("Almacen") -> internal branch."""
    __tablename__ = "sr_warehouse_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    integration_id = Column(Uuid, ForeignKey("integration_connections.id", ondelete="CASCADE"), nullable=False)
    warehouse_code = Column(String(20), nullable=False)
    branch_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    integration = relationship("IntegrationConnection", back_populates="warehouse_mappings")

    __table_args__ = (
        UniqueConstraint("integration_id", "warehouse_code", name="uq_sr_warehouse_mapping"),
    )


class PaymentMethodMapping(Base):
    """SR payment method name ("FormaPago") -> internal payment method."""
    __tablename__ = "sr_payment_method_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    integration_id = Column(Uuid, ForeignKey("integration_connections.id", ondelete="CASCADE"), nullable=False)
    method_name = Column(String(100), nullable=False)  # normalized: trimmed + casefolded
    payment_method_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    integration = relationship("IntegrationConnection", back_populates="payment_method_mappings")

    __table_args__ = (
        UniqueConstraint("integration_id", "method_name", name="uq_sr_payment_method_mapping"),
        Index("idx_sr_payment_method_mappings_integration", "integration_id"),
    )
