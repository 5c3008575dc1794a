"""
Sync log model: operator-facing audit trail of SR ingestion outcomes.
"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Uuid, func, Index

from sr_integration.db.base import Base, JSONType


LOG_TYPES = (
    "sale_received",
    "sale_duplicate",
    "sale_cancelled",
    "recipe_deducted",
    "alert_created",
    "error_validation",
    "error_processing",
    "error_deduction",
    "product_unmapped",
    "company_id_mismatch",
    "cancellation_received",
    "warning_data",
)


class SyncLog(Base):
    """
    One structured audit entry, tied to a sale when there is one.

    Batch-level entries (e.g. a company id mismatch) have no sale_id.
    """
    __tablename__ = "sr_sync_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    integration_id = Column(Uuid, ForeignKey("integration_connections.id", ondelete="CASCADE"), nullable=False)
    log_type = Column(String(50), nullable=False)
    level = Column(String(20), nullable=False, default="info")  # debug, info, warning, error, critical
    message = Column(Text, nullable=False)
    details = Column(JSONType)
    sale_id = Column(Uuid, ForeignKey("sr_sales.id", ondelete="SET NULL"))
    external_id = Column(String(50))  # NumeroOrden for quick reference
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_sr_sync_logs_integration", "integration_id", "created_at"),
        Index("idx_sr_sync_logs_external_id", "external_id"),
    )
