"""
Writer for the sr_sync_logs audit table.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from sr_integration.models.sync_log import SyncLog

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class SyncLogService:
    """Adds structured audit entries to the current session and mirrors them to the process log."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        tenant_id: UUID,
        integration_id: UUID,
        log_type: str,
        message: str,
        level: str = "info",
        sale_id: Optional[UUID] = None,
        external_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> SyncLog:
        """
        Record one audit entry.

        The entry is only added to the session; it is persisted by the
        caller's commit so it shares the fate of the work it describes.
        """
        entry = SyncLog(
            tenant_id=tenant_id,
            integration_id=integration_id,
            log_type=log_type,
            level=level,
            message=message,
            details=details,
            sale_id=sale_id,
            external_id=external_id,
        )
        self.db.add(entry)
        logger.log(_LEVELS.get(level, logging.INFO), f"[SR {log_type}] {message}")
        return entry
