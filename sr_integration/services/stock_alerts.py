"""
Low-stock alert evaluation.

Thresholds (per ingredient):
- stock <= 0                         -> critical / out_of_stock
- 0 < stock <= minimum_stock         -> critical / low_stock
- minimum_stock < stock <= reorder   -> warning  / approaching
- above reorder point                -> no action

Evaluation never resolves an alert. Resolution is an explicit action taken
after a restock.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sr_integration.core.units import q4, to_decimal, ZERO
from sr_integration.models.ingredient import Ingredient
from sr_integration.models.inventory import LowStockAlert
from sr_integration.services.sync_log import SyncLogService

logger = logging.getLogger(__name__)


@dataclass
class AlertAction:
    action: str  # created, updated, none
    alert: Optional[LowStockAlert] = None
    alert_type: Optional[str] = None
    severity: Optional[str] = None


def classify_stock(
    current_stock: Decimal,
    minimum_stock: Decimal,
    reorder_point: Decimal,
) -> Optional[tuple[str, str]]:
    """Return (alert_type, severity) for a stock level, or None when healthy."""
    if current_stock <= 0:
        return "out_of_stock", "critical"
    if current_stock <= minimum_stock:
        return "low_stock", "critical"
    if current_stock <= reorder_point:
        return "approaching", "warning"
    return None


def suggested_order_quantity(ingredient: Ingredient, current_stock: Decimal) -> Decimal:
    if ingredient.reorder_quantity:
        return q4(ingredient.reorder_quantity)
    reorder_point = to_decimal(ingredient.reorder_point)
    return q4(max(2 * reorder_point - current_stock, ZERO))


class StockAlertService:
    """Maintains at most one active LowStockAlert per (branch, ingredient)."""

    def __init__(self, db: Session, integration_id: Optional[UUID] = None):
        self.db = db
        # Sync log entries need an integration; manual restocks have none
        self.integration_id = integration_id
        self.sync_log = SyncLogService(db)

    def evaluate(
        self,
        tenant_id: UUID,
        branch_id: UUID,
        ingredient_id: UUID,
        current_stock: Decimal,
    ) -> AlertAction:
        ingredient = self.db.get(Ingredient, ingredient_id)
        if ingredient is None:
            raise LookupError(f"Ingredient {ingredient_id} not found")

        current_stock = to_decimal(current_stock)
        minimum_stock = to_decimal(ingredient.minimum_stock)
        reorder_point = to_decimal(ingredient.reorder_point)

        classification = classify_stock(current_stock, minimum_stock, reorder_point)
        active = self.get_active_alert(tenant_id, branch_id, ingredient_id)

        if classification is None:
            if active is not None:
                # Stock recovered; keep the figures current but leave it active
                active.current_stock = current_stock
                self.db.flush()
                return AlertAction(action="updated", alert=active,
                                   alert_type=active.alert_type, severity=active.severity)
            return AlertAction(action="none")

        alert_type, severity = classification
        order_qty = suggested_order_quantity(ingredient, current_stock)

        if active is not None:
            active.alert_type = alert_type
            active.severity = severity
            active.current_stock = current_stock
            active.minimum_stock = minimum_stock
            active.reorder_point = reorder_point
            active.suggested_order_quantity = order_qty
            self.db.flush()
            return AlertAction(action="updated", alert=active, alert_type=alert_type, severity=severity)

        alert = LowStockAlert(
            tenant_id=tenant_id,
            branch_id=branch_id,
            ingredient_id=ingredient_id,
            alert_type=alert_type,
            severity=severity,
            current_stock=current_stock,
            minimum_stock=minimum_stock,
            reorder_point=reorder_point,
            suggested_order_quantity=order_qty,
            status="active",
        )
        try:
            with self.db.begin_nested():
                self.db.add(alert)
        except IntegrityError:
            # Another transaction opened the active alert first; update theirs
            existing = self.get_active_alert(tenant_id, branch_id, ingredient_id)
            if existing is None:
                raise
            existing.alert_type = alert_type
            existing.severity = severity
            existing.current_stock = current_stock
            existing.suggested_order_quantity = order_qty
            self.db.flush()
            return AlertAction(action="updated", alert=existing, alert_type=alert_type, severity=severity)

        message = (
            f"{severity.upper()} {alert_type} alert for {ingredient.name}: "
            f"{current_stock} {ingredient.unit} left"
        )
        if self.integration_id is not None:
            self.sync_log.log(
                tenant_id, self.integration_id, "alert_created", message,
                level="warning",
                details={
                    "alert_id": str(alert.id),
                    "ingredient_id": str(ingredient_id),
                    "branch_id": str(branch_id),
                    "alert_type": alert_type,
                    "severity": severity,
                    "current_stock": str(current_stock),
                },
            )
        else:
            logger.warning(message)

        return AlertAction(action="created", alert=alert, alert_type=alert_type, severity=severity)

    def get_active_alert(self, tenant_id: UUID, branch_id: UUID, ingredient_id: UUID) -> Optional[LowStockAlert]:
        stmt = select(LowStockAlert).where(
            LowStockAlert.tenant_id == tenant_id,
            LowStockAlert.branch_id == branch_id,
            LowStockAlert.ingredient_id == ingredient_id,
            LowStockAlert.status == "active",
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_alerts(
        self,
        tenant_id: UUID,
        branch_id: Optional[UUID] = None,
        status: Optional[str] = "active",
    ) -> list[LowStockAlert]:
        stmt = select(LowStockAlert).where(LowStockAlert.tenant_id == tenant_id)
        if branch_id is not None:
            stmt = stmt.where(LowStockAlert.branch_id == branch_id)
        if status:
            stmt = stmt.where(LowStockAlert.status == status)
        stmt = stmt.order_by(LowStockAlert.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def acknowledge(self, tenant_id: UUID, alert_id: UUID) -> LowStockAlert:
        """
        Mark an active alert as seen.

        Raises:
            LookupError: alert not found for this tenant
            ValueError: alert is not active
        """
        alert = self._get(tenant_id, alert_id)
        if alert.status != "active":
            raise ValueError(f"Alert is {alert.status}, only active alerts can be acknowledged")
        alert.status = "acknowledged"
        alert.acknowledged_at = datetime.now(timezone.utc)
        self.db.flush()
        return alert

    def resolve(self, tenant_id: UUID, alert_id: UUID) -> LowStockAlert:
        """
        Close an alert after restocking. Resolving twice is a no-op.

        Raises:
            LookupError: alert not found for this tenant
        """
        alert = self._get(tenant_id, alert_id)
        if alert.status == "resolved":
            return alert
        alert.status = "resolved"
        alert.resolved_at = datetime.now(timezone.utc)
        self.db.flush()
        return alert

    def _get(self, tenant_id: UUID, alert_id: UUID) -> LowStockAlert:
        alert = self.db.get(LowStockAlert, alert_id)
        if alert is None or alert.tenant_id != tenant_id:
            raise LookupError("Alert not found")
        return alert
