"""
Cancellation of previously ingested SR sales.

Sale state machine: pending -> completed -> cancelled (terminal), with error
reachable from pending. Only completed -> cancelled is triggered here.
Cancelling restores stock with compensating ledger entries; the original
deductions are never modified or deleted.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from sr_integration.core.errors import (
    InvalidSaleStateError,
    SaleNotFoundError,
    SaleValidationError,
    SecurityError,
    SRIntegrationError,
)
from sr_integration.models.integration import IntegrationConnection
from sr_integration.models.sale import Sale
from sr_integration.schemas.soft_restaurant import (
    CancellationOutcome,
    SRCancellationRequest,
    format_validation_errors,
)
from sr_integration.services.identity_mapping import company_id_mismatch
from sr_integration.services.inventory_ledger import InventoryLedgerService
from sr_integration.services.stock_alerts import StockAlertService
from sr_integration.services.sync_log import SyncLogService

logger = logging.getLogger(__name__)


class SaleCancellationService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = InventoryLedgerService(db)
        self.sync_log = SyncLogService(db)

    def cancel(
        self,
        integration: IntegrationConnection,
        request: Union[SRCancellationRequest, dict, Any],
    ) -> CancellationOutcome:
        """
        Cancel one sale by SR order number.

        Re-cancelling an already cancelled sale succeeds without side effects.

        Raises:
            SaleValidationError: malformed request, or the order number is
                ambiguous across warehouses and no ``Almacen`` was given
            SecurityError: company id does not match the integration
            SaleNotFoundError: no sale with that order number
            InvalidSaleStateError: the sale is not completed
        """
        if not isinstance(request, SRCancellationRequest):
            try:
                request = SRCancellationRequest.model_validate(request)
            except ValidationError as e:
                raise SaleValidationError(
                    "Cancellation request failed validation",
                    details=format_validation_errors(e),
                ) from e

        tenant_id = integration.tenant_id
        mismatch = company_id_mismatch(integration, request.company_id)
        if mismatch is not None:
            self._reject(integration, request, "company_id_mismatch", SecurityError(mismatch), level="critical")

        self.sync_log.log(
            tenant_id, integration.id, "cancellation_received",
            f"Cancellation requested for sale {request.external_id} ({request.cancellation_type})",
            external_id=request.external_id,
            details={"cancellation_type": request.cancellation_type, "reason": request.reason},
        )
        # The receipt outlives a rejected cancellation
        self.db.commit()

        try:
            sale = self._lock_sale(integration, request.external_id, request.warehouse_code)

            if sale.status == "cancelled":
                self.db.commit()
                logger.info(f"Sale {sale.external_id} already cancelled")
                return CancellationOutcome(
                    status="already_cancelled",
                    external_id=sale.external_id,
                    internal_id=sale.id,
                )

            if sale.status != "completed":
                raise InvalidSaleStateError(
                    f"Sale {sale.external_id} is {sale.status} and cannot be cancelled",
                    details={"status": sale.status},
                )

            sale.status = "cancelled"
            sale.cancellation_type = request.cancellation_type
            sale.cancellation_reason = request.reason
            sale.cancelled_at = datetime.now(timezone.utc)

            reversals = self.ledger.reverse(tenant_id, "sale", sale.id)

            # Stock went up; refresh alert figures but never auto-resolve
            alerts = StockAlertService(self.db, integration_id=integration.id)
            affected = {(m.branch_id, m.ingredient_id) for m in reversals}
            for branch_id, ingredient_id in affected:
                stock = self.ledger.current_stock(tenant_id, branch_id, ingredient_id)
                alerts.evaluate(tenant_id, branch_id, ingredient_id, stock)

            self.sync_log.log(
                tenant_id, integration.id, "sale_cancelled",
                f"Sale {sale.external_id} cancelled; {len(reversals)} movements reversed",
                sale_id=sale.id, external_id=sale.external_id,
                details={
                    "cancellation_type": request.cancellation_type,
                    "movements_reversed": len(reversals),
                },
            )
            self.db.commit()
        except SRIntegrationError as e:
            self.db.rollback()
            self._reject(integration, request, "error_processing", e)
        except Exception:
            self.db.rollback()
            raise

        return CancellationOutcome(
            status="cancelled",
            external_id=sale.external_id,
            internal_id=sale.id,
            movements_reversed=len(reversals),
        )

    def _lock_sale(
        self,
        integration: IntegrationConnection,
        external_id: str,
        warehouse_code: Optional[str],
    ) -> Sale:
        stmt = select(Sale).where(
            Sale.tenant_id == integration.tenant_id,
            Sale.integration_id == integration.id,
            Sale.external_id == external_id,
        )
        if warehouse_code:
            stmt = stmt.where(Sale.warehouse_code == warehouse_code)
        sales = self.db.execute(stmt.with_for_update()).scalars().all()

        if not sales:
            raise SaleNotFoundError(
                f"Sale {external_id} not found",
                details={"external_id": external_id, "warehouse_code": warehouse_code},
            )
        if len(sales) > 1:
            raise SaleValidationError(
                f"Sale {external_id} exists in several warehouses; specify Almacen",
                details={"warehouses": sorted(s.warehouse_code for s in sales)},
            )
        return sales[0]

    def _reject(
        self,
        integration: IntegrationConnection,
        request: SRCancellationRequest,
        log_type: str,
        error: SRIntegrationError,
        level: str = "error",
    ) -> None:
        """Record the failed cancellation and raise ``error``."""
        self.sync_log.log(
            integration.tenant_id, integration.id, log_type,
            f"Cancellation of sale {request.external_id} rejected: {error.message}",
            level=level, external_id=request.external_id, details=error.to_dict(),
        )
        self.db.commit()
        raise error
