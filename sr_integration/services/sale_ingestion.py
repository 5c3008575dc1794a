"""
Soft Restaurant sale ingestion with idempotency and per-sale isolation.
"""
import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from sr_integration.core.business_day import get_business_date, localize_pos_timestamp
from sr_integration.core.config import Settings, get_settings
from sr_integration.core.errors import (
    InsufficientDataError,
    RecipeMissingError,
    SaleValidationError,
    SecurityError,
    SRIntegrationError,
    StorageError,
    UnitConversionError,
    UnmappedWarehouseError,
)
from sr_integration.core.units import q4, ZERO
from sr_integration.models.integration import IntegrationConnection
from sr_integration.models.sale import MovementType, Payment, Sale, SaleItem
from sr_integration.schemas.soft_restaurant import (
    SaleOutcome,
    SRSale,
    SRSaleLine,
    format_validation_errors,
    split_batch,
)
from sr_integration.services.identity_mapping import IdentityMappingService, company_id_mismatch
from sr_integration.services.inventory_ledger import InventoryLedgerService
from sr_integration.services.recipe_explosion import RecipeExplosionService
from sr_integration.services.stock_alerts import StockAlertService
from sr_integration.services.sync_log import SyncLogService

logger = logging.getLogger(__name__)


# SR only documents code 1; a line without "Movimiento" is a normal sale
DEFAULT_MOVEMENT_TYPE = 1

# Dedup key used when order numbers are unique across all warehouses
TENANT_DEDUP_KEY = "*"


class IngestionResult:
    """Per-sale outcomes of one webhook payload, in input order."""
    def __init__(self, company_id: Optional[str] = None):
        self.company_id = company_id
        self.outcomes: List[SaleOutcome] = []

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "processed")

    @property
    def duplicates(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "duplicate")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    def retryable_indexes(self) -> List[int]:
        """Positions of sales that failed with a transient storage error."""
        return [
            i for i, o in enumerate(self.outcomes)
            if o.status == "failed" and o.error and o.error.get("retryable")
        ]

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response."""
        return {
            "success": self.failed == 0,
            "total": len(self.outcomes),
            "processed": self.processed,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "results": [o.model_dump(mode="json") for o in self.outcomes],
        }


class SaleIngestionService:
    """
    Ingests SR webhook payloads into the sale event store.

    Features:
    - Whole-batch company id check (mismatch aborts before anything is written)
    - Idempotency on (tenant, integration, dedup key, order number), backed by
      a unique constraint so concurrent redelivery resolves to "duplicate"
    - One database transaction per sale (sale + items + payments + ledger)
    - One SAVEPOINT per line item so a failed deduction leaves no partial
      ledger rows and never fails the sale
    - Structured audit trail in sr_sync_logs
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.mapper = IdentityMappingService(db)
        self.recipes = RecipeExplosionService(db)
        self.ledger = InventoryLedgerService(db)
        self.sync_log = SyncLogService(db)
        self._movement_types: Optional[Dict[int, MovementType]] = None

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def ingest(self, integration: IntegrationConnection, payload: Any, attempt: int = 0) -> IngestionResult:
        """
        Ingest every sale of one payload.

        Raises:
            PayloadError: the payload envelope is malformed
            SecurityError: company id does not match the integration
        """
        company_id, raw_sales = split_batch(payload)
        self.verify_company(integration, company_id)

        result = IngestionResult(company_id)
        for raw_sale in raw_sales:
            result.outcomes.append(self.ingest_sale(integration, company_id, raw_sale, attempt))

        logger.info(
            f"SR batch for integration {integration.id}: {result.processed} processed, "
            f"{result.duplicates} duplicate, {result.failed} failed"
        )
        return result

    def verify_company(self, integration: IntegrationConnection, company_id: str) -> None:
        """
        Raises:
            SecurityError: no expected company id configured, or a mismatch
        """
        message = company_id_mismatch(integration, company_id)
        if message is None:
            return

        self.sync_log.log(
            integration.tenant_id, integration.id, "company_id_mismatch", message,
            level="critical",
            details={"received": company_id, "expected_configured": bool(integration.sr_company_id)},
        )
        self._commit_audit()
        raise SecurityError(message)

    # ------------------------------------------------------------------
    # Single sale
    # ------------------------------------------------------------------

    def ingest_sale(
        self,
        integration: IntegrationConnection,
        company_id: str,
        raw_sale: Any,
        attempt: int = 0,
    ) -> SaleOutcome:
        """Ingest one sale in its own transaction. Never raises for sale-scoped problems."""
        external_id = self._peek_external_id(raw_sale)

        try:
            sale = self.parse_sale(raw_sale)
        except SaleValidationError as e:
            self.sync_log.log(
                integration.tenant_id, integration.id, "error_validation",
                f"Sale {external_id or '?'} rejected: {e.message}",
                level="error", external_id=external_id, details={"errors": e.details},
            )
            self._commit_audit()
            return self._failed(external_id, e)

        external_id = sale.external_id
        dedup_key = self.dedup_key(integration, sale.warehouse_code)

        existing = self.find_existing(integration, dedup_key, external_id)
        if existing is not None:
            return self._duplicate(integration, existing)

        try:
            branch_id = self.mapper.resolve_branch(integration, sale.warehouse_code)
        except UnmappedWarehouseError as e:
            self.sync_log.log(
                integration.tenant_id, integration.id, "error_processing",
                f"Sale {external_id} rejected: {e.message}",
                level="error", external_id=external_id, details=e.details,
            )
            self._commit_audit()
            return self._failed(external_id, e)

        try:
            sale_row = self._persist_sale(integration, company_id, branch_id, dedup_key, sale, raw_sale, attempt)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            existing = self.find_existing(integration, dedup_key, external_id)
            if existing is not None:
                # Lost the race against a concurrent delivery of the same sale
                return self._duplicate(integration, existing)
            return self._storage_failure(integration, external_id, e, transient=False)
        except (OperationalError, DBAPIError) as e:
            self.db.rollback()
            transient = isinstance(e, OperationalError) or e.connection_invalidated
            return self._storage_failure(integration, external_id, e, transient=transient)
        except ArithmeticError as e:
            self.db.rollback()
            error = SaleValidationError(
                f"Sale {external_id} has amounts that cannot be stored",
                details=[{"field": "sale", "message": e.__class__.__name__}],
            )
            self.sync_log.log(
                integration.tenant_id, integration.id, "error_validation",
                f"Sale {external_id} rejected: {error.message}",
                level="error", external_id=external_id, details={"errors": error.details},
            )
            self._commit_audit()
            return self._failed(external_id, error)
        except Exception:
            self.db.rollback()
            raise

        return SaleOutcome(status="processed", external_id=external_id, internal_id=sale_row.id)

    def parse_sale(self, raw_sale: Any) -> SRSale:
        """
        Validate one raw sale into strict types.

        Raises:
            SaleValidationError: with a list of {field, message} in ``details``
        """
        if not isinstance(raw_sale, dict):
            raise SaleValidationError(
                "Sale must be a JSON object",
                details=[{"field": "sale", "message": "Expected an object"}],
            )
        try:
            sale = SRSale.model_validate(raw_sale)
        except ValidationError as e:
            raise SaleValidationError("Sale failed validation", details=format_validation_errors(e)) from e

        if len(sale.lines) > self.settings.SR_MAX_ITEMS_PER_SALE:
            raise SaleValidationError(
                f"Sale has {len(sale.lines)} items (max {self.settings.SR_MAX_ITEMS_PER_SALE})",
                details=[{"field": "Conceptos", "message": "Too many items"}],
            )
        return sale

    def dedup_key(self, integration: IntegrationConnection, warehouse_code: str) -> str:
        scope = integration.dedup_scope or self.settings.SR_DEFAULT_DEDUP_SCOPE
        return TENANT_DEDUP_KEY if scope == "tenant" else warehouse_code

    def find_existing(self, integration: IntegrationConnection, dedup_key: str, external_id: str) -> Optional[Sale]:
        stmt = select(Sale).where(
            Sale.tenant_id == integration.tenant_id,
            Sale.integration_id == integration.id,
            Sale.dedup_key == dedup_key,
            Sale.external_id == external_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_sale(
        self,
        integration: IntegrationConnection,
        company_id: str,
        branch_id: UUID,
        dedup_key: str,
        sale: SRSale,
        raw_sale: dict,
        attempt: int,
    ) -> Sale:
        tenant_id = integration.tenant_id
        tz_name = integration.timezone or self.settings.SR_DEFAULT_TIMEZONE
        sale_date = localize_pos_timestamp(sale.sale_date, tz_name)

        sale_row = Sale(
            tenant_id=tenant_id,
            branch_id=branch_id,
            integration_id=integration.id,
            external_id=sale.external_id,
            dedup_key=dedup_key,
            sr_company_id=company_id,
            warehouse_code=sale.warehouse_code,
            station_code=sale.station_code,
            area_name=sale.area_name,
            table_code=sale.table_code,
            user_code=sale.user_code,
            customer_code=sale.customer_code,
            sale_date=sale_date,
            business_date=get_business_date(sale_date, tz_name),
            total=q4(sale.total),
            tip=q4(sale.tip_total),
            status="completed",
            retry_count=attempt,
            raw_payload=raw_sale,
        )
        self.db.add(sale_row)
        self.db.flush()  # Surfaces a concurrent duplicate as IntegrityError here

        for warning in self._reconcile_amounts(sale):
            self.sync_log.log(
                tenant_id, integration.id, "warning_data", warning.message,
                level="warning", sale_id=sale_row.id, external_id=sale.external_id,
                details=warning.details,
            )

        item_statuses: Counter = Counter()
        recipe_cost = ZERO
        for line_number, line in enumerate(sale.lines, start=1):
            item = self._build_item(tenant_id, sale_row.id, line_number, line)
            self.db.add(item)
            self.db.flush()

            if integration.recipe_deduction_enabled:
                status = self._deduct_item(integration, sale_row, item, line)
            else:
                status = "disabled"
            item_statuses[status] += 1
            if status == "deducted":
                recipe_cost += item.recipe_cost

        for payment in sale.payments:
            self.db.add(Payment(
                tenant_id=tenant_id,
                sale_id=sale_row.id,
                payment_method_name=payment.method_name,
                payment_method_id=self.mapper.resolve_payment_method(integration.id, payment.method_name),
                amount=q4(payment.amount),
                tip_amount=q4(payment.tip),
            ))

        sale_row.recipe_cost = q4(recipe_cost)
        sale_row.profit_margin = self._profit_margin(sale_row.total, sale_row.recipe_cost)
        sale_row.processed_at = datetime.now(timezone.utc)
        self.db.flush()

        failed_items = item_statuses["failed"] + item_statuses["unmapped"]
        if not failed_items:
            outcome = "success"
        elif failed_items == len(sale.lines):
            outcome = "failed"
        else:
            outcome = "partial"
        self.sync_log.log(
            tenant_id, integration.id, "sale_received",
            f"Sale {sale.external_id} stored ({outcome}): {len(sale.lines)} items, "
            f"{item_statuses['deducted']} deducted, {failed_items} failed",
            level="warning" if failed_items else "info",
            sale_id=sale_row.id,
            external_id=sale.external_id,
            details={
                "outcome": outcome,
                "items_total": len(sale.lines),
                "items_processed": len(sale.lines) - failed_items,
                "items_failed": failed_items,
                "item_statuses": dict(item_statuses),
                "recipe_cost": str(sale_row.recipe_cost),
                "attempt": attempt,
            },
        )
        return sale_row

    def _build_item(self, tenant_id: UUID, sale_id: UUID, line_number: int, line: SRSaleLine) -> SaleItem:
        return SaleItem(
            tenant_id=tenant_id,
            sale_id=sale_id,
            line_number=line_number,
            product_id=line.product_id,
            description=line.description,
            movement_type=line.movement_type if line.movement_type is not None else DEFAULT_MOVEMENT_TYPE,
            quantity=q4(line.quantity),
            unit_price=q4(line.unit_price),
            subtotal_without_tax=q4(line.subtotal_without_tax),
            discount_amount=q4(line.discount),
            tax_details=[
                {"name": t.name, "rate": str(t.rate), "amount": str(t.amount)}
                for t in line.taxes
            ],
            tax_amount=q4(line.tax_total),
            total_amount=q4(line.line_total),
        )

    def _deduct_item(self, integration: IntegrationConnection, sale_row: Sale, item: SaleItem, line: SRSaleLine) -> str:
        """
        Resolve, explode and deduct one line item.

        Returns one of: deducted, unmapped, no_recipe, skipped, failed.
        """
        tenant_id = integration.tenant_id
        menu_item_id = self.mapper.resolve_product(tenant_id, integration.id, line.product_id, line.description)
        item.menu_item_id = menu_item_id
        if menu_item_id is None:
            item.deduction_error = f"Product '{line.product_id}' is not mapped to a menu item"
            self.sync_log.log(
                tenant_id, integration.id, "product_unmapped", item.deduction_error,
                level="warning", sale_id=sale_row.id, external_id=sale_row.external_id,
                details={"product_id": line.product_id, "description": line.description},
            )
            return "unmapped"

        movement = self._movement_type(item.movement_type)
        if movement is None:
            item.deduction_error = f"Unknown movement type {item.movement_type}; deduction skipped"
            self.sync_log.log(
                tenant_id, integration.id, "warning_data", item.deduction_error,
                level="warning", sale_id=sale_row.id, external_id=sale_row.external_id,
                details={"product_id": line.product_id, "movement_type": item.movement_type},
            )
            return "skipped"
        if not movement.affects_inventory:
            return "skipped"

        # Refund codes put stock back; everything else consumes it
        sign = Decimal(1) if movement.is_refund else Decimal(-1)
        affected: Dict[UUID, Decimal] = {}
        try:
            with self.db.begin_nested():
                explosion = self.recipes.explode(menu_item_id, line.quantity)
                for deduction in explosion.deductions:
                    if deduction.quantity == 0:
                        continue
                    affected[deduction.ingredient_id] = self.ledger.apply(
                        tenant_id=tenant_id,
                        branch_id=sale_row.branch_id,
                        ingredient_id=deduction.ingredient_id,
                        quantity=sign * deduction.quantity,
                        unit=deduction.unit,
                        reference_type="sale",
                        reference_id=sale_row.id,
                        unit_cost=deduction.unit_cost,
                        notes=f"SR order {sale_row.external_id} line {item.line_number}",
                    )
        except RecipeMissingError as e:
            item.deduction_error = e.message
            logger.info(f"SR order {sale_row.external_id} line {item.line_number}: {e.message}")
            return "no_recipe"
        except (UnitConversionError, ValueError) as e:
            message = e.message if isinstance(e, SRIntegrationError) else str(e)
            item.deduction_error = message
            self.sync_log.log(
                tenant_id, integration.id, "error_deduction",
                f"Deduction failed for product '{line.product_id}': {message}",
                level="error", sale_id=sale_row.id, external_id=sale_row.external_id,
                details={"product_id": line.product_id, "line_number": item.line_number},
            )
            return "failed"

        item.recipe_cost = explosion.total_cost
        item.recipe_deducted = True
        self.sync_log.log(
            tenant_id, integration.id, "recipe_deducted",
            f"Deducted {len(explosion.deductions)} ingredients for product '{line.product_id}'",
            level="debug", sale_id=sale_row.id, external_id=sale_row.external_id,
            details={
                "menu_item_id": str(menu_item_id),
                "recipe_id": str(explosion.recipe_id),
                "recipe_cost": str(explosion.total_cost),
                "skipped_ingredients": explosion.skipped_ingredients,
            },
        )

        if sign < 0:
            alerts = StockAlertService(self.db, integration_id=integration.id)
            for ingredient_id, new_stock in affected.items():
                alerts.evaluate(tenant_id, sale_row.branch_id, ingredient_id, new_stock)
        return "deducted"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _movement_type(self, code: int) -> Optional[MovementType]:
        if self._movement_types is None:
            rows = self.db.execute(select(MovementType)).scalars().all()
            self._movement_types = {mt.code: mt for mt in rows}
        return self._movement_types.get(code)

    def _reconcile_amounts(self, sale: SRSale) -> List[InsufficientDataError]:
        """POS figures are kept as sent; mismatches are only reported."""
        tolerance = self.settings.SR_AMOUNT_TOLERANCE
        warnings = []

        lines_total = sum((line.line_total for line in sale.lines), Decimal("0"))
        if abs(lines_total - sale.total) > tolerance:
            warnings.append(InsufficientDataError(
                f"Sale {sale.external_id}: line totals {lines_total} do not match total {sale.total}",
                details={"lines_total": str(lines_total), "total": str(sale.total)},
            ))

        paid = sum((p.amount for p in sale.payments), Decimal("0"))
        with_tip = sale.total + sale.tip_total
        # Some SR versions include the tip in Importe, others do not
        if abs(paid - sale.total) > tolerance and abs(paid - with_tip) > tolerance:
            warnings.append(InsufficientDataError(
                f"Sale {sale.external_id}: payments {paid} do not match total {sale.total} "
                f"(tip {sale.tip_total})",
                details={"paid": str(paid), "total": str(sale.total), "tip": str(sale.tip_total)},
            ))

        for warning in warnings:
            logger.warning(warning.message)
        return warnings

    @staticmethod
    def _profit_margin(total: Decimal, recipe_cost: Decimal) -> Decimal:
        if not total:
            return ZERO
        return q4((total - recipe_cost) / total)

    @staticmethod
    def _peek_external_id(raw_sale: Any) -> Optional[str]:
        if isinstance(raw_sale, dict) and raw_sale.get("NumeroOrden") is not None:
            return str(raw_sale["NumeroOrden"]).strip()[:50] or None
        return None

    def _duplicate(self, integration: IntegrationConnection, existing: Sale) -> SaleOutcome:
        self.sync_log.log(
            integration.tenant_id, integration.id, "sale_duplicate",
            f"Sale {existing.external_id} already received; skipped",
            sale_id=existing.id, external_id=existing.external_id,
        )
        self._commit_audit()
        return SaleOutcome(status="duplicate", external_id=existing.external_id, internal_id=existing.id)

    def _storage_failure(
        self,
        integration: IntegrationConnection,
        external_id: Optional[str],
        exc: SQLAlchemyError,
        transient: bool,
    ) -> SaleOutcome:
        logger.error(f"Storage failure for SR sale {external_id}: {exc}", exc_info=True)
        error = StorageError(
            f"Failed to store sale {external_id}",
            transient=transient,
            details={"reason": exc.__class__.__name__},
        )
        self.sync_log.log(
            integration.tenant_id, integration.id, "error_processing", error.message,
            level="error", external_id=external_id,
            details={"reason": exc.__class__.__name__, "retryable": transient},
        )
        self._commit_audit()
        return self._failed(external_id, error)

    @staticmethod
    def _failed(external_id: Optional[str], error: SRIntegrationError) -> SaleOutcome:
        payload = error.to_dict()
        payload.setdefault("retryable", False)
        return SaleOutcome(status="failed", external_id=external_id, error=payload)

    def _commit_audit(self) -> None:
        """Persist audit entries written outside a sale transaction."""
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to persist SR sync log entry", exc_info=True)
