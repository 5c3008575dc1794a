"""
Identity mapping: resolve SR identifiers to internal entities.

- Product codes   -> menu items (unknown codes are auto-registered as unmapped)
- Warehouse codes -> branches (unmapped is a hard error)
- Payment methods -> payment methods (unmapped is a soft warning)
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from rapidfuzz import fuzz, process
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sr_integration.core.errors import UnmappedWarehouseError
from sr_integration.models.integration import IntegrationConnection, WarehouseMapping, PaymentMethodMapping
from sr_integration.models.menu import MenuItem
from sr_integration.models.product_mapping import ProductMapping

logger = logging.getLogger(__name__)


def normalize_method_name(name: str) -> str:
    return " ".join(name.split()).casefold()


def company_id_mismatch(integration: IntegrationConnection, company_id: str) -> Optional[str]:
    """Return why ``company_id`` is not trusted for this integration, or None if it matches."""
    expected = integration.sr_company_id
    if not expected:
        return f"Integration {integration.id} has no SR company id configured"
    if expected.strip() != company_id:
        return f"Company id '{company_id}' does not match this integration"
    return None


class IdentityMappingService:
    """
    Resolves external identifiers for one tenant/integration.

    Product resolution never raises on a miss: it upserts an unmapped
    ProductMapping (unique on tenant + integration + external id) and returns
    None. A reviewer later maps it with ``map_product``.
    """

    # Minimum rapidfuzz score (0-100) for a name suggestion to be recorded
    SUGGESTION_MIN_SCORE = 85

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def resolve_product(
        self,
        tenant_id: UUID,
        integration_id: UUID,
        external_id: str,
        external_name: Optional[str] = None,
    ) -> Optional[UUID]:
        """
        Return the mapped menu item id for an SR product, or None.

        Every call bumps ``last_seen_at`` / ``times_seen`` on the single
        mapping row for this product, creating it on first sight.
        """
        mapping = self.get_product_mapping(tenant_id, integration_id, external_id)
        if mapping is None:
            mapping = self._register_unmapped(tenant_id, integration_id, external_id, external_name)

        mapping.times_seen = ProductMapping.times_seen + 1
        mapping.last_seen_at = datetime.now(timezone.utc)
        if external_name and not mapping.external_name:
            mapping.external_name = external_name[:200]
        self.db.flush()

        if mapping.is_active and mapping.menu_item_id is not None:
            return mapping.menu_item_id
        return None

    def get_product_mapping(
        self,
        tenant_id: UUID,
        integration_id: UUID,
        external_id: str,
    ) -> Optional[ProductMapping]:
        stmt = select(ProductMapping).where(
            ProductMapping.tenant_id == tenant_id,
            ProductMapping.integration_id == integration_id,
            ProductMapping.external_id == external_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def _register_unmapped(
        self,
        tenant_id: UUID,
        integration_id: UUID,
        external_id: str,
        external_name: Optional[str],
    ) -> ProductMapping:
        suggestion = self.suggest_menu_item(tenant_id, external_name) if external_name else None

        try:
            with self.db.begin_nested():
                mapping = ProductMapping(
                    tenant_id=tenant_id,
                    integration_id=integration_id,
                    external_id=external_id,
                    external_name=external_name[:200] if external_name else None,
                    menu_item_id=None,
                    confidence="auto",
                    is_active=True,
                    times_seen=0,
                    suggested_menu_item_id=suggestion[0] if suggestion else None,
                    suggestion_score=suggestion[1] if suggestion else None,
                    notes="Awaiting manual mapping",
                )
                self.db.add(mapping)
        except IntegrityError:
            # A concurrent request registered the same product first
            mapping = self.get_product_mapping(tenant_id, integration_id, external_id)
            if mapping is None:
                raise
            return mapping

        logger.info(f"Registered unmapped SR product {external_id} ({external_name})")
        return mapping

    def suggest_menu_item(self, tenant_id: UUID, name: str) -> Optional[tuple[UUID, Decimal]]:
        """Best fuzzy name match among the tenant's active menu items, if good enough."""
        rows = self.db.execute(
            select(MenuItem.id, MenuItem.name).where(
                MenuItem.tenant_id == tenant_id,
                MenuItem.is_active == True,  # noqa: E712
            )
        ).all()
        if not rows:
            return None

        choices = {row.id: row.name for row in rows}
        best = process.extractOne(
            name,
            choices,
            scorer=fuzz.token_sort_ratio,
            processor=lambda s: s.lower().strip(),
            score_cutoff=self.SUGGESTION_MIN_SCORE,
        )
        if not best:
            return None

        _, score, menu_item_id = best
        return menu_item_id, Decimal(str(round(score, 2)))

    def map_product(self, tenant_id: UUID, mapping_id: UUID, menu_item_id: UUID) -> ProductMapping:
        """
        Manually map an SR product to a menu item.

        Raises:
            LookupError: mapping or menu item not found for this tenant
        """
        mapping = self.db.get(ProductMapping, mapping_id)
        if mapping is None or mapping.tenant_id != tenant_id:
            raise LookupError("Product mapping not found")

        menu_item = self.db.get(MenuItem, menu_item_id)
        if menu_item is None or menu_item.tenant_id != tenant_id:
            raise LookupError("Menu item not found")

        mapping.menu_item_id = menu_item.id
        mapping.confidence = "manual"
        mapping.is_active = True
        mapping.notes = None
        self.db.flush()
        return mapping

    def list_product_mappings(
        self,
        tenant_id: UUID,
        integration_id: UUID,
        unmapped_only: bool = False,
    ) -> list[ProductMapping]:
        stmt = select(ProductMapping).where(
            ProductMapping.tenant_id == tenant_id,
            ProductMapping.integration_id == integration_id,
        )
        if unmapped_only:
            stmt = stmt.where(ProductMapping.menu_item_id.is_(None))
        stmt = stmt.order_by(ProductMapping.last_seen_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Warehouses and payment methods
    # ------------------------------------------------------------------

    def resolve_branch(self, integration: IntegrationConnection, warehouse_code: str) -> UUID:
        """
        Resolve an SR warehouse code to a branch id.

        Falls back to the integration's default branch; never picks an
        arbitrary branch.

        Raises:
            UnmappedWarehouseError: no mapping and no default branch
        """
        branch_id = self.db.execute(
            select(WarehouseMapping.branch_id).where(
                WarehouseMapping.integration_id == integration.id,
                WarehouseMapping.warehouse_code == warehouse_code,
            )
        ).scalar_one_or_none()

        if branch_id is not None:
            return branch_id

        if integration.default_branch_id is not None:
            logger.info(
                f"Warehouse '{warehouse_code}' not mapped; using default branch "
                f"{integration.default_branch_id}"
            )
            return integration.default_branch_id

        raise UnmappedWarehouseError(
            f"Warehouse '{warehouse_code}' is not mapped to a branch",
            details={"warehouse_code": warehouse_code},
        )

    def resolve_payment_method(self, integration_id: UUID, method_name: str) -> Optional[UUID]:
        """Return the internal payment method id, or None when unmapped."""
        payment_method_id = self.db.execute(
            select(PaymentMethodMapping.payment_method_id).where(
                PaymentMethodMapping.integration_id == integration_id,
                PaymentMethodMapping.method_name == normalize_method_name(method_name),
            )
        ).scalar_one_or_none()

        if payment_method_id is None:
            logger.warning(f"SR payment method '{method_name}' is not mapped")
        return payment_method_id
