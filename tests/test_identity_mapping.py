"""
Tests for SR identifier resolution: products, warehouses and payment methods.
"""
from decimal import Decimal
from uuid import uuid4
import pytest
from sqlalchemy import select

from sr_integration.core.errors import UnmappedWarehouseError
from sr_integration.models import MenuItem, ProductMapping
from sr_integration.services.identity_mapping import (
    IdentityMappingService,
    company_id_mismatch,
    normalize_method_name,
)


class TestResolveProduct:
    """Tests for IdentityMappingService.resolve_product."""

    def test_mapped_product(self, db, integration, product_mapping, menu_item):
        service = IdentityMappingService(db)
        assert service.resolve_product(integration.tenant_id, integration.id, "01005") == menu_item.id

    def test_unknown_product_registered_once(self, db, integration):
        """Should create one unmapped row and only bump it on later sightings."""
        service = IdentityMappingService(db)

        assert service.resolve_product(integration.tenant_id, integration.id, "99999", "REFRESCO") is None
        db.commit()
        first_seen = db.execute(select(ProductMapping)).scalar_one().last_seen_at

        assert service.resolve_product(integration.tenant_id, integration.id, "99999", "REFRESCO") is None
        db.commit()

        mappings = db.execute(select(ProductMapping)).scalars().all()
        assert len(mappings) == 1
        assert mappings[0].menu_item_id is None
        assert mappings[0].confidence == "auto"
        assert mappings[0].times_seen == 2
        assert mappings[0].external_name == "REFRESCO"
        assert mappings[0].last_seen_at >= first_seen

    def test_inactive_mapping_returns_none(self, db, integration, product_mapping):
        product_mapping.is_active = False
        db.commit()

        service = IdentityMappingService(db)
        assert service.resolve_product(integration.tenant_id, integration.id, "01005") is None

    def test_fuzzy_suggestion_recorded_not_applied(self, db, integration, menu_item):
        """A close name match is stored as a suggestion for the reviewer."""
        service = IdentityMappingService(db)
        service.resolve_product(integration.tenant_id, integration.id, "02001", "HAMBURGUESA CLASICA")
        db.commit()

        mapping = db.execute(select(ProductMapping)).scalar_one()
        assert mapping.menu_item_id is None
        assert mapping.suggested_menu_item_id == menu_item.id
        assert mapping.suggestion_score >= Decimal("85")

    def test_no_suggestion_for_unrelated_name(self, db, integration, menu_item):
        service = IdentityMappingService(db)
        assert service.suggest_menu_item(integration.tenant_id, "Agua mineral") is None

    def test_map_product_makes_future_sales_resolve(self, db, integration, menu_item):
        service = IdentityMappingService(db)
        service.resolve_product(integration.tenant_id, integration.id, "03003")
        mapping = service.get_product_mapping(integration.tenant_id, integration.id, "03003")

        service.map_product(integration.tenant_id, mapping.id, menu_item.id)
        db.commit()

        assert mapping.confidence == "manual"
        assert service.resolve_product(integration.tenant_id, integration.id, "03003") == menu_item.id

    def test_map_product_rejects_other_tenant_item(self, db, integration):
        service = IdentityMappingService(db)
        service.resolve_product(integration.tenant_id, integration.id, "03003")
        mapping = service.get_product_mapping(integration.tenant_id, integration.id, "03003")

        foreign = MenuItem(tenant_id=uuid4(), name="Ajeno", price=Decimal("1"))
        db.add(foreign)
        db.commit()

        with pytest.raises(LookupError):
            service.map_product(integration.tenant_id, mapping.id, foreign.id)

    def test_list_unmapped_only(self, db, integration, product_mapping):
        service = IdentityMappingService(db)
        service.resolve_product(integration.tenant_id, integration.id, "77777")
        db.commit()

        unmapped = service.list_product_mappings(integration.tenant_id, integration.id, unmapped_only=True)
        assert [m.external_id for m in unmapped] == ["77777"]
        assert len(service.list_product_mappings(integration.tenant_id, integration.id)) == 2


class TestResolveBranch:
    def test_mapped_warehouse(self, db, integration, branch_id):
        assert IdentityMappingService(db).resolve_branch(integration, "ALM1") == branch_id

    def test_falls_back_to_default_branch(self, db, integration):
        default_branch = uuid4()
        integration.default_branch_id = default_branch
        db.commit()

        assert IdentityMappingService(db).resolve_branch(integration, "ALM9") == default_branch

    def test_unmapped_without_default_raises(self, db, integration):
        """Should never pick an arbitrary branch."""
        with pytest.raises(UnmappedWarehouseError) as exc_info:
            IdentityMappingService(db).resolve_branch(integration, "ALM9")
        assert exc_info.value.details == {"warehouse_code": "ALM9"}


class TestResolvePaymentMethod:
    def test_name_is_normalized(self, db, integration):
        """'  EFECTIVO ' matches the stored 'efectivo' mapping."""
        service = IdentityMappingService(db)
        assert service.resolve_payment_method(integration.id, "  EFECTIVO ") is not None
        assert normalize_method_name("Tarjeta   de  Credito") == "tarjeta de credito"

    def test_unmapped_returns_none(self, db, integration):
        assert IdentityMappingService(db).resolve_payment_method(integration.id, "Vales") is None


class TestCompanyIdCheck:
    def test_match(self, integration):
        assert company_id_mismatch(integration, integration.sr_company_id) is None

    def test_mismatch(self, integration):
        assert company_id_mismatch(integration, "OTRA-EMPRESA") is not None

    def test_unconfigured_never_trusted(self, db, integration):
        integration.sr_company_id = None
        assert company_id_mismatch(integration, "SR-EMP-001") is not None
