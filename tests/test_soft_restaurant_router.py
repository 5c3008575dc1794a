"""
Tests for the Soft Restaurant webhook endpoints and authentication.
"""
from decimal import Decimal
from uuid import uuid4
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from sr_integration.models import InventoryMovement, ProductMapping, Sale
from sr_integration.routers import soft_restaurant as sr_router
from sr_integration.schemas.soft_restaurant import SaleOutcome
from sr_integration.services.sale_ingestion import IngestionResult


class TestWebhookAuth:
    """Tests for API key authentication on /api/soft-restaurant/*."""

    def test_missing_key(self, client: TestClient, integration, make_payload):
        response = client.post("/api/soft-restaurant/webhook", json=make_payload())

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_invalid_key(self, client: TestClient, integration, make_payload):
        response = client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(),
            headers={"Authorization": "Bearer sr_wrong"},
        )
        assert response.status_code == 401

    def test_x_api_key_header(self, client: TestClient, integration, auth_headers, make_payload):
        api_key = auth_headers["Authorization"].split()[1]

        response = client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(),
            headers={"x-api-key": api_key},
        )
        assert response.status_code == 200

    def test_disconnected_integration(self, client: TestClient, db: Session, integration, auth_headers,
                                      make_payload):
        integration.status = "disconnected"
        db.commit()

        response = client.post("/api/soft-restaurant/webhook", json=make_payload(), headers=auth_headers)
        assert response.status_code == 403


class TestWebhook:
    """Tests for POST /api/soft-restaurant/webhook."""

    def test_webhook_processes_sale(self, client: TestClient, db: Session, integration, recipe,
                                    product_mapping, stocked, auth_headers, make_payload):
        response = client.post("/api/soft-restaurant/webhook", json=make_payload(), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["total"] == 1
        assert data["processed"] == 1
        assert data["results"][0]["status"] == "processed"
        assert data["results"][0]["external_id"] == "51795"

        db.expire_all()
        assert db.execute(select(Sale)).scalar_one().external_id == "51795"

    def test_redelivery_reports_duplicate(self, client: TestClient, db: Session, integration, recipe,
                                          product_mapping, stocked, auth_headers, make_payload):
        client.post("/api/soft-restaurant/webhook", json=make_payload(), headers=auth_headers)
        response = client.post("/api/soft-restaurant/webhook", json=make_payload(), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["duplicates"] == 1
        assert data["success"] is True

        db.expire_all()
        movements = db.execute(select(InventoryMovement)).scalars().all()
        assert len(movements) == 2  # opening stock + one deduction

    def test_failed_sale_reported_in_200(self, client: TestClient, integration, auth_headers, make_sale,
                                         make_payload):
        """A bad sale does not fail the batch; the response carries its error."""
        broken = make_sale(external_id="51796")
        del broken["Conceptos"]

        response = client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(make_sale(), broken),
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert [r["status"] for r in data["results"]] == ["processed", "failed"]
        assert data["results"][1]["error"]["code"] == "validation_error"

    def test_company_mismatch_rejects_batch(self, client: TestClient, db: Session, integration, auth_headers,
                                            make_payload):
        response = client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(company_id="OTRA-EMPRESA"),
            headers=auth_headers,
        )

        assert response.status_code == 403
        assert response.json()["error"] == "company_id_mismatch"
        db.expire_all()
        assert db.execute(select(Sale)).first() is None

    @pytest.mark.parametrize("payload", [[], {"Ventas": []}, {"IdEmpresa": "SR-EMP-001"}])
    def test_malformed_payload(self, client: TestClient, integration, auth_headers, payload):
        response = client.post("/api/soft-restaurant/webhook", json=payload, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_payload"


class TestRetryTransientFailures:
    """Tests for the in-request retry of transient storage failures."""

    class FakeService:
        def __init__(self, fail_attempts):
            self.fail_attempts = fail_attempts
            self.calls = []

        def ingest_sale(self, integration, company_id, raw_sale, attempt=0):
            self.calls.append((raw_sale["NumeroOrden"], attempt))
            if attempt < self.fail_attempts:
                return _transient_failure(raw_sale["NumeroOrden"])
            return SaleOutcome(status="processed", external_id=raw_sale["NumeroOrden"], internal_id=uuid4())

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(sr_router.time, "sleep", lambda seconds: None)

    def test_retries_only_transient_failures(self):
        raw_sales = [{"NumeroOrden": "1"}, {"NumeroOrden": "2"}]
        result = IngestionResult("SR-EMP-001")
        result.outcomes = [
            SaleOutcome(status="processed", external_id="1", internal_id=uuid4()),
            _transient_failure("2"),
        ]
        service = self.FakeService(fail_attempts=2)

        sr_router.retry_transient_failures(service, None, raw_sales, result)

        assert service.calls == [("2", 1), ("2", 2)]
        assert [o.status for o in result.outcomes] == ["processed", "processed"]

    def test_gives_up_after_max_attempts(self):
        raw_sales = [{"NumeroOrden": "1"}]
        result = IngestionResult("SR-EMP-001")
        result.outcomes = [_transient_failure("1")]
        service = self.FakeService(fail_attempts=99)

        sr_router.retry_transient_failures(service, None, raw_sales, result)

        assert len(service.calls) == sr_router.settings.SR_MAX_RETRY_COUNT
        assert result.outcomes[0].status == "failed"

    def test_permanent_failure_not_retried(self):
        result = IngestionResult("SR-EMP-001")
        result.outcomes = [SaleOutcome(status="failed", external_id="1", error={"code": "validation_error"})]
        service = self.FakeService(fail_attempts=0)

        sr_router.retry_transient_failures(service, None, [{"NumeroOrden": "1"}], result)

        assert service.calls == []


class TestCancelEndpoint:
    """Tests for POST /api/soft-restaurant/cancel."""

    def test_cancel(self, client: TestClient, db: Session, integration, recipe, product_mapping, stocked,
                    auth_headers, make_payload):
        client.post("/api/soft-restaurant/webhook", json=make_payload(), headers=auth_headers)

        response = client.post(
            "/api/soft-restaurant/cancel",
            json={"IdEmpresa": "SR-EMP-001", "NumeroOrden": "51795", "TipoCancelacion": "CLIENTE"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["movements_reversed"] == 1

    def test_cancel_unknown_sale(self, client: TestClient, integration, auth_headers):
        response = client.post(
            "/api/soft-restaurant/cancel",
            json={"IdEmpresa": "SR-EMP-001", "NumeroOrden": "00000", "TipoCancelacion": "CLIENTE"},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "sale_not_found"

    def test_cancel_malformed(self, client: TestClient, integration, auth_headers):
        response = client.post("/api/soft-restaurant/cancel", json={"NumeroOrden": "1"}, headers=auth_headers)
        assert response.status_code == 422


class TestProductMappings:
    """Tests for the product mapping review endpoints."""

    def test_list_unmapped(self, client: TestClient, integration, product_mapping, auth_headers, make_sale,
                           make_payload):
        client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(make_sale(product_id="99999")),
            headers=auth_headers,
        )

        response = client.get("/api/soft-restaurant/product-mappings?unmapped=true", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [m["external_id"] for m in data] == ["99999"]
        assert data[0]["menu_item_id"] is None

    def test_map_product(self, client: TestClient, db: Session, integration, menu_item, auth_headers,
                         make_sale, make_payload):
        client.post(
            "/api/soft-restaurant/webhook",
            json=make_payload(make_sale(product_id="99999")),
            headers=auth_headers,
        )
        mapping = db.execute(select(ProductMapping)).scalar_one()

        response = client.put(
            f"/api/soft-restaurant/product-mappings/{mapping.id}",
            json={"menu_item_id": str(menu_item.id)},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["menu_item_id"] == str(menu_item.id)
        assert response.json()["confidence"] == "manual"

    def test_map_unknown_mapping(self, client: TestClient, integration, menu_item, auth_headers):
        response = client.put(
            f"/api/soft-restaurant/product-mappings/{uuid4()}",
            json={"menu_item_id": str(menu_item.id)},
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestInventoryEndpoints:
    """Tests for /api/inventory stock and alert endpoints."""

    def test_get_stock(self, client: TestClient, integration, ingredient, stocked, branch_id, auth_headers):
        response = client.get(f"/api/inventory/stock/{branch_id}/{ingredient.id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["current_stock"]) == Decimal("10")
        assert data["unit"] == "kg"

    def test_restock_converts_units(self, client: TestClient, integration, ingredient, branch_id, auth_headers):
        response = client.post(
            "/api/inventory/restock",
            json={
                "branch_id": str(branch_id),
                "ingredient_id": str(ingredient.id),
                "quantity": "500",
                "unit": "g",
                "notes": "Entrega proveedor",
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert Decimal(response.json()["current_stock"]) == Decimal("0.5")

    def test_restock_rejects_zero_and_bad_unit(self, client: TestClient, integration, ingredient, branch_id,
                                               auth_headers):
        body = {"branch_id": str(branch_id), "ingredient_id": str(ingredient.id)}

        zero = client.post("/api/inventory/restock", json=dict(body, quantity="0"), headers=auth_headers)
        bad_unit = client.post(
            "/api/inventory/restock", json=dict(body, quantity="1", unit="l"), headers=auth_headers
        )

        rounds_to_zero = client.post(
            "/api/inventory/restock", json=dict(body, quantity="0.01", unit="g"), headers=auth_headers
        )
        oversized = client.post("/api/inventory/restock", json=dict(body, quantity="1e30"), headers=auth_headers)

        assert zero.status_code == 400
        assert bad_unit.status_code == 400
        assert rounds_to_zero.status_code == 400
        assert oversized.status_code == 422

    def test_write_off_raises_alert_then_acknowledge_and_resolve(self, client: TestClient, integration,
                                                                 ingredient, stocked, branch_id,
                                                                 auth_headers):
        response = client.post(
            "/api/inventory/restock",
            json={"branch_id": str(branch_id), "ingredient_id": str(ingredient.id), "quantity": "-9.5"},
            headers=auth_headers,
        )
        assert response.status_code == 201

        alerts = client.get("/api/inventory/alerts", headers=auth_headers).json()
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "low_stock"
        alert_id = alerts[0]["id"]

        acknowledged = client.post(f"/api/inventory/alerts/{alert_id}/acknowledge", headers=auth_headers)
        assert acknowledged.status_code == 200
        assert acknowledged.json()["status"] == "acknowledged"

        again = client.post(f"/api/inventory/alerts/{alert_id}/acknowledge", headers=auth_headers)
        assert again.status_code == 409

        resolved = client.post(f"/api/inventory/alerts/{alert_id}/resolve", headers=auth_headers)
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert client.get("/api/inventory/alerts", headers=auth_headers).json() == []

    def test_unknown_alert(self, client: TestClient, integration, auth_headers):
        response = client.post(f"/api/inventory/alerts/{uuid4()}/resolve", headers=auth_headers)
        assert response.status_code == 404


def _transient_failure(external_id: str) -> SaleOutcome:
    return SaleOutcome(
        status="failed",
        external_id=external_id,
        error={"code": "storage_error", "message": "connection reset", "retryable": True},
    )
