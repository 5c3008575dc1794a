"""
Tests for low-stock alert evaluation and at most one active alert per ingredient.
"""
from decimal import Decimal
from uuid import uuid4
import pytest
from sqlalchemy import select

from sr_integration.models import LowStockAlert, SyncLog
from sr_integration.services.stock_alerts import StockAlertService, classify_stock


class TestClassifyStock:
    """minimum_stock = 1, reorder_point = 2."""

    @pytest.mark.parametrize("stock,expected", [
        ("-0.5", ("out_of_stock", "critical")),
        ("0", ("out_of_stock", "critical")),
        ("0.5", ("low_stock", "critical")),
        ("1", ("low_stock", "critical")),
        ("1.5", ("approaching", "warning")),
        ("2", ("approaching", "warning")),
        ("2.01", None),
    ])
    def test_thresholds(self, stock, expected):
        assert classify_stock(Decimal(stock), Decimal("1"), Decimal("2")) == expected


class TestEvaluate:
    """Tests for StockAlertService.evaluate."""

    def test_healthy_stock_no_alert(self, db, integration, ingredient, branch_id):
        action = StockAlertService(db, integration.id).evaluate(
            integration.tenant_id, branch_id, ingredient.id, Decimal("9.685")
        )
        assert action.action == "none"
        assert db.execute(select(LowStockAlert)).scalars().all() == []

    def test_creates_alert_and_sync_log(self, db, integration, ingredient, branch_id):
        """Should open one alert and record an alert_created audit entry."""
        action = StockAlertService(db, integration.id).evaluate(
            integration.tenant_id, branch_id, ingredient.id, Decimal("1.5")
        )
        db.commit()

        assert action.action == "created"
        assert action.alert_type == "approaching"
        assert action.severity == "warning"
        log = db.execute(select(SyncLog).where(SyncLog.log_type == "alert_created")).scalar_one()
        assert log.details["ingredient_id"] == str(ingredient.id)

    def test_second_breach_updates_in_place(self, db, integration, ingredient, branch_id):
        """Two deductions below the reorder point leave one active alert with fresh stock."""
        service = StockAlertService(db, integration.id)
        service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("1.8"))
        second = service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("0.6"))
        db.commit()

        alerts = db.execute(select(LowStockAlert).where(LowStockAlert.status == "active")).scalars().all()
        assert len(alerts) == 1
        assert second.action == "updated"
        assert alerts[0].current_stock == Decimal("0.6")
        assert alerts[0].alert_type == "low_stock"
        assert alerts[0].severity == "critical"

    def test_recovery_does_not_resolve(self, db, integration, ingredient, branch_id):
        """Should keep the alert active when stock rises above the reorder point."""
        service = StockAlertService(db, integration.id)
        service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("0"))
        action = service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("8"))
        db.commit()

        assert action.action == "updated"
        alert = db.execute(select(LowStockAlert)).scalar_one()
        assert alert.status == "active"
        assert alert.current_stock == Decimal("8")

    def test_suggested_order_quantity(self, db, integration, ingredient, branch_id):
        """Without reorder_quantity: 2 * reorder_point - stock."""
        service = StockAlertService(db, integration.id)
        action = service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("0.5"))
        assert action.alert.suggested_order_quantity == Decimal("3.5")

        ingredient.reorder_quantity = Decimal("12")
        action = service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("0.4"))
        assert action.alert.suggested_order_quantity == Decimal("12")


class TestTransitions:
    def _open_alert(self, db, integration, ingredient, branch_id):
        action = StockAlertService(db, integration.id).evaluate(
            integration.tenant_id, branch_id, ingredient.id, Decimal("0")
        )
        db.commit()
        return action.alert

    def test_acknowledge(self, db, integration, ingredient, branch_id):
        alert = self._open_alert(db, integration, ingredient, branch_id)
        acknowledged = StockAlertService(db).acknowledge(integration.tenant_id, alert.id)
        assert acknowledged.status == "acknowledged"
        assert acknowledged.acknowledged_at is not None

    def test_acknowledge_twice_rejected(self, db, integration, ingredient, branch_id):
        alert = self._open_alert(db, integration, ingredient, branch_id)
        service = StockAlertService(db)
        service.acknowledge(integration.tenant_id, alert.id)
        with pytest.raises(ValueError):
            service.acknowledge(integration.tenant_id, alert.id)

    def test_resolve_allows_new_alert(self, db, integration, ingredient, branch_id):
        """After explicit resolution a later breach opens a new alert."""
        alert = self._open_alert(db, integration, ingredient, branch_id)
        service = StockAlertService(db, integration.id)
        service.resolve(integration.tenant_id, alert.id)
        db.commit()

        action = service.evaluate(integration.tenant_id, branch_id, ingredient.id, Decimal("0.5"))
        db.commit()

        assert action.action == "created"
        assert len(db.execute(select(LowStockAlert)).scalars().all()) == 2

    def test_other_tenant_cannot_resolve(self, db, integration, ingredient, branch_id):
        alert = self._open_alert(db, integration, ingredient, branch_id)
        with pytest.raises(LookupError):
            StockAlertService(db).resolve(uuid4(), alert.id)
