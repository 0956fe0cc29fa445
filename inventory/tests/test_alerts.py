from decimal import Decimal

import pytest

from inventory.models import ConsumptionRecord, StockItem
from inventory.services import (
    AlertService, LowStockNotifier, ConsumptionService, InventorySettingsService,
)


@pytest.fixture
def stocked(flour, eggs, make_lot):
    make_lot(flour, 10, "1.00")
    make_lot(eggs, 5, "0.25")


@pytest.mark.django_db
class TestLowStock:

    def test_lists_items_at_or_below_threshold(self, stocked, flour, eggs):
        result = AlertService.list_low_stock()

        assert [row["stock_item_id"] for row in result["items"]] == [eggs.id]
        row = result["items"][0]
        assert row["threshold"] == "12.0000"
        assert row["shortage"] == "7.0000"
        assert row["suggested_order_quantity"] == "7.0000"

    def test_reorder_level_wins_over_minimum(self, make_item, make_lot):
        oil = make_item("Oil", "l", minimum_stock="2", reorder_level="20", reorder_quantity="40")
        make_lot(oil, 15, "3.00")

        result = AlertService.list_low_stock()

        row = next(r for r in result["items"] if r["stock_item_id"] == oil.id)
        assert row["threshold"] == "20.0000"
        assert row["suggested_order_quantity"] == "40.0000"

    def test_restocked_item_leaves_list(self, stocked, eggs, make_lot):
        assert AlertService.list_low_stock()["count"] == 1

        make_lot(eggs, 10, "0.25")

        assert AlertService.list_low_stock()["count"] == 0

    def test_inactive_items_ignored(self, stocked, eggs):
        StockItem.objects.filter(id=eggs.id).update(is_active=False)

        assert AlertService.list_low_stock()["count"] == 0

    def test_branch_filter(self, make_item):
        make_item("Butter", "kg", minimum_stock="1", branch_id=1)
        make_item("Cream", "l", minimum_stock="1", branch_id=2)

        result = AlertService.list_low_stock(branch_id=2)

        assert [row["name"] for row in result["items"]] == ["Cream"]


@pytest.mark.django_db
class TestLowStockNotifier:

    def test_sends_once_per_level(self, stocked, eggs, telegram):
        assert LowStockNotifier.notify(eggs) is True
        assert LowStockNotifier.notify(eggs) is False

        assert len(telegram.messages) == 1
        assert "Eggs" in telegram.messages[0]

    def test_new_level_notifies_again(self, stocked, eggs, telegram):
        LowStockNotifier.notify(eggs)
        ConsumptionService.record_manual_consumption(stock_item_id=eggs.id, quantity="1")
        eggs.refresh_from_db()

        assert LowStockNotifier.notify(eggs) is True
        assert len(telegram.messages) == 2

    def test_failed_send_is_retried(self, stocked, eggs, telegram):
        telegram.ok = False
        assert LowStockNotifier.notify(eggs) is False

        telegram.ok = True
        assert LowStockNotifier.notify(eggs) is True

    def test_without_telegram_config(self, stocked, eggs):
        assert LowStockNotifier.notify(eggs) is False

    def test_disabled_in_settings(self, stocked, eggs, telegram):
        InventorySettingsService.update(notify_telegram=False)

        assert LowStockNotifier.notify(eggs) is False
        assert telegram.messages == []

    def test_check_all(self, stocked, telegram):
        result = AlertService.check_all()

        assert result["checked"] == 1
        assert result["notified"] == 1

    def test_check_all_when_alerts_disabled(self, stocked, telegram):
        InventorySettingsService.update(low_stock_alert_enabled=False)

        assert AlertService.check_all()["notified"] == 0


@pytest.mark.django_db
class TestAlertAfterCommit:

    def test_consumption_triggers_alert(self, flour, make_lot, telegram, django_capture_on_commit_callbacks):
        make_lot(flour, 3, "1.00")

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            ConsumptionService.record_manual_consumption(
                stock_item_id=flour.id,
                quantity="1.5",
                order_type=ConsumptionRecord.OrderType.WASTAGE,
            )

        assert len(callbacks) == 1
        assert len(telegram.messages) == 1
        assert "1.5000" in telegram.messages[0]

    def test_alert_failure_does_not_break_update(self, flour, make_lot, monkeypatch,
                                                 django_capture_on_commit_callbacks):
        make_lot(flour, 3, "1.00")

        def broken(stock_item_id):
            raise RuntimeError("cache down")

        monkeypatch.setattr(AlertService, "on_inventory_update", broken)

        with django_capture_on_commit_callbacks(execute=True):
            ConsumptionService.record_manual_consumption(stock_item_id=flour.id, quantity="2")

        flour.refresh_from_db()
        assert flour.current_stock == Decimal("1")
