from decimal import Decimal

import pytest

from inventory.models import StockItem, StockMovement
from inventory.services import (
    StockLevelService, ConsumptionService, PurchaseOrderService, PurchaseReceivingService,
    ConsistencyError, NotFoundError, ValidationError,
)


@pytest.mark.django_db
class TestCounterUpdates:

    def test_movements_chain_before_and_after(self, flour, make_lot):
        make_lot(flour, 4, "1.00")
        make_lot(flour, 6, "1.20")
        ConsumptionService.record_manual_consumption(stock_item_id=flour.id, quantity="3")

        movements = list(StockMovement.objects.filter(stock_item=flour).order_by("id"))

        assert [(m.quantity_before, m.quantity_after) for m in movements] == [
            (Decimal("0"), Decimal("4")),
            (Decimal("4"), Decimal("10")),
            (Decimal("10"), Decimal("7")),
        ]

    def test_non_positive_delta_rejected(self, flour):
        with pytest.raises(ValidationError):
            StockLevelService.increment(flour, Decimal("0"), StockMovement.MovementType.ADJUSTMENT_PLUS)
        with pytest.raises(ValidationError):
            StockLevelService.decrement(flour, Decimal("-1"), StockMovement.MovementType.ADJUSTMENT_MINUS)

    def test_lock_missing_item(self, flour):
        with pytest.raises(NotFoundError):
            StockLevelService.lock_items([flour.id, 987654])

    def test_list_movements_filters(self, flour, eggs, make_lot):
        make_lot(flour, 4, "1.00")
        make_lot(eggs, 12, "0.25")

        result = StockLevelService.list_movements(stock_item_id=eggs.id)

        assert len(result["movements"]) == 1
        assert result["movements"][0]["movement_type"] == "PURCHASE_IN"

    def test_list_movements_invalid_type(self, db):
        with pytest.raises(ValidationError):
            StockLevelService.list_movements(movement_type="TELEPORT")


@pytest.mark.django_db
class TestReconcile:

    def test_consistent_ledger(self, flour, eggs, make_lot):
        make_lot(flour, 4, "1.00")

        result = StockLevelService.reconcile()

        assert result["checked"] == 2
        assert result["drifts"] == []

    def test_drift_is_reported_not_repaired(self, flour, make_lot, telegram):
        make_lot(flour, 4, "1.00")
        StockItem.objects.filter(id=flour.id).update(current_stock=Decimal("5"))

        with pytest.raises(ConsistencyError) as exc:
            StockLevelService.reconcile()

        drift = exc.value.drifts[0]
        assert drift["stock_item_id"] == flour.id
        assert drift["difference"] == "1.0000"
        assert len(telegram.messages) == 1

        flour.refresh_from_db()
        assert flour.current_stock == Decimal("5")

    def test_single_item(self, flour, eggs, make_lot):
        make_lot(eggs, 6, "0.25")
        StockItem.objects.filter(id=flour.id).update(current_stock=Decimal("1"))

        assert StockLevelService.reconcile(stock_item_id=eggs.id)["checked"] == 1
        with pytest.raises(ConsistencyError):
            StockLevelService.reconcile(stock_item_id=flour.id, notify=False)

    def test_unknown_item(self, db):
        with pytest.raises(NotFoundError):
            StockLevelService.compute_drift(stock_item_id=31337)

    def test_interleaved_receive_consume_reverse(self, supplier, flour):
        order = PurchaseOrderService.create(
            supplier_id=supplier.id,
            items=[{"stock_item_id": flour.id, "quantity": "10", "unit_price": "1.20"}],
        )
        line_id = order["order"]["items"][0]["id"]

        def receive(quantity):
            PurchaseReceivingService.receive_items(order["id"], [{"item_id": line_id, "quantity": quantity}])

        def consume(quantity, ref):
            result = ConsumptionService.record_consumption(
                dish_id=300,
                quantity_sold=1,
                order_ref=ref,
                stock_item_overrides=[{"stock_item_id": flour.id, "quantity": quantity}],
            )
            return result["records"][0]["id"]

        def assert_consistent(expected):
            flour.refresh_from_db()
            assert flour.current_stock == Decimal(expected)
            assert StockLevelService.reconcile(stock_item_id=flour.id, notify=False)["drifts"] == []

        receive("4")
        assert_consistent("4")

        first = consume("3", "R-7001")
        assert_consistent("1")

        receive("6")
        assert_consistent("7")

        second = consume("5", "R-7002")
        assert_consistent("2")

        ConsumptionService.reverse_consumption(first)
        assert_consistent("5")

        ConsumptionService.reverse_consumption(second)
        assert_consistent("10")
