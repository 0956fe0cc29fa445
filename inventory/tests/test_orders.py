from decimal import Decimal

import pytest

from inventory.models import ConsumptionRecord, CostLot
from inventory.services import (
    OrderStockService, RecipeService, StockLevelService,
    InsufficientStockError, ValidationError,
)


@pytest.fixture
def tea_recipe(make_item, make_lot):
    """Dish 200: 0.25 l of milk per cup."""
    milk = make_item("Milk", "l", minimum_stock="1")
    make_lot(milk, 5, "0.90")
    RecipeService.add_line(dish_id=200, stock_item_id=milk.id, quantity="0.25", dish_name="Milk Tea")
    return milk


@pytest.fixture
def stocked(flour, eggs, make_lot):
    make_lot(flour, 10, "1.00")
    make_lot(eggs, 30, "0.25")


@pytest.mark.django_db
class TestConsumeOrder:

    def test_consumes_every_order_item(self, pancake_recipe, tea_recipe, stocked):
        result = OrderStockService.consume_order_items(
            order_ref="T12-0045",
            order_items=[
                {"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 2},
                {"order_item_id": 2, "dish_id": 200, "quantity": 4},
            ],
            branch_id=1,
            consumed_by="waiter-7",
        )

        assert [item["skipped"] for item in result["items"]] == [False, False]
        # 0.4 kg flour, 4 eggs and 1 l milk
        assert result["total_cost"] == "2.3000"
        assert ConsumptionRecord.objects.filter(order_ref="T12-0045", branch_id=1).count() == 3

    def test_one_failing_item_rolls_back_order(self, pancake_recipe, tea_recipe, stocked, flour):
        with pytest.raises(InsufficientStockError):
            OrderStockService.consume_order_items(
                order_ref="T12-0046",
                order_items=[
                    {"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1},
                    {"order_item_id": 2, "dish_id": 200, "quantity": 40},
                ],
            )

        assert not ConsumptionRecord.objects.exists()
        flour.refresh_from_db()
        assert flour.current_stock == Decimal("10")

    def test_dish_without_recipe_is_skipped(self, pancake_recipe, stocked):
        result = OrderStockService.consume_order_items(
            order_ref="T12-0047",
            order_items=[
                {"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1},
                {"order_item_id": 2, "dish_id": 555, "quantity": 1},
            ],
        )

        assert result["items"][1]["reason"] == "no_recipe"

    def test_resending_order_is_idempotent(self, pancake_recipe, stocked):
        items = [{"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1}]
        OrderStockService.consume_order_items(order_ref="T12-0048", order_items=items)

        result = OrderStockService.consume_order_items(order_ref="T12-0048", order_items=items)

        assert result["items"][0]["reason"] == "already_recorded"
        assert result["total_cost"] == "0.0000"
        assert ConsumptionRecord.objects.count() == 2

    def test_same_dish_on_unnumbered_lines(self, pancake_recipe, stocked, eggs):
        result = OrderStockService.consume_order_items(
            order_ref="T12-0053",
            order_items=[
                {"dish_id": pancake_recipe, "quantity": 1},
                {"dish_id": pancake_recipe, "quantity": 2},
            ],
        )

        assert [item["skipped"] for item in result["items"]] == [False, False]
        eggs.refresh_from_db()
        assert eggs.current_stock == Decimal("24")

    def test_empty_order(self, db):
        with pytest.raises(ValidationError):
            OrderStockService.consume_order_items(order_ref="T12-0049", order_items=[])

    def test_item_without_dish(self, db):
        with pytest.raises(ValidationError):
            OrderStockService.consume_order_items(order_ref="T12-0050", order_items=[{"quantity": 1}])


@pytest.mark.django_db
class TestReverseOrder:

    def test_reverse_whole_order(self, pancake_recipe, tea_recipe, stocked, flour):
        OrderStockService.consume_order_items(
            order_ref="T12-0051",
            order_items=[
                {"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1},
                {"order_item_id": 2, "dish_id": 200, "quantity": 1},
            ],
        )

        result = OrderStockService.reverse_order("T12-0051", reason="Guest left")

        assert result["total_reversals"] == 3
        assert not ConsumptionRecord.objects.exists()
        flour.refresh_from_db()
        assert flour.current_stock == Decimal("10")
        assert StockLevelService.reconcile(notify=False)["drifts"] == []

    def test_reverse_single_order_item(self, pancake_recipe, tea_recipe, stocked, eggs):
        OrderStockService.consume_order_items(
            order_ref="T12-0052",
            order_items=[
                {"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1},
                {"order_item_id": 2, "dish_id": 200, "quantity": 1},
            ],
        )

        result = OrderStockService.reverse_order_item("T12-0052", 1)

        assert result["total_reversals"] == 2
        assert list(ConsumptionRecord.objects.values_list("order_item_id", flat=True)) == [2]
        assert sum(lot.remaining_quantity for lot in CostLot.objects.filter(stock_item=eggs)) == Decimal("30")

    def test_reverse_unknown_order(self, db):
        assert OrderStockService.reverse_order("T12-9999")["total_reversals"] == 0


@pytest.mark.django_db
class TestAvailability:

    def test_reports_shortages(self, pancake_recipe, tea_recipe, stocked, eggs):
        result = OrderStockService.check_availability([
            {"dish_id": pancake_recipe, "quantity": 10},
            {"dish_id": 200, "quantity": 2},
        ])

        assert result["all_available"] is True

        result = OrderStockService.check_availability([
            {"dish_id": pancake_recipe, "quantity": 16},
        ])

        assert result["all_available"] is False
        assert result["shortages"] == [{
            "stock_item_id": eggs.id,
            "name": "Eggs",
            "required": "32.0000",
            "available": "30.0000",
            "shortage": "2.0000",
        }]
