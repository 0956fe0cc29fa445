from decimal import Decimal

import pytest

from inventory.models import CostLot, StockMovement, InventorySettings
from inventory.services import (
    CostLotService, StockItemService, InventorySettingsService,
    InsufficientStockError, ReversalMismatchError, ValidationError,
)


@pytest.fixture
def two_lots(flour, make_lot):
    """10 kg @ 1.00 bought first, 5 kg @ 2.00 bought later."""
    older = make_lot(flour, 10, "1.00", age_days=2)
    newer = make_lot(flour, 5, "2.00", age_days=1)
    return older, newer


@pytest.mark.django_db
class TestCreateLot:

    def test_lot_raises_counter_and_logs_movement(self, flour, make_lot):
        lot = make_lot(flour, "3.5", "2.40")

        flour.refresh_from_db()
        assert flour.current_stock == Decimal("3.5")
        assert lot.remaining_quantity == lot.quantity == Decimal("3.5")
        assert lot.total_cost == Decimal("8.4")
        assert lot.lot_number.startswith("LOT-")

        movement = StockMovement.objects.get(stock_item=flour)
        assert movement.movement_type == StockMovement.MovementType.PURCHASE_IN
        assert movement.quantity_before == Decimal("0")
        assert movement.quantity_after == Decimal("3.5")

    def test_non_positive_quantity(self, flour, make_lot):
        with pytest.raises(ValidationError):
            make_lot(flour, 0, "1.00")

    def test_negative_cost(self, flour, make_lot):
        with pytest.raises(ValidationError):
            make_lot(flour, 1, "-1")

    def test_opening_balance_on_create(self, units):
        result = StockItemService.create(
            name="Rice",
            measuring_unit_id=units["kg"].id,
            opening_stock="20",
            opening_unit_cost="0.80",
        )

        lot = CostLot.objects.get(stock_item_id=result["id"])
        assert lot.source == CostLot.Source.OPENING
        assert result["item"]["current_stock"] == "20.0000"


@pytest.mark.django_db
class TestDebit:

    def test_fifo_takes_oldest_first(self, flour, two_lots):
        older, newer = two_lots

        result = CostLotService.debit(flour.id, Decimal("12"), method="FIFO")

        assert result.total_cost == Decimal("14")
        assert [(a.lot_id, a.quantity, a.unit_cost) for a in result.allocations] == [
            (older.id, Decimal("10"), Decimal("1")),
            (newer.id, Decimal("2"), Decimal("2")),
        ]
        older.refresh_from_db()
        newer.refresh_from_db()
        assert older.remaining_quantity == Decimal("0")
        assert newer.remaining_quantity == Decimal("3")

    def test_lifo_takes_newest_first(self, flour, two_lots):
        older, newer = two_lots

        result = CostLotService.debit(flour.id, Decimal("12"), method="LIFO")

        assert result.total_cost == Decimal("17")
        assert [(a.lot_id, a.quantity) for a in result.allocations] == [
            (newer.id, Decimal("5")),
            (older.id, Decimal("7")),
        ]

    def test_average_charges_weighted_cost(self, flour, two_lots):
        result = CostLotService.debit(flour.id, Decimal("12"), method="AVERAGE")

        assert result.unit_cost == Decimal("1.3333")
        assert result.total_cost == Decimal("16.0000")
        assert all(a.unit_cost == Decimal("1.3333") for a in result.allocations)

    def test_method_defaults_to_settings(self, flour, two_lots):
        InventorySettingsService.update(costing_method="lifo")

        result = CostLotService.debit(flour.id, Decimal("1"))

        assert result.method == InventorySettings.CostingMethod.LIFO
        assert result.total_cost == Decimal("2")

    def test_invalid_method(self, flour, two_lots):
        with pytest.raises(ValidationError):
            CostLotService.debit(flour.id, Decimal("1"), method="HIFO")

    def test_insufficient_stock_leaves_lots(self, flour, two_lots):
        with pytest.raises(InsufficientStockError) as exc:
            CostLotService.debit(flour.id, Decimal("16"))

        assert exc.value.details["available"] == "15.0000"
        assert sum(lot.remaining_quantity for lot in CostLot.objects.filter(stock_item=flour)) == Decimal("15")

    def test_shortfall_when_negative_allowed(self, flour, two_lots):
        result = CostLotService.debit(flour.id, Decimal("18"), method="FIFO", allow_negative=True)

        assert result.shortfall == Decimal("3")
        # 10 @ 1 + 5 @ 2 + 3 at the latest lot cost of 2
        assert result.total_cost == Decimal("26")
        assert sum(a.quantity for a in result.allocations) == Decimal("15")

    def test_shortfall_without_lots_uses_default_price(self, flour):
        result = CostLotService.debit(flour.id, Decimal("2"), allow_negative=True)

        assert result.allocations == []
        assert result.shortfall == Decimal("2")
        assert result.total_cost == Decimal("3")

    def test_debit_does_not_touch_counter(self, flour, two_lots):
        CostLotService.debit(flour.id, Decimal("4"))

        flour.refresh_from_db()
        assert flour.current_stock == Decimal("15")


@pytest.mark.django_db
class TestCredit:

    def test_credit_restores_quantity(self, flour, two_lots):
        older, _ = two_lots
        CostLotService.debit(flour.id, Decimal("4"))

        lot = CostLotService.credit(older.id, Decimal("4"))

        assert lot.remaining_quantity == Decimal("10")

    def test_credit_cannot_exceed_original(self, flour, two_lots):
        older, _ = two_lots
        CostLotService.debit(flour.id, Decimal("4"))

        with pytest.raises(ReversalMismatchError):
            CostLotService.credit(older.id, Decimal("5"))


@pytest.mark.django_db
class TestValuation:

    def test_average_cost_of_open_lots(self, flour, two_lots):
        assert CostLotService.get_average_cost(flour) == Decimal("1.3333")

    def test_average_cost_falls_back_to_default_price(self, flour):
        assert CostLotService.get_average_cost(flour) == Decimal("1.5")

    def test_valuation_uses_each_lot_cost(self, flour, eggs, two_lots, make_lot):
        make_lot(eggs, 30, "0.20")
        CostLotService.debit(flour.id, Decimal("12"), method="FIFO")

        result = CostLotService.get_valuation()

        rows = {row["stock_item_id"]: row for row in result["items"]}
        assert rows[flour.id]["value"] == "6.0000"
        assert rows[eggs.id]["value"] == "6.0000"
        assert result["total_value"] == "12.0000"

    def test_list_open_lots(self, flour, two_lots):
        _, newer = two_lots
        CostLotService.debit(flour.id, Decimal("10"), method="FIFO")

        result = CostLotService.list_lots(stock_item_id=flour.id, open_only=True)

        assert [lot["id"] for lot in result["lots"]] == [newer.id]
