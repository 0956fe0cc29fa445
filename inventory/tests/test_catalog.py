from decimal import Decimal

import pytest

from inventory.services import (
    StockItemService, StockCategoryService, SupplierService, PurchaseOrderService,
    ValidationError, BusinessRuleError, NotFoundError,
)


@pytest.mark.django_db
class TestStockItems:

    def test_generated_sku(self, units):
        first = StockItemService.create(name="Tomato", measuring_unit_id=units["kg"].id)
        second = StockItemService.create(name="Tomato paste", measuring_unit_id=units["kg"].id)

        assert first["sku"] == "STK-TOM-0001"
        assert second["sku"] == "STK-TOM-0002"

    def test_duplicate_sku(self, units):
        StockItemService.create(name="Tomato", measuring_unit_id=units["kg"].id, sku="VEG-1")

        with pytest.raises(ValidationError):
            StockItemService.create(name="Onion", measuring_unit_id=units["kg"].id, sku="VEG-1")

    def test_maximum_below_minimum(self, units):
        with pytest.raises(ValidationError):
            StockItemService.create(
                name="Lime", measuring_unit_id=units["pcs"].id, minimum_stock="10", maximum_stock="5"
            )

    def test_counter_not_editable(self, flour):
        with pytest.raises(BusinessRuleError):
            StockItemService.update(flour.id, current_stock="100")

    def test_unit_locked_once_stock_exists(self, flour, make_lot, units):
        make_lot(flour, 1, "1.00")

        with pytest.raises(BusinessRuleError):
            StockItemService.update(flour.id, measuring_unit_id=units["g"].id)

    def test_detail_includes_average_cost(self, flour, make_lot):
        make_lot(flour, 2, "1.00")
        make_lot(flour, 2, "2.00")

        result = StockItemService.get(flour.id)

        assert result["average_cost"] == "1.5000"
        assert result["open_lots"] == 2

    def test_low_stock_filter(self, flour, eggs, make_lot):
        make_lot(flour, 5, "1.00")

        result = StockItemService.list(low_stock=True)

        assert [item["name"] for item in result["items"]] == ["Eggs"]

    def test_unknown_category(self, units):
        with pytest.raises(NotFoundError):
            StockItemService.create(name="Basil", measuring_unit_id=units["g"].id, category_id=12)

    def test_update_thresholds(self, flour):
        result = StockItemService.update(flour.id, reorder_level="4", reorder_quantity="25")

        assert result["item"]["reorder_level"] == "4.0000"
        assert Decimal(result["item"]["minimum_stock"]) == Decimal("2")


@pytest.mark.django_db
class TestCategoriesAndSuppliers:

    def test_category_with_items_cannot_be_deactivated(self, make_item):
        category = StockCategoryService.create(name="Dry goods")
        make_item("Lentils", "kg", category_id=category["id"])

        with pytest.raises(BusinessRuleError):
            StockCategoryService.deactivate(category["id"])

    def test_duplicate_category(self, db):
        StockCategoryService.create(name="Dairy")

        with pytest.raises(ValidationError):
            StockCategoryService.create(name="dairy")

    def test_supplier_with_open_order(self, supplier, flour):
        PurchaseOrderService.create(
            supplier_id=supplier.id,
            items=[{"stock_item_id": flour.id, "quantity": "1", "unit_price": "1"}],
        )

        with pytest.raises(BusinessRuleError):
            SupplierService.deactivate(supplier.id)

    def test_supplier_search(self, supplier):
        assert SupplierService.list(search="valley")["pagination"]["total_items"] == 1
        assert SupplierService.list(search="harbor")["pagination"]["total_items"] == 0
