from decimal import Decimal

import pytest

from inventory.models import StockUnit
from inventory.services import (
    StockUnitService, StockItemUnitService,
    ValidationError, BusinessRuleError, NotFoundError,
)


@pytest.mark.django_db
class TestStockUnits:

    def test_seed_defaults_is_idempotent(self, units):
        again = StockUnitService.seed_defaults()

        assert again["count"] == 0
        assert StockUnit.objects.filter(short_name="kg").count() == 1
        assert units["kg"].base_unit_id == units["g"].id

    def test_convert_within_type(self, units):
        result, details = StockUnitService.convert(Decimal("1.5"), units["kg"].id, units["g"].id)

        assert result == Decimal("1500")
        assert details["to_unit"] == "g"

    def test_convert_dozen_to_pieces(self, units):
        result, _ = StockUnitService.convert("2", units["dz"].id, units["pcs"].id)
        assert result == Decimal("24")

    def test_convert_across_types_fails(self, units):
        with pytest.raises(ValidationError) as exc:
            StockUnitService.convert("1", units["kg"].id, units["l"].id)
        assert exc.value.field == "unit_id"

    def test_second_base_unit_rejected(self, units):
        with pytest.raises(BusinessRuleError):
            StockUnitService.create("Ounce", "oz", StockUnit.UnitType.WEIGHT, is_base_unit=True)

    def test_derived_unit_attaches_to_base(self, units):
        result = StockUnitService.create("Milligram", "mg", StockUnit.UnitType.WEIGHT, conversion_factor="0.001")

        unit = StockUnit.objects.get(id=result["id"])
        assert unit.base_unit_id == units["g"].id

    def test_duplicate_short_name_rejected(self, units):
        with pytest.raises(ValidationError):
            StockUnitService.create("Kilo", "KG", StockUnit.UnitType.WEIGHT, conversion_factor="1000")

    def test_unknown_unit(self, units):
        with pytest.raises(NotFoundError):
            StockUnitService.convert("1", 99999, units["g"].id)


@pytest.mark.django_db
class TestItemUnits:

    def test_package_unit_converts_per_item(self, flour, units):
        StockItemUnitService.add_unit(flour.id, units["box"].id, "25")

        assert StockItemUnitService.convert_for_item(flour, Decimal("2"), units["box"]) == Decimal("50")

    def test_package_unit_without_mapping_rejected(self, flour, units):
        with pytest.raises(ValidationError):
            StockItemUnitService.check_convertible(flour, units["box"])

    def test_same_unit_added_twice(self, flour, units):
        StockItemUnitService.add_unit(flour.id, units["box"].id, "25")

        with pytest.raises(ValidationError):
            StockItemUnitService.add_unit(flour.id, units["box"].id, "20")

    def test_non_positive_conversion(self, flour, units):
        with pytest.raises(ValidationError):
            StockItemUnitService.add_unit(flour.id, units["box"].id, "0")

    def test_grams_into_kilogram_item(self, flour, units):
        assert StockItemUnitService.convert_for_item(flour, Decimal("250"), units["g"]) == Decimal("0.25")
