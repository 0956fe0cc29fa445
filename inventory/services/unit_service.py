from typing import Dict, Any, Optional, Tuple
from decimal import Decimal
from django.db import transaction

from inventory.models import StockUnit, StockItem, StockItemUnit
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError, BusinessRuleError,
    to_decimal, round_decimal
)


# (name, short_name, unit_type, base short_name, factor)
DEFAULT_UNITS = [
    ("Gram", "g", StockUnit.UnitType.WEIGHT, None, "1"),
    ("Kilogram", "kg", StockUnit.UnitType.WEIGHT, "g", "1000"),
    ("Millilitre", "ml", StockUnit.UnitType.VOLUME, None, "1"),
    ("Litre", "l", StockUnit.UnitType.VOLUME, "ml", "1000"),
    ("Piece", "pcs", StockUnit.UnitType.COUNT, None, "1"),
    ("Dozen", "dz", StockUnit.UnitType.COUNT, "pcs", "12"),
    ("Packet", "pkt", StockUnit.UnitType.PACKAGE, None, "1"),
    ("Box", "box", StockUnit.UnitType.PACKAGE, None, "1"),
    ("Bottle", "btl", StockUnit.UnitType.PACKAGE, None, "1"),
    ("Can", "can", StockUnit.UnitType.PACKAGE, None, "1"),
]


class StockUnitService(BaseService):
    model = StockUnit

    @classmethod
    def serialize(cls, unit: StockUnit) -> Dict[str, Any]:
        return {
            "id": unit.id,
            "uuid": str(unit.uuid),
            "name": unit.name,
            "short_name": unit.short_name,
            "unit_type": unit.unit_type,
            "unit_type_display": unit.get_unit_type_display(),
            "is_base_unit": unit.is_base_unit,
            "base_unit_id": unit.base_unit_id,
            "conversion_factor": str(unit.conversion_factor),
            "decimal_places": unit.decimal_places,
            "is_active": unit.is_active,
        }

    @classmethod
    def list(cls, include_inactive: bool = False, type_filter: str = None) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("base_unit")

        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        if type_filter:
            queryset = queryset.filter(unit_type=type_filter)

        return success_response({
            "units": [cls.serialize(u) for u in queryset],
            "count": queryset.count(),
        })

    @classmethod
    def get_active_unit(cls, unit_id: int, label: str = "Unit") -> StockUnit:
        try:
            return cls.model.objects.select_related("base_unit").get(id=unit_id, is_active=True)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(label, unit_id)

    @classmethod
    def get_base_unit(cls, unit_type: str) -> Optional[StockUnit]:
        return cls.model.objects.filter(
            unit_type=unit_type,
            is_base_unit=True,
            is_active=True
        ).first()

    @classmethod
    @transaction.atomic
    def create(cls,
               name: str,
               short_name: str,
               unit_type: str,
               is_base_unit: bool = False,
               base_unit_id: int = None,
               conversion_factor: Decimal = Decimal("1"),
               decimal_places: int = 3) -> Dict[str, Any]:

        valid_types = [c[0] for c in StockUnit.UnitType.choices]
        if unit_type not in valid_types:
            raise ValidationError(f"Invalid type. Valid: {valid_types}", "unit_type")

        if not name or not short_name:
            raise ValidationError("Name and short name are required", "name")

        if cls.model.objects.filter(short_name__iexact=short_name).exists():
            raise ValidationError(f"Unit with short name '{short_name}' already exists", "short_name")

        conversion_factor = to_decimal(conversion_factor, field="conversion_factor")

        base_unit = None
        if is_base_unit:
            # Packaging units are independent roots; other types share one base
            if unit_type != StockUnit.UnitType.PACKAGE:
                existing_base = cls.get_base_unit(unit_type)
                if existing_base:
                    raise BusinessRuleError(f"Base unit already exists for {unit_type}: {existing_base.name}")
            conversion_factor = Decimal("1")
        else:
            if conversion_factor <= 0:
                raise ValidationError("Conversion factor must be positive", "conversion_factor")
            if base_unit_id:
                base_unit = cls.get_active_unit(base_unit_id, "Base unit")
                if base_unit.unit_type != unit_type:
                    raise ValidationError("Base unit must be of same type", "base_unit_id")
                if not base_unit.is_base_unit:
                    raise ValidationError("Referenced unit is not a base unit", "base_unit_id")
            else:
                base_unit = cls.get_base_unit(unit_type)
                if not base_unit:
                    raise BusinessRuleError(f"No base unit exists for {unit_type}. Create base unit first.")

        unit = cls.model.objects.create(
            name=name,
            short_name=short_name,
            unit_type=unit_type,
            is_base_unit=is_base_unit,
            base_unit=base_unit,
            conversion_factor=conversion_factor,
            decimal_places=decimal_places,
        )

        return success_response({
            "id": unit.id,
            "unit": cls.serialize(unit),
        }, f"Unit '{name}' created")

    @classmethod
    @transaction.atomic
    def seed_defaults(cls) -> Dict[str, Any]:
        created = []
        by_short_name = {}

        for name, short_name, unit_type, base_short, factor in DEFAULT_UNITS:
            unit = cls.model.objects.filter(short_name__iexact=short_name).first()
            if not unit:
                unit = cls.model.objects.create(
                    name=name,
                    short_name=short_name,
                    unit_type=unit_type,
                    is_base_unit=base_short is None,
                    base_unit=by_short_name.get(base_short),
                    conversion_factor=Decimal(factor),
                )
                created.append(short_name)
            by_short_name[short_name] = unit

        return success_response({
            "created": created,
            "count": len(created),
        }, f"Seeded {len(created)} unit(s)")

    @classmethod
    def are_convertible(cls, from_unit: StockUnit, to_unit: StockUnit) -> bool:
        return from_unit.root_unit.id == to_unit.root_unit.id

    @classmethod
    def convert_units(cls, quantity: Decimal, from_unit: StockUnit, to_unit: StockUnit) -> Decimal:
        """Convert through the shared base unit; unrounded."""
        if from_unit.id == to_unit.id:
            return quantity

        if not cls.are_convertible(from_unit, to_unit):
            raise ValidationError(
                f"Cannot convert {from_unit.short_name} to {to_unit.short_name}",
                "unit_id"
            )

        base_quantity = quantity * from_unit.conversion_factor
        return base_quantity / to_unit.conversion_factor

    @classmethod
    def convert(cls,
                quantity: Decimal,
                from_unit_id: int,
                to_unit_id: int) -> Tuple[Decimal, Dict[str, Any]]:

        from_unit = cls.get_active_unit(from_unit_id, "From unit")
        to_unit = cls.get_active_unit(to_unit_id, "To unit")

        quantity = to_decimal(quantity, field="quantity")
        result = round_decimal(cls.convert_units(quantity, from_unit, to_unit), to_unit.decimal_places)

        details = {
            "from_quantity": str(quantity),
            "from_unit": from_unit.short_name,
            "to_quantity": str(result),
            "to_unit": to_unit.short_name,
        }

        return result, details


class StockItemUnitService(BaseService):
    model = StockItemUnit

    @classmethod
    def serialize(cls, item_unit: StockItemUnit) -> Dict[str, Any]:
        return {
            "id": item_unit.id,
            "stock_item_id": item_unit.stock_item_id,
            "unit_id": item_unit.unit_id,
            "unit": item_unit.unit.short_name,
            "conversion_to_base": str(item_unit.conversion_to_base),
        }

    @classmethod
    @transaction.atomic
    def add_unit(cls,
                 stock_item_id: int,
                 unit_id: int,
                 conversion_to_base: Decimal) -> Dict[str, Any]:
        if not StockItem.objects.filter(id=stock_item_id).exists():
            raise NotFoundError("Stock item", stock_item_id)

        unit = StockUnitService.get_active_unit(unit_id)

        conversion_to_base = to_decimal(conversion_to_base, field="conversion_to_base")
        if conversion_to_base <= 0:
            raise ValidationError("Conversion must be positive", "conversion_to_base")

        if cls.model.objects.filter(stock_item_id=stock_item_id, unit_id=unit.id).exists():
            raise ValidationError("This unit is already added to the item", "unit_id")

        item_unit = cls.model.objects.create(
            stock_item_id=stock_item_id,
            unit=unit,
            conversion_to_base=conversion_to_base,
        )

        return success_response({
            "id": item_unit.id,
            "item_unit": cls.serialize(item_unit)
        }, "Unit added to item")

    @classmethod
    @transaction.atomic
    def remove_unit(cls, item_unit_id: int) -> Dict[str, Any]:
        item_unit = cls.get_by_id(item_unit_id)
        if not item_unit:
            raise NotFoundError("Item unit", item_unit_id)

        item_unit.delete()

        return success_response(message="Unit removed from item")

    @classmethod
    def check_convertible(cls, stock_item: StockItem, unit: StockUnit) -> None:
        if unit.id == stock_item.measuring_unit_id:
            return
        if cls.model.objects.filter(stock_item=stock_item, unit=unit).exists():
            return
        if not StockUnitService.are_convertible(unit, stock_item.measuring_unit):
            raise ValidationError(
                f"Unit {unit.short_name} cannot be converted to "
                f"{stock_item.measuring_unit.short_name} for {stock_item.name}",
                "unit_id"
            )

    @classmethod
    def convert_for_item(cls,
                         stock_item: StockItem,
                         quantity: Decimal,
                         from_unit: StockUnit) -> Decimal:
        """Quantity in from_unit expressed in the item's measuring unit, unrounded."""
        if from_unit.id == stock_item.measuring_unit_id:
            return quantity

        item_unit = cls.model.objects.filter(stock_item=stock_item, unit=from_unit).first()
        if item_unit:
            return quantity * item_unit.conversion_to_base

        return StockUnitService.convert_units(quantity, from_unit, stock_item.measuring_unit)
