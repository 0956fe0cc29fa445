from typing import Dict, Any, List
from decimal import Decimal
from django.db import transaction
from django.db.models import Count

from inventory.models import RecipeLine
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError,
    to_decimal, round_decimal, positive_quantity
)
from inventory.services.item_service import StockItemService
from inventory.services.lot_service import CostLotService
from inventory.services.unit_service import StockUnitService, StockItemUnitService


class RecipeService(BaseService):
    """Dish to stock item mapping used by consumption."""

    model = RecipeLine

    @classmethod
    def serialize_line(cls, line: RecipeLine) -> Dict[str, Any]:
        return {
            "id": line.id,
            "uuid": str(line.uuid),
            "dish_id": line.dish_id,
            "dish_name": line.dish_name,
            "stock_item_id": line.stock_item_id,
            "stock_item": line.stock_item.name,
            "quantity": str(line.quantity),
            "unit_id": line.unit_id,
            "unit": line.unit.short_name,
            "cost": str(line.cost) if line.cost is not None else None,
            "is_active": line.is_active,
            "notes": line.notes,
        }

    @classmethod
    def list_for_dish(cls, dish_id: int, include_inactive: bool = False) -> Dict[str, Any]:
        queryset = cls.model.objects.filter(dish_id=dish_id).select_related("stock_item", "unit")
        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        return success_response({
            "dish_id": dish_id,
            "lines": [cls.serialize_line(line) for line in queryset],
            "count": queryset.count(),
        })

    @classmethod
    def list_dishes(cls) -> Dict[str, Any]:
        rows = (
            cls.model.objects.filter(is_active=True)
            .values("dish_id")
            .annotate(lines=Count("id"))
            .order_by("dish_id")
        )
        names = dict(
            cls.model.objects.exclude(dish_name="").values_list("dish_id", "dish_name")
        )

        return success_response({
            "dishes": [
                {"dish_id": r["dish_id"], "dish_name": names.get(r["dish_id"], ""), "lines": r["lines"]}
                for r in rows
            ],
        })

    @classmethod
    def _get_line(cls, line_id: int) -> RecipeLine:
        try:
            return cls.model.objects.select_related(
                "stock_item", "stock_item__measuring_unit", "unit", "unit__base_unit"
            ).get(id=line_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Recipe line", line_id)

    @classmethod
    def _clean_cost(cls, cost) -> Any:
        if cost is None or cost == "":
            return None
        cost = round_decimal(to_decimal(cost, field="cost"))
        if cost < 0:
            raise ValidationError("Cost cannot be negative", "cost")
        return cost

    @classmethod
    def _build_line(cls,
                    dish_id: int,
                    stock_item_id: int,
                    quantity: Decimal,
                    unit_id: int = None,
                    cost: Decimal = None,
                    dish_name: str = "",
                    notes: str = "") -> RecipeLine:
        if dish_id is None:
            raise ValidationError("Dish is required", "dish_id")

        stock_item = StockItemService.get_item(stock_item_id, active_only=True)
        quantity = positive_quantity(quantity)

        if unit_id:
            unit = StockUnitService.get_active_unit(unit_id)
            StockItemUnitService.check_convertible(stock_item, unit)
        else:
            unit = stock_item.measuring_unit

        return RecipeLine(
            dish_id=dish_id,
            dish_name=dish_name or "",
            stock_item=stock_item,
            quantity=quantity,
            unit=unit,
            cost=cls._clean_cost(cost),
            notes=notes or "",
        )

    @classmethod
    @transaction.atomic
    def add_line(cls,
                 dish_id: int,
                 stock_item_id: int,
                 quantity: Decimal,
                 unit_id: int = None,
                 cost: Decimal = None,
                 dish_name: str = "",
                 notes: str = "") -> Dict[str, Any]:

        line = cls._build_line(dish_id, stock_item_id, quantity, unit_id, cost, dish_name, notes)

        if cls.model.objects.filter(dish_id=dish_id, stock_item_id=line.stock_item_id, is_active=True).exists():
            raise ValidationError(f"{line.stock_item.name} is already in this recipe", "stock_item_id")

        line.save()

        return success_response({
            "id": line.id,
            "line": cls.serialize_line(line),
        }, f"{line.stock_item.name} added to dish {dish_id}")

    @classmethod
    @transaction.atomic
    def update_line(cls, line_id: int, **kwargs) -> Dict[str, Any]:
        line = cls._get_line(line_id)

        if "quantity" in kwargs:
            line.quantity = positive_quantity(kwargs["quantity"])
        if "unit_id" in kwargs:
            unit = StockUnitService.get_active_unit(kwargs["unit_id"])
            StockItemUnitService.check_convertible(line.stock_item, unit)
            line.unit = unit
        if "cost" in kwargs:
            line.cost = cls._clean_cost(kwargs["cost"])
        for field in ["dish_name", "notes", "is_active"]:
            if field in kwargs:
                setattr(line, field, kwargs[field])

        line.save()

        return success_response({
            "line": cls.serialize_line(line),
        }, "Recipe line updated")

    @classmethod
    @transaction.atomic
    def remove_line(cls, line_id: int) -> Dict[str, Any]:
        line = cls._get_line(line_id)
        line.delete()
        return success_response({"id": line_id}, "Recipe line removed")

    @classmethod
    @transaction.atomic
    def replace_lines(cls, dish_id: int, lines: List[Dict[str, Any]], dish_name: str = "") -> Dict[str, Any]:
        """Swap the whole recipe of a dish. Every new line is validated first."""
        built = []
        seen = set()
        for data in lines:
            line = cls._build_line(
                dish_id=dish_id,
                stock_item_id=data.get("stock_item_id"),
                quantity=data.get("quantity"),
                unit_id=data.get("unit_id"),
                cost=data.get("cost"),
                dish_name=dish_name or data.get("dish_name", ""),
                notes=data.get("notes", ""),
            )
            if line.stock_item_id in seen:
                raise ValidationError(f"{line.stock_item.name} appears twice in the recipe", "stock_item_id")
            seen.add(line.stock_item_id)
            built.append(line)

        removed, _ = cls.model.objects.filter(dish_id=dish_id).delete()
        cls.model.objects.bulk_create(built)

        result = cls.list_for_dish(dish_id)
        result["removed"] = removed
        result["message"] = f"Recipe for dish {dish_id} replaced"
        return result

    @classmethod
    @transaction.atomic
    def clear_recipe(cls, dish_id: int) -> Dict[str, Any]:
        removed, _ = cls.model.objects.filter(dish_id=dish_id).delete()
        return success_response({
            "dish_id": dish_id,
            "removed": removed,
        }, f"Recipe for dish {dish_id} cleared")

    @classmethod
    def calculate_cost(cls, dish_id: int, quantity: Decimal = Decimal("1")) -> Dict[str, Any]:
        """
        Theoretical ingredient cost of a dish. A line's cost snapshot wins,
        otherwise the item's current average lot cost is used.
        """
        quantity = positive_quantity(quantity)
        lines = cls.model.objects.filter(
            dish_id=dish_id, is_active=True
        ).select_related("stock_item", "stock_item__measuring_unit", "unit", "unit__base_unit")

        breakdown = []
        total = Decimal("0")
        for line in lines:
            stock_quantity = StockItemUnitService.convert_for_item(
                line.stock_item, line.quantity * quantity, line.unit
            )
            unit_cost = line.cost if line.cost is not None else CostLotService.get_average_cost(line.stock_item)
            line_cost = round_decimal(stock_quantity * unit_cost)
            total += line_cost
            breakdown.append({
                "line_id": line.id,
                "stock_item_id": line.stock_item_id,
                "stock_item": line.stock_item.name,
                "quantity": str(round_decimal(stock_quantity)),
                "unit": line.stock_item.measuring_unit.short_name,
                "unit_cost": str(unit_cost),
                "cost": str(line_cost),
            })

        return success_response({
            "dish_id": dish_id,
            "quantity": str(quantity),
            "lines": breakdown,
            "total_cost": str(round_decimal(total)),
            "cost_per_unit": str(round_decimal(total / quantity)),
        })
