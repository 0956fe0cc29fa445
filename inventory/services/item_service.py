from typing import Dict, Any
from decimal import Decimal
from django.db import transaction
from django.db.models import Q, F
from django.db.models.functions import Coalesce

from inventory.models import StockItem, StockCategory, Supplier
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, BusinessRuleError,
    to_decimal, round_decimal
)
from inventory.services.unit_service import StockUnitService


class StockItemService(BaseService):
    model = StockItem

    THRESHOLD_FIELDS = ["minimum_stock", "maximum_stock", "reorder_level", "reorder_quantity"]

    @classmethod
    def serialize(cls, item: StockItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "uuid": str(item.uuid),
            "name": item.name,
            "sku": item.sku,

            "category_id": item.category_id,
            "category": item.category.name if item.category else None,
            "supplier_id": item.supplier_id,
            "supplier": item.supplier.name if item.supplier else None,
            "branch_id": item.branch_id,

            "measuring_unit_id": item.measuring_unit_id,
            "measuring_unit": item.measuring_unit.short_name,

            "current_stock": str(item.current_stock),
            "minimum_stock": str(item.minimum_stock),
            "maximum_stock": str(item.maximum_stock) if item.maximum_stock is not None else None,
            "reorder_level": str(item.reorder_level) if item.reorder_level is not None else None,
            "reorder_quantity": str(item.reorder_quantity) if item.reorder_quantity is not None else None,
            "default_price": str(item.default_price),
            "is_low_stock": item.current_stock <= item.alert_threshold,

            "description": item.description,
            "is_active": item.is_active,
            "created_at": item.created_at.isoformat(),
            "updated_at": item.updated_at.isoformat(),
        }

    @classmethod
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             category_id: int = None,
             branch_id: int = None,
             active_only: bool = True,
             low_stock: bool = False) -> Dict[str, Any]:

        queryset = cls.model.objects.select_related("category", "supplier", "measuring_unit")

        if active_only:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(sku__icontains=search)
            )

        if category_id:
            queryset = queryset.filter(category_id=category_id)

        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)

        if low_stock:
            queryset = queryset.filter(
                current_stock__lte=Coalesce(F("reorder_level"), F("minimum_stock"))
            )

        items, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "items": [cls.serialize(item) for item in items],
            "pagination": pagination,
        })

    @classmethod
    def get_item(cls, item_id: int, active_only: bool = False) -> StockItem:
        queryset = cls.model.objects.select_related("measuring_unit", "category", "supplier")
        if active_only:
            queryset = queryset.filter(is_active=True)
        try:
            return queryset.get(id=item_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Stock item", item_id)

    @classmethod
    def get(cls, item_id: int) -> Dict[str, Any]:
        item = cls.get_item(item_id)

        from inventory.services.lot_service import CostLotService

        return success_response({
            "item": cls.serialize(item),
            "average_cost": str(CostLotService.get_average_cost(item)),
            "open_lots": CostLotService.count_open_lots(item.id),
        })

    @classmethod
    def _resolve_relations(cls, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        resolved = {}

        if "category_id" in kwargs:
            category_id = kwargs["category_id"]
            if category_id:
                try:
                    resolved["category"] = StockCategory.objects.get(id=category_id, is_active=True)
                except StockCategory.DoesNotExist:
                    raise NotFoundError("Category", category_id)
            else:
                resolved["category"] = None

        if "supplier_id" in kwargs:
            supplier_id = kwargs["supplier_id"]
            if supplier_id:
                try:
                    resolved["supplier"] = Supplier.objects.get(id=supplier_id, is_active=True)
                except Supplier.DoesNotExist:
                    raise NotFoundError("Supplier", supplier_id)
            else:
                resolved["supplier"] = None

        return resolved

    @classmethod
    def _clean_thresholds(cls, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for field in cls.THRESHOLD_FIELDS:
            if field in kwargs:
                value = kwargs[field]
                if value is None or value == "":
                    if field == "minimum_stock":
                        raise ValidationError("Minimum stock is required", field)
                    cleaned[field] = None
                    continue
                value = round_decimal(to_decimal(value, field=field))
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative", field)
                cleaned[field] = value

        minimum = cleaned.get("minimum_stock")
        maximum = cleaned.get("maximum_stock")
        if minimum is not None and maximum is not None and maximum < minimum:
            raise ValidationError("Maximum stock cannot be below minimum stock", "maximum_stock")

        return cleaned

    @classmethod
    @transaction.atomic
    def create(cls,
               name: str,
               measuring_unit_id: int,
               category_id: int = None,
               supplier_id: int = None,
               branch_id: int = None,
               sku: str = None,
               minimum_stock: Decimal = Decimal("0"),
               maximum_stock: Decimal = None,
               reorder_level: Decimal = None,
               reorder_quantity: Decimal = None,
               default_price: Decimal = Decimal("0"),
               description: str = "",
               opening_stock: Decimal = None,
               opening_unit_cost: Decimal = None) -> Dict[str, Any]:

        if not name or not name.strip():
            raise ValidationError("Name is required", "name")

        measuring_unit = StockUnitService.get_active_unit(measuring_unit_id, "Measuring unit")

        if sku and cls.model.objects.filter(sku=sku).exists():
            raise ValidationError(f"SKU '{sku}' already exists", "sku")

        relations = cls._resolve_relations({"category_id": category_id, "supplier_id": supplier_id})
        thresholds = cls._clean_thresholds({
            "minimum_stock": minimum_stock,
            "maximum_stock": maximum_stock,
            "reorder_level": reorder_level,
            "reorder_quantity": reorder_quantity,
        })

        default_price = round_decimal(to_decimal(default_price, field="default_price"))
        if default_price < 0:
            raise ValidationError("Default price cannot be negative", "default_price")

        item = cls.model.objects.create(
            name=name.strip(),
            sku=sku or cls._generate_sku(name),
            measuring_unit=measuring_unit,
            branch_id=branch_id,
            default_price=default_price,
            description=description,
            **relations,
            **thresholds,
        )

        if opening_stock is not None and to_decimal(opening_stock, field="opening_stock") > 0:
            from inventory.services.lot_service import CostLotService
            CostLotService.record_opening_balance(
                stock_item_id=item.id,
                quantity=opening_stock,
                unit_cost=opening_unit_cost if opening_unit_cost is not None else default_price,
            )
            item.refresh_from_db()

        return success_response({
            "id": item.id,
            "sku": item.sku,
            "item": cls.serialize(item)
        }, f"Stock item '{item.name}' created")

    @classmethod
    def _generate_sku(cls, name: str) -> str:
        name_part = "".join(c for c in name.upper() if c.isalnum())[:3] or "ITM"

        existing = cls.model.objects.filter(sku__startswith=f"STK-{name_part}").count()

        sku = f"STK-{name_part}-{existing + 1:04d}"
        while cls.model.objects.filter(sku=sku).exists():
            existing += 1
            sku = f"STK-{name_part}-{existing + 1:04d}"
        return sku

    @classmethod
    @transaction.atomic
    def update(cls, item_id: int, **kwargs) -> Dict[str, Any]:
        item = cls.get_item(item_id)

        if "current_stock" in kwargs:
            raise BusinessRuleError(
                "Current stock changes only through receiving, consumption or adjustments"
            )

        update_fields = ["updated_at"]

        if "measuring_unit_id" in kwargs and kwargs["measuring_unit_id"] != item.measuring_unit_id:
            if item.lots.exists() or item.consumptions.exists():
                raise BusinessRuleError("Cannot change measuring unit for item with stock history")
            item.measuring_unit = StockUnitService.get_active_unit(kwargs["measuring_unit_id"], "Measuring unit")
            update_fields.append("measuring_unit")

        if "sku" in kwargs and kwargs["sku"] != item.sku:
            if cls.model.objects.filter(sku=kwargs["sku"]).exclude(id=item.id).exists():
                raise ValidationError(f"SKU '{kwargs['sku']}' already exists", "sku")

        for field, value in cls._resolve_relations(kwargs).items():
            setattr(item, field, value)
            update_fields.append(field)

        thresholds = cls._clean_thresholds(kwargs)
        for field, value in thresholds.items():
            setattr(item, field, value)
            update_fields.append(field)

        if item.maximum_stock is not None and item.maximum_stock < item.minimum_stock:
            raise ValidationError("Maximum stock cannot be below minimum stock", "maximum_stock")

        if "default_price" in kwargs:
            price = round_decimal(to_decimal(kwargs["default_price"], field="default_price"))
            if price < 0:
                raise ValidationError("Default price cannot be negative", "default_price")
            item.default_price = price
            update_fields.append("default_price")

        for field in ["name", "sku", "branch_id", "description"]:
            if field in kwargs:
                setattr(item, field, kwargs[field])
                update_fields.append(field)

        item.save(update_fields=update_fields)

        return success_response({
            "item": cls.serialize(item)
        }, "Stock item updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, item_id: int) -> Dict[str, Any]:
        item = cls.get_item(item_id)

        if item.recipe_lines.filter(is_active=True).exists():
            raise BusinessRuleError("Cannot deactivate item used in active recipes")

        item.is_active = False
        item.save(update_fields=["is_active", "updated_at"])

        return success_response({
            "id": item_id
        }, "Stock item deactivated")
