"""
Consumption Service - recipe-driven stock deduction and its reversal
"""
import logging
from typing import Dict, Any, List, Optional, Tuple
from decimal import Decimal
from django.db import transaction
from django.db.models import Sum

from inventory.models import (
    ConsumptionRecord, ConsumptionAllocation, RecipeLine, StockItem,
    StockMovement, StockUnit
)
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, ReversalMismatchError,
    round_decimal, positive_quantity, parse_date
)
from inventory.services.item_service import StockItemService
from inventory.services.level_service import StockLevelService
from inventory.services.lot_service import CostLotService, DebitResult
from inventory.services.unit_service import StockUnitService, StockItemUnitService

logger = logging.getLogger(__name__)


class ConsumptionService(BaseService):
    model = ConsumptionRecord

    @classmethod
    def serialize(cls, record: ConsumptionRecord, include_allocations: bool = False) -> Dict[str, Any]:
        data = {
            "id": record.id,
            "uuid": str(record.uuid),
            "stock_item_id": record.stock_item_id,
            "stock_item": record.stock_item.name,
            "order_ref": record.order_ref,
            "order_item_id": record.order_item_id,
            "dish_id": record.dish_id,
            "order_type": record.order_type,
            "quantity": str(record.quantity),
            "unit_cost": str(record.unit_cost),
            "total_cost": str(record.total_cost),
            "shortfall_quantity": str(record.shortfall_quantity),
            "costing_method": record.costing_method,
            "branch_id": record.branch_id,
            "consumed_by": record.consumed_by,
            "notes": record.notes,
            "created_at": record.created_at.isoformat(),
        }

        if include_allocations:
            data["allocations"] = [
                {
                    "lot_id": a.lot_id,
                    "lot_number": a.lot.lot_number,
                    "quantity": str(a.quantity),
                    "unit_cost": str(a.unit_cost),
                }
                for a in record.allocations.select_related("lot")
            ]

        return data

    # ==================== RECIPE RESOLUTION ====================

    @classmethod
    def resolve_requirements(cls,
                             dish_id: int,
                             quantity_sold: Decimal,
                             overrides: Optional[List[Dict[str, Any]]] = None
                             ) -> Dict[int, Tuple[StockItem, Decimal]]:
        """
        Stock needed for quantity_sold portions, keyed by stock item id in
        line order. Overrides replace the dish recipe for this sale.
        """
        lines: List[Tuple[StockItem, Decimal, StockUnit]] = []

        if overrides:
            for index, override in enumerate(overrides):
                if "stock_item_id" not in override:
                    raise ValidationError(f"Override {index + 1} has no stock_item_id", "stock_item_overrides")
                stock_item = StockItemService.get_item(override["stock_item_id"], active_only=True)
                quantity = positive_quantity(override.get("quantity"), "quantity")
                if override.get("unit_id"):
                    unit = StockUnitService.get_active_unit(override["unit_id"])
                    StockItemUnitService.check_convertible(stock_item, unit)
                else:
                    unit = stock_item.measuring_unit
                lines.append((stock_item, quantity, unit))
        else:
            recipe = RecipeLine.objects.filter(
                dish_id=dish_id,
                is_active=True,
                stock_item__is_active=True,
            ).select_related("stock_item", "stock_item__measuring_unit", "unit", "unit__base_unit")
            for line in recipe:
                lines.append((line.stock_item, line.quantity, line.unit))

        requirements: Dict[int, Tuple[StockItem, Decimal]] = {}
        for stock_item, quantity, unit in lines:
            required = StockItemUnitService.convert_for_item(stock_item, quantity * quantity_sold, unit)
            if stock_item.id in requirements:
                required += requirements[stock_item.id][1]
            requirements[stock_item.id] = (stock_item, required)

        return {
            item_id: (stock_item, round_decimal(required))
            for item_id, (stock_item, required) in requirements.items()
            if round_decimal(required) > 0
        }

    # ==================== RECORDING ====================

    @classmethod
    def _persist(cls,
                 stock_item: StockItem,
                 debit: DebitResult,
                 order_type: str,
                 order_ref: str = "",
                 order_item_id: int = None,
                 dish_id: int = None,
                 branch_id: int = None,
                 consumed_by: str = "",
                 notes: str = "") -> ConsumptionRecord:

        record = cls.model.objects.create(
            stock_item=stock_item,
            order_ref=order_ref or "",
            order_item_id=order_item_id,
            dish_id=dish_id,
            order_type=order_type,
            quantity=debit.quantity,
            unit_cost=debit.unit_cost,
            total_cost=debit.total_cost,
            shortfall_quantity=debit.shortfall,
            costing_method=debit.method,
            branch_id=branch_id if branch_id is not None else stock_item.branch_id,
            consumed_by=consumed_by or "",
            notes=notes or "",
        )

        ConsumptionAllocation.objects.bulk_create([
            ConsumptionAllocation(
                consumption=record,
                lot_id=allocation.lot_id,
                quantity=allocation.quantity,
                unit_cost=allocation.unit_cost,
            )
            for allocation in debit.allocations
        ])

        if order_type in (ConsumptionRecord.OrderType.RESTAURANT, ConsumptionRecord.OrderType.ROOM_SERVICE):
            movement_type = StockMovement.MovementType.SALE_OUT
        else:
            movement_type = StockMovement.MovementType.ADJUSTMENT_MINUS

        StockLevelService.decrement(
            stock_item,
            debit.quantity,
            movement_type,
            unit_cost=debit.unit_cost,
            total_cost=debit.total_cost,
            reference_type="ConsumptionRecord",
            reference_id=record.id,
            notes=notes or order_ref,
        )

        return record

    @classmethod
    def find_existing(cls, order_ref: str, dish_id: int, order_item_id: int):
        return cls.model.objects.filter(
            order_ref=order_ref,
            dish_id=dish_id,
            order_item_id=order_item_id,
        ).select_related("stock_item")

    @classmethod
    @transaction.atomic
    def record_consumption(cls,
                           dish_id: int,
                           quantity_sold: Decimal,
                           order_ref: str,
                           order_item_id: int = None,
                           stock_item_overrides: Optional[List[Dict[str, Any]]] = None,
                           branch_id: int = None,
                           consumed_by: str = "",
                           order_type: str = ConsumptionRecord.OrderType.RESTAURANT,
                           notes: str = "") -> Dict[str, Any]:
        """
        Deduct the ingredients of quantity_sold portions of a dish.
        All ingredients are debited or none is.
        """
        quantity_sold = positive_quantity(quantity_sold, "quantity_sold")

        if dish_id is None:
            raise ValidationError("Dish is required", "dish_id")
        if not order_ref:
            raise ValidationError("Order reference is required", "order_ref")

        valid_types = [c[0] for c in ConsumptionRecord.OrderType.choices]
        if order_type not in valid_types:
            raise ValidationError(f"Invalid order type. Valid: {valid_types}", "order_type")

        # Only an identified order line can be recognised as a resend
        if order_item_id is not None:
            existing = cls.find_existing(order_ref, dish_id, order_item_id)
            if existing.exists():
                logger.info(f"Consumption for {order_ref} dish {dish_id} item {order_item_id} already recorded")
                return success_response({
                    "skipped": True,
                    "reason": "already_recorded",
                    "records": [cls.serialize(r) for r in existing],
                }, "Consumption already recorded")

        requirements = cls.resolve_requirements(dish_id, quantity_sold, stock_item_overrides)
        if not requirements:
            return success_response({
                "skipped": True,
                "reason": "no_recipe",
                "records": [],
            }, f"Dish {dish_id} has no recipe lines")

        locked = StockLevelService.lock_items(requirements.keys())

        records = []
        total_cost = Decimal("0")
        for item_id, (_, required) in requirements.items():
            stock_item = locked[item_id]
            debit = CostLotService.debit(stock_item.id, required)
            record = cls._persist(
                stock_item,
                debit,
                order_type=order_type,
                order_ref=order_ref,
                order_item_id=order_item_id,
                dish_id=dish_id,
                branch_id=branch_id,
                consumed_by=consumed_by,
                notes=notes,
            )
            records.append(record)
            total_cost += record.total_cost

        logger.info(
            f"Consumption recorded for {order_ref}: dish {dish_id} x {quantity_sold}, "
            f"{len(records)} item(s), cost {round_decimal(total_cost)}"
        )

        return success_response({
            "skipped": False,
            "records": [cls.serialize(r, include_allocations=True) for r in records],
            "total_cost": str(round_decimal(total_cost)),
        }, f"Consumed {len(records)} stock item(s)")

    @classmethod
    @transaction.atomic
    def record_manual_consumption(cls,
                                  stock_item_id: int,
                                  quantity: Decimal,
                                  order_type: str = ConsumptionRecord.OrderType.MANUAL,
                                  order_ref: str = "",
                                  branch_id: int = None,
                                  consumed_by: str = "",
                                  notes: str = "") -> Dict[str, Any]:
        """Usage without a dish: wastage, staff meals, spoilage."""
        quantity = positive_quantity(quantity)

        if order_type not in (ConsumptionRecord.OrderType.MANUAL, ConsumptionRecord.OrderType.WASTAGE):
            raise ValidationError("Manual consumption must be MANUAL or WASTAGE", "order_type")

        stock_item = StockLevelService.lock_item(stock_item_id)
        if not stock_item.is_active:
            raise NotFoundError("Stock item", stock_item_id)

        debit = CostLotService.debit(stock_item.id, quantity)
        record = cls._persist(
            stock_item,
            debit,
            order_type=order_type,
            order_ref=order_ref,
            branch_id=branch_id,
            consumed_by=consumed_by,
            notes=notes,
        )

        logger.info(f"{order_type.title()} consumption of {quantity} {stock_item.name} recorded")

        return success_response({
            "record": cls.serialize(record, include_allocations=True),
        }, f"Recorded {quantity} of {stock_item.name}")

    # ==================== REVERSAL ====================

    @classmethod
    @transaction.atomic
    def reverse_consumption(cls, record_id: int, notes: str = "") -> Dict[str, Any]:
        """
        Undo one consumption record: every lot gets back exactly the
        quantity stored in its allocation and the record is removed.
        """
        stock_item_id = cls.model.objects.filter(id=record_id).values_list("stock_item_id", flat=True).first()
        if stock_item_id is None:
            raise ReversalMismatchError(
                f"Consumption record {record_id} does not exist or was already reversed",
                record_id
            )

        stock_item = StockLevelService.lock_item(stock_item_id)

        try:
            record = cls.model.objects.select_for_update().get(id=record_id)
        except cls.model.DoesNotExist:
            raise ReversalMismatchError(
                f"Consumption record {record_id} does not exist or was already reversed",
                record_id
            )

        allocations = list(record.allocations.order_by("lot_id"))
        allocated = sum((a.quantity for a in allocations), Decimal("0"))

        if not allocations and record.shortfall_quantity <= 0:
            raise ReversalMismatchError(
                f"Consumption record {record_id} has no lot allocations",
                record_id
            )

        if round_decimal(allocated + record.shortfall_quantity) != round_decimal(record.quantity):
            raise ReversalMismatchError(
                f"Allocations of consumption record {record_id} cover "
                f"{allocated + record.shortfall_quantity} of {record.quantity}",
                record_id
            )

        restored = []
        for allocation in allocations:
            lot = CostLotService.credit(allocation.lot_id, allocation.quantity)
            restored.append({
                "lot_id": lot.id,
                "lot_number": lot.lot_number,
                "quantity": str(allocation.quantity),
                "remaining_quantity": str(lot.remaining_quantity),
            })

        quantity = record.quantity
        unit_cost = record.unit_cost
        total_cost = record.total_cost
        order_ref = record.order_ref
        record.delete()

        StockLevelService.increment(
            stock_item,
            quantity,
            StockMovement.MovementType.SALE_REVERSAL,
            unit_cost=unit_cost,
            total_cost=total_cost,
            reference_type="ConsumptionRecord",
            reference_id=record_id,
            notes=notes or order_ref,
        )

        logger.info(f"Consumption record {record_id} reversed: {quantity} {stock_item.name} restored")

        return success_response({
            "reversed_id": record_id,
            "stock_item_id": stock_item.id,
            "quantity": str(quantity),
            "total_cost": str(total_cost),
            "restored_lots": restored,
            "current_stock": str(stock_item.current_stock),
        }, "Consumption reversed")

    # ==================== QUERIES ====================

    @classmethod
    def list(cls,
             branch_id: int = None,
             order_ref: str = None,
             stock_item_id: int = None,
             dish_id: int = None,
             order_type: str = None,
             date_from=None,
             date_to=None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:

        queryset = cls.model.objects.select_related("stock_item")

        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)
        if order_ref:
            queryset = queryset.filter(order_ref=order_ref)
        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)
        if dish_id:
            queryset = queryset.filter(dish_id=dish_id)
        if order_type:
            queryset = queryset.filter(order_type=order_type)

        date_from = parse_date(date_from, "date_from")
        date_to = parse_date(date_to, "date_to")
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        totals = queryset.aggregate(cost=Sum("total_cost"))
        records, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "records": [cls.serialize(r) for r in records],
            "total_cost": str(round_decimal(totals["cost"] or Decimal("0"))),
            "pagination": pagination,
        })

    @classmethod
    def get(cls, record_id: int) -> Dict[str, Any]:
        try:
            record = cls.model.objects.select_related("stock_item").get(id=record_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Consumption record", record_id)

        return success_response({
            "record": cls.serialize(record, include_allocations=True),
        })
