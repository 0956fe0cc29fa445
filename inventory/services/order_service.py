"""
Order Integration Service - stock deduction for restaurant and room service orders
"""
import logging
from typing import Dict, Any, List
from decimal import Decimal
from django.db import transaction
from django.db.models import Sum

from inventory.models import ConsumptionRecord, CostLot
from inventory.services.base_service import (
    success_response, ValidationError, positive_quantity, round_decimal
)
from inventory.services.consumption_service import ConsumptionService
from inventory.services.level_service import StockLevelService

logger = logging.getLogger(__name__)


class OrderStockService:
    """
    Entry point for the order subsystem.

    Order items are dicts with {order_item_id, dish_id, quantity, overrides?}.
    """

    @classmethod
    def _clean_items(cls, order_items: List[Dict]) -> List[Dict]:
        if not order_items:
            raise ValidationError("Order has no items", "items")

        cleaned = []
        for index, order_item in enumerate(order_items):
            if order_item.get("dish_id") is None:
                raise ValidationError(f"Order item {index + 1} has no dish_id", "dish_id")
            cleaned.append({
                "order_item_id": order_item.get("order_item_id"),
                "dish_id": order_item["dish_id"],
                "quantity": positive_quantity(order_item.get("quantity", 1)),
                "overrides": order_item.get("overrides") or None,
            })
        return cleaned

    @classmethod
    @transaction.atomic
    def consume_order_items(cls,
                            order_ref: str,
                            order_items: List[Dict],
                            branch_id: int = None,
                            consumed_by: str = "",
                            order_type: str = ConsumptionRecord.OrderType.RESTAURANT) -> Dict[str, Any]:
        """
        Deduct stock for every item of an order. Either all items are
        consumed or none: the first failure rolls the whole order back.
        """
        items = cls._clean_items(order_items)

        # Lock every ingredient of the order up front, in id order
        involved = set()
        for item in items:
            requirements = ConsumptionService.resolve_requirements(
                item["dish_id"], item["quantity"], item["overrides"]
            )
            involved.update(requirements.keys())
        if involved:
            StockLevelService.lock_items(involved)

        results = []
        total_cost = Decimal("0")
        for item in items:
            result = ConsumptionService.record_consumption(
                dish_id=item["dish_id"],
                quantity_sold=item["quantity"],
                order_ref=order_ref,
                order_item_id=item["order_item_id"],
                stock_item_overrides=item["overrides"],
                branch_id=branch_id,
                consumed_by=consumed_by,
                order_type=order_type,
            )
            if not result["skipped"]:
                total_cost += Decimal(result["total_cost"])
            results.append({
                "order_item_id": item["order_item_id"],
                "dish_id": item["dish_id"],
                "skipped": result["skipped"],
                "reason": result.get("reason"),
                "records": result["records"],
            })

        consumed = sum(1 for r in results if not r["skipped"])
        logger.info(f"Order {order_ref}: {consumed} of {len(results)} item(s) consumed")

        return success_response({
            "order_ref": order_ref,
            "items": results,
            "total_cost": str(round_decimal(total_cost)),
        }, f"Processed {len(results)} order item(s)")

    @classmethod
    def _reverse_records(cls, records, order_ref: str, notes: str) -> Dict[str, Any]:
        reversals = []
        for record_id in records.order_by("id").values_list("id", flat=True):
            result = ConsumptionService.reverse_consumption(record_id, notes=notes)
            reversals.append({
                "consumption_id": record_id,
                "stock_item_id": result["stock_item_id"],
                "quantity": result["quantity"],
            })

        return success_response({
            "order_ref": order_ref,
            "reversals": reversals,
            "total_reversals": len(reversals),
        }, f"Reversed {len(reversals)} consumption record(s)")

    @classmethod
    @transaction.atomic
    def reverse_order_item(cls, order_ref: str, order_item_id: int, reason: str = "Order item cancelled") -> Dict[str, Any]:
        records = ConsumptionRecord.objects.filter(order_ref=order_ref, order_item_id=order_item_id)
        return cls._reverse_records(records, order_ref, reason)

    @classmethod
    @transaction.atomic
    def reverse_order(cls, order_ref: str, reason: str = "Order cancelled") -> Dict[str, Any]:
        records = ConsumptionRecord.objects.filter(order_ref=order_ref)
        return cls._reverse_records(records, order_ref, reason)

    @classmethod
    def check_availability(cls, order_items: List[Dict]) -> Dict[str, Any]:
        """Report shortages for an order before it is sent to the kitchen."""
        items = cls._clean_items(order_items)

        required: Dict[int, Decimal] = {}
        names: Dict[int, str] = {}
        for item in items:
            requirements = ConsumptionService.resolve_requirements(
                item["dish_id"], item["quantity"], item["overrides"]
            )
            for item_id, (stock_item, quantity) in requirements.items():
                required[item_id] = required.get(item_id, Decimal("0")) + quantity
                names[item_id] = stock_item.name

        available = {
            row["stock_item_id"]: row["total"]
            for row in CostLot.objects.filter(
                stock_item_id__in=required.keys(), remaining_quantity__gt=0
            ).values("stock_item_id").annotate(total=Sum("remaining_quantity"))
        }

        shortages = []
        for item_id, quantity in required.items():
            on_hand = available.get(item_id) or Decimal("0")
            if quantity > on_hand:
                shortages.append({
                    "stock_item_id": item_id,
                    "name": names[item_id],
                    "required": str(quantity),
                    "available": str(round_decimal(on_hand)),
                    "shortage": str(round_decimal(quantity - on_hand)),
                })

        return success_response({
            "all_available": not shortages,
            "shortages": shortages,
        })
