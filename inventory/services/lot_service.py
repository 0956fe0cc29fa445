"""
Cost Lot Service - acquisition lots and FIFO/LIFO/AVERAGE costing
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from decimal import Decimal
from datetime import datetime
from django.db import transaction
from django.db.models import Sum, F, DecimalField, ExpressionWrapper
from django.utils import timezone

from inventory.models import CostLot, StockItem, StockMovement, InventorySettings
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, InsufficientStockError, ReversalMismatchError,
    to_decimal, round_decimal, positive_quantity, generate_reference, parse_date
)
from inventory.services.level_service import StockLevelService
from inventory.services.settings_service import InventorySettingsService

logger = logging.getLogger(__name__)


SOURCE_MOVEMENTS = {
    CostLot.Source.PURCHASE: StockMovement.MovementType.PURCHASE_IN,
    CostLot.Source.ADJUSTMENT: StockMovement.MovementType.ADJUSTMENT_PLUS,
    CostLot.Source.OPENING: StockMovement.MovementType.OPENING_BALANCE,
}


@dataclass
class LotAllocation:
    lot_id: int
    quantity: Decimal
    unit_cost: Decimal

    @property
    def total_cost(self) -> Decimal:
        return round_decimal(self.quantity * self.unit_cost)

    def to_dict(self) -> Dict[str, str]:
        return {
            "lot_id": self.lot_id,
            "quantity": str(self.quantity),
            "unit_cost": str(self.unit_cost),
            "total_cost": str(self.total_cost),
        }


@dataclass
class DebitResult:
    stock_item_id: int
    method: str
    quantity: Decimal
    total_cost: Decimal
    unit_cost: Decimal
    allocations: List[LotAllocation] = field(default_factory=list)
    shortfall: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stock_item_id": self.stock_item_id,
            "method": self.method,
            "quantity": str(self.quantity),
            "total_cost": str(self.total_cost),
            "unit_cost": str(self.unit_cost),
            "shortfall": str(self.shortfall),
            "allocations": [a.to_dict() for a in self.allocations],
        }


class CostLotService(BaseService):
    model = CostLot

    @classmethod
    def serialize(cls, lot: CostLot) -> Dict[str, Any]:
        return {
            "id": lot.id,
            "uuid": str(lot.uuid),
            "lot_number": lot.lot_number,
            "stock_item_id": lot.stock_item_id,
            "stock_item": lot.stock_item.name,
            "source": lot.source,
            "source_display": lot.get_source_display(),
            "quantity": str(lot.quantity),
            "remaining_quantity": str(lot.remaining_quantity),
            "unit_cost": str(lot.unit_cost),
            "total_cost": str(lot.total_cost),
            "remaining_value": str(round_decimal(lot.remaining_quantity * lot.unit_cost)),
            "costing_method": lot.costing_method,
            "acquired_at": lot.acquired_at.isoformat(),
            "batch_number": lot.batch_number,
            "expiry_date": lot.expiry_date.isoformat() if lot.expiry_date else None,
            "supplier_id": lot.supplier_id,
            "receipt_item_id": lot.receipt_item_id,
            "notes": lot.notes,
        }

    # ==================== LOT CREATION ====================

    @classmethod
    @transaction.atomic
    def create_lot(cls,
                   stock_item_id: int,
                   quantity: Decimal,
                   unit_cost: Decimal,
                   source: str = CostLot.Source.PURCHASE,
                   acquired_at: datetime = None,
                   batch_number: str = "",
                   expiry_date=None,
                   supplier=None,
                   receipt_item=None,
                   reference_type: str = "",
                   reference_id: Any = "",
                   notes: str = "") -> CostLot:
        """Open a lot and raise the item's counter by the same quantity."""
        quantity = positive_quantity(quantity)
        unit_cost = round_decimal(to_decimal(unit_cost, field="unit_cost"))
        if unit_cost < 0:
            raise ValidationError("Unit cost cannot be negative", "unit_cost")

        if source not in SOURCE_MOVEMENTS:
            raise ValidationError(f"Invalid lot source: {source}", "source")

        stock_item = StockLevelService.lock_item(stock_item_id)

        lot = cls.model.objects.create(
            lot_number=generate_reference("LOT"),
            stock_item=stock_item,
            source=source,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=round_decimal(quantity * unit_cost),
            remaining_quantity=quantity,
            costing_method=InventorySettingsService.get_costing_method(),
            acquired_at=acquired_at or timezone.now(),
            batch_number=batch_number or "",
            expiry_date=parse_date(expiry_date, "expiry_date"),
            supplier=supplier,
            receipt_item=receipt_item,
            notes=notes or "",
        )

        StockLevelService.increment(
            stock_item,
            quantity,
            SOURCE_MOVEMENTS[source],
            unit_cost=unit_cost,
            total_cost=lot.total_cost,
            reference_type=reference_type or "CostLot",
            reference_id=reference_id or lot.id,
            notes=notes,
        )

        logger.info(f"Lot {lot.lot_number} opened: {stock_item.name} {quantity} @ {unit_cost}")
        return lot

    @classmethod
    def record_opening_balance(cls,
                               stock_item_id: int,
                               quantity: Decimal,
                               unit_cost: Decimal,
                               notes: str = "") -> Dict[str, Any]:
        lot = cls.create_lot(
            stock_item_id=stock_item_id,
            quantity=quantity,
            unit_cost=unit_cost,
            source=CostLot.Source.OPENING,
            notes=notes or "Opening balance",
        )
        return success_response({
            "lot": cls.serialize(lot),
        }, "Opening balance recorded")

    # ==================== DEBIT / CREDIT ====================

    @classmethod
    def _ordered_open_lots(cls, stock_item_id: int, method: str):
        queryset = cls.model.objects.select_for_update().filter(
            stock_item_id=stock_item_id,
            remaining_quantity__gt=0,
        )
        if method == InventorySettings.CostingMethod.LIFO:
            return list(queryset.order_by("-acquired_at", "-id"))
        # FIFO and AVERAGE both draw quantities oldest first
        return list(queryset.order_by("acquired_at", "id"))

    @classmethod
    def fallback_unit_cost(cls, stock_item: StockItem) -> Decimal:
        """Latest lot cost, else the item's default price."""
        latest = cls.model.objects.filter(
            stock_item_id=stock_item.id
        ).order_by("-acquired_at", "-id").first()
        if latest:
            return latest.unit_cost
        return stock_item.default_price

    @classmethod
    @transaction.atomic
    def debit(cls,
              stock_item_id: int,
              quantity: Decimal,
              method: str = None,
              allow_negative: bool = None) -> DebitResult:
        """
        Remove quantity from the item's open lots and cost it.

        FIFO walks lots oldest first, LIFO newest first. AVERAGE draws
        oldest first but charges every unit the weighted average of the
        open lots. When negative stock is allowed, the part no lot covers
        is returned as shortfall and costed at the latest known cost.
        Does not touch the item's counter.
        """
        quantity = positive_quantity(quantity)

        if method is None:
            method = InventorySettingsService.get_costing_method()
        else:
            method = InventorySettingsService.validate_costing_method(method)

        if allow_negative is None:
            allow_negative = InventorySettings.load().allow_negative_stock

        stock_item = StockLevelService.lock_item(stock_item_id)
        lots = cls._ordered_open_lots(stock_item.id, method)

        available = sum((lot.remaining_quantity for lot in lots), Decimal("0"))
        if available < quantity and not allow_negative:
            raise InsufficientStockError(stock_item.name, quantity, available, stock_item.id)

        average_exact = None
        open_value = sum((lot.remaining_quantity * lot.unit_cost for lot in lots), Decimal("0"))
        if method == InventorySettings.CostingMethod.AVERAGE and available > 0:
            average_exact = open_value / available

        remaining = quantity
        allocations = []
        allocated_cost = Decimal("0")

        for lot in lots:
            if remaining <= 0:
                break

            take = min(remaining, lot.remaining_quantity)
            lot.remaining_quantity -= take
            lot.save(update_fields=["remaining_quantity"])

            if average_exact is not None:
                allocations.append(LotAllocation(lot.id, take, round_decimal(average_exact)))
            else:
                allocations.append(LotAllocation(lot.id, take, lot.unit_cost))
                allocated_cost += take * lot.unit_cost

            remaining -= take

        covered = quantity - remaining
        if average_exact is not None:
            allocated_cost = covered * open_value / available

        shortfall = remaining if remaining > 0 else Decimal("0")
        shortfall_cost = Decimal("0")
        if shortfall:
            fallback = cls.fallback_unit_cost(stock_item)
            shortfall_cost = shortfall * fallback
            logger.warning(
                f"Negative stock on {stock_item.name}: {shortfall} not covered by lots, "
                f"costed at {fallback}"
            )

        total_cost = round_decimal(allocated_cost + shortfall_cost)

        return DebitResult(
            stock_item_id=stock_item.id,
            method=method,
            quantity=quantity,
            total_cost=total_cost,
            unit_cost=round_decimal(total_cost / quantity),
            allocations=allocations,
            shortfall=round_decimal(shortfall),
        )

    @classmethod
    @transaction.atomic
    def credit(cls, lot_id: int, quantity: Decimal) -> CostLot:
        """Return quantity to one lot. Never lets a lot exceed what it was acquired with."""
        quantity = positive_quantity(quantity)

        try:
            lot = cls.model.objects.select_for_update().get(id=lot_id)
        except cls.model.DoesNotExist:
            raise NotFoundError("Cost lot", lot_id)

        if lot.remaining_quantity + quantity > lot.quantity:
            raise ReversalMismatchError(
                f"Cannot return {quantity} to lot {lot.lot_number}: "
                f"{lot.remaining_quantity} of {lot.quantity} already open"
            )

        lot.remaining_quantity += quantity
        lot.save(update_fields=["remaining_quantity"])
        return lot

    # ==================== QUERIES ====================

    @classmethod
    def list_lots(cls,
                  stock_item_id: int = None,
                  open_only: bool = False,
                  source: str = None,
                  page: int = 1,
                  per_page: int = 50) -> Dict[str, Any]:

        queryset = cls.model.objects.select_related("stock_item")

        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)
        if open_only:
            queryset = queryset.filter(remaining_quantity__gt=0)
        if source:
            queryset = queryset.filter(source=source)

        lots, pagination = paginate_queryset(queryset.order_by("acquired_at", "id"), page, per_page)

        return success_response({
            "lots": [cls.serialize(lot) for lot in lots],
            "pagination": pagination,
        })

    @classmethod
    def get_lot(cls, lot_id: int) -> Dict[str, Any]:
        try:
            lot = cls.model.objects.select_related("stock_item").get(id=lot_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Cost lot", lot_id)

        allocations = lot.allocations.select_related("consumption").order_by("-id")[:50]

        data = cls.serialize(lot)
        data["allocations"] = [
            {
                "consumption_id": a.consumption_id,
                "order_ref": a.consumption.order_ref,
                "quantity": str(a.quantity),
                "unit_cost": str(a.unit_cost),
            }
            for a in allocations
        ]
        return success_response({"lot": data})

    @classmethod
    def count_open_lots(cls, stock_item_id: int) -> int:
        return cls.model.objects.filter(stock_item_id=stock_item_id, remaining_quantity__gt=0).count()

    @classmethod
    def get_average_cost(cls, stock_item: StockItem) -> Decimal:
        totals = cls.model.objects.filter(
            stock_item_id=stock_item.id,
            remaining_quantity__gt=0,
        ).aggregate(
            quantity=Sum("remaining_quantity"),
            value=Sum(ExpressionWrapper(
                F("remaining_quantity") * F("unit_cost"),
                output_field=DecimalField(max_digits=30, decimal_places=8),
            )),
        )

        if totals["quantity"]:
            return round_decimal((totals["value"] or Decimal("0")) / totals["quantity"])
        return round_decimal(cls.fallback_unit_cost(stock_item))

    @classmethod
    def get_valuation(cls, branch_id: int = None, category_id: int = None) -> Dict[str, Any]:
        """Value of open lots per active item, at each lot's own cost."""
        items = StockItem.objects.filter(is_active=True).select_related("measuring_unit")
        if branch_id:
            items = items.filter(branch_id=branch_id)
        if category_id:
            items = items.filter(category_id=category_id)

        rows = cls.model.objects.filter(
            stock_item__in=items,
            remaining_quantity__gt=0,
        ).values("stock_item_id").annotate(
            quantity=Sum("remaining_quantity"),
            value=Sum(ExpressionWrapper(
                F("remaining_quantity") * F("unit_cost"),
                output_field=DecimalField(max_digits=30, decimal_places=8),
            )),
        )
        by_item = {row["stock_item_id"]: row for row in rows}

        result = []
        grand_total = Decimal("0")
        for item in items.order_by("name"):
            row = by_item.get(item.id)
            quantity = row["quantity"] if row else Decimal("0")
            value = round_decimal(row["value"] or Decimal("0")) if row else Decimal("0")
            grand_total += value
            result.append({
                "stock_item_id": item.id,
                "name": item.name,
                "unit": item.measuring_unit.short_name,
                "current_stock": str(item.current_stock),
                "lot_quantity": str(round_decimal(quantity)),
                "value": str(value),
                "average_cost": str(round_decimal(value / quantity)) if quantity else None,
            })

        return success_response({
            "items": result,
            "total_value": str(round_decimal(grand_total)),
            "count": len(result),
        })
