import logging
from typing import Dict, Any, List, Iterable
from decimal import Decimal
from django.conf import settings
from django.db import transaction
from django.db.models import Sum, F
from django.utils import timezone

from inventory.models import StockItem, StockMovement, CostLot, ConsumptionRecord
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    NotFoundError, ValidationError, ConsistencyError,
    round_decimal, generate_reference, parse_date
)

logger = logging.getLogger(__name__)


class StockLevelService(BaseService):
    """
    Keeps StockItem.current_stock in step with the lot ledger.
    Every change goes through increment/decrement and leaves a StockMovement.
    """

    model = StockMovement

    @classmethod
    def serialize_movement(cls, movement: StockMovement) -> Dict[str, Any]:
        return {
            "id": movement.id,
            "uuid": str(movement.uuid),
            "movement_number": movement.movement_number,
            "stock_item_id": movement.stock_item_id,
            "stock_item": movement.stock_item.name,
            "movement_type": movement.movement_type,
            "movement_type_display": movement.get_movement_type_display(),
            "quantity": str(movement.quantity),
            "quantity_before": str(movement.quantity_before),
            "quantity_after": str(movement.quantity_after),
            "unit_cost": str(movement.unit_cost),
            "total_cost": str(movement.total_cost),
            "reference_type": movement.reference_type,
            "reference_id": movement.reference_id,
            "notes": movement.notes,
            "created_at": movement.created_at.isoformat(),
        }

    # ==================== LOCKING ====================

    @classmethod
    def lock_items(cls, item_ids: Iterable[int]) -> Dict[int, StockItem]:
        """Row-lock stock items in ascending id order. Must run inside a transaction."""
        ids = sorted(set(item_ids))
        items = (
            StockItem.objects.select_for_update(of=("self",))
            .select_related("measuring_unit")
            .filter(id__in=ids)
            .order_by("id")
        )
        locked = {item.id: item for item in items}

        missing = [i for i in ids if i not in locked]
        if missing:
            raise NotFoundError("Stock item", missing[0])

        return locked

    @classmethod
    def lock_item(cls, item_id: int) -> StockItem:
        return cls.lock_items([item_id])[item_id]

    # ==================== COUNTER UPDATES ====================

    @classmethod
    def _apply(cls,
               stock_item: StockItem,
               delta: Decimal,
               movement_type: str,
               unit_cost: Decimal = Decimal("0"),
               total_cost: Decimal = None,
               reference_type: str = "",
               reference_id: Any = "",
               notes: str = "") -> StockMovement:

        stock_item.refresh_from_db(fields=["current_stock"])
        before = stock_item.current_stock
        after = round_decimal(before + delta)

        StockItem.objects.filter(pk=stock_item.pk).update(
            current_stock=F("current_stock") + delta,
            updated_at=timezone.now(),
        )
        stock_item.current_stock = after

        quantity = abs(delta)
        unit_cost = round_decimal(unit_cost or Decimal("0"))
        if total_cost is None:
            total_cost = quantity * unit_cost

        movement = StockMovement.objects.create(
            movement_number=generate_reference("MOV"),
            stock_item=stock_item,
            movement_type=movement_type,
            quantity=quantity,
            quantity_before=before,
            quantity_after=after,
            unit_cost=unit_cost,
            total_cost=round_decimal(total_cost),
            reference_type=reference_type or "",
            reference_id=str(reference_id) if reference_id not in (None, "") else "",
            notes=notes or "",
        )

        item_id = stock_item.id
        transaction.on_commit(lambda: cls._after_commit(item_id, after))

        return movement

    @classmethod
    def increment(cls, stock_item: StockItem, quantity: Decimal, movement_type: str, **kwargs) -> StockMovement:
        if quantity <= 0:
            raise ValidationError("Increment quantity must be positive", "quantity")
        return cls._apply(stock_item, quantity, movement_type, **kwargs)

    @classmethod
    def decrement(cls, stock_item: StockItem, quantity: Decimal, movement_type: str, **kwargs) -> StockMovement:
        if quantity <= 0:
            raise ValidationError("Decrement quantity must be positive", "quantity")
        return cls._apply(stock_item, -quantity, movement_type, **kwargs)

    # ==================== POST-COMMIT HOOKS ====================

    @classmethod
    def _after_commit(cls, stock_item_id: int, current_stock: Decimal):
        from inventory.services.alert_service import AlertService

        try:
            AlertService.on_inventory_update(stock_item_id)
        except Exception as e:
            logger.warning(f"Low stock check failed for item {stock_item_id}: {e}")

        if getattr(settings, "REALTIME_UPDATES_ENABLED", False):
            cls._broadcast_update(stock_item_id, current_stock)

    @classmethod
    def _broadcast_update(cls, stock_item_id: int, current_stock: Decimal):
        try:
            from channels.layers import get_channel_layer
            from asgiref.sync import async_to_sync

            channel_layer = get_channel_layer()
            async_to_sync(channel_layer.group_send)(
                "inventory_updates",
                {
                    "type": "stock_update",
                    "stock_item_id": stock_item_id,
                    "current_stock": str(current_stock),
                    "timestamp": timezone.now().isoformat(),
                }
            )
        except Exception as e:
            logger.warning(f"Failed to broadcast stock update: {e}")

    # ==================== RECONCILIATION ====================

    @classmethod
    def compute_drift(cls, stock_item_id: int = None) -> List[Dict[str, Any]]:
        """Items whose counter differs from open lots minus uncovered consumption."""
        items = StockItem.objects.all().order_by("id")
        lots = CostLot.objects.all()
        shortfalls = ConsumptionRecord.objects.filter(shortfall_quantity__gt=0)

        if stock_item_id is not None:
            if not items.filter(id=stock_item_id).exists():
                raise NotFoundError("Stock item", stock_item_id)
            items = items.filter(id=stock_item_id)
            lots = lots.filter(stock_item_id=stock_item_id)
            shortfalls = shortfalls.filter(stock_item_id=stock_item_id)

        lot_totals = {
            row["stock_item_id"]: row["total"]
            for row in lots.values("stock_item_id").annotate(total=Sum("remaining_quantity"))
        }
        shortfall_totals = {
            row["stock_item_id"]: row["total"]
            for row in shortfalls.values("stock_item_id").annotate(total=Sum("shortfall_quantity"))
        }

        drifts = []
        for item in items.only("id", "name", "current_stock"):
            lot_total = lot_totals.get(item.id) or Decimal("0")
            shortfall = shortfall_totals.get(item.id) or Decimal("0")
            expected = round_decimal(lot_total - shortfall)

            if round_decimal(item.current_stock) != expected:
                drifts.append({
                    "stock_item_id": item.id,
                    "name": item.name,
                    "current_stock": str(item.current_stock),
                    "lot_total": str(round_decimal(lot_total)),
                    "shortfall": str(round_decimal(shortfall)),
                    "difference": str(round_decimal(item.current_stock - expected)),
                })

        return drifts

    @classmethod
    def reconcile(cls, stock_item_id: int = None, notify: bool = True) -> Dict[str, Any]:
        """
        Compare every counter with its lots. Drift is reported, never repaired:
        it is logged at CRITICAL, sent to Telegram and raised as ConsistencyError.
        """
        drifts = cls.compute_drift(stock_item_id)

        if drifts:
            for drift in drifts:
                logger.critical(
                    f"Stock drift on {drift['name']} (#{drift['stock_item_id']}): "
                    f"counter {drift['current_stock']}, lots {drift['lot_total']}, "
                    f"shortfall {drift['shortfall']}"
                )
            if notify:
                from inventory.services.notification_service import notify_consistency_error
                notify_consistency_error(drifts)
            raise ConsistencyError(drifts)

        checked = 1 if stock_item_id is not None else StockItem.objects.count()
        logger.info(f"Stock reconciliation passed for {checked} item(s)")

        return success_response({
            "checked": checked,
            "drifts": [],
        }, "Stock levels consistent")

    # ==================== HISTORY ====================

    @classmethod
    def list_movements(cls,
                       stock_item_id: int = None,
                       movement_type: str = None,
                       reference_type: str = None,
                       reference_id: str = None,
                       date_from=None,
                       date_to=None,
                       page: int = 1,
                       per_page: int = 50) -> Dict[str, Any]:

        queryset = cls.model.objects.select_related("stock_item")

        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)
        if movement_type:
            valid_types = [c[0] for c in StockMovement.MovementType.choices]
            if movement_type not in valid_types:
                raise ValidationError(f"Invalid movement type. Valid: {valid_types}", "movement_type")
            queryset = queryset.filter(movement_type=movement_type)
        if reference_type:
            queryset = queryset.filter(reference_type=reference_type)
        if reference_id:
            queryset = queryset.filter(reference_id=str(reference_id))

        date_from = parse_date(date_from, "date_from")
        date_to = parse_date(date_to, "date_to")
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        movements, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "movements": [cls.serialize_movement(m) for m in movements],
            "pagination": pagination,
        })
