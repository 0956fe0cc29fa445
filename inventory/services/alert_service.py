import logging
from typing import Dict, Any, List, Optional
from decimal import Decimal
from django.conf import settings
from django.core.cache import cache
from django.db.models import F
from django.db.models.functions import Coalesce

from inventory.models import StockItem, InventorySettings
from inventory.services.base_service import BaseService, success_response, round_decimal
from inventory.services.notification_service import get_telegram_service, format_low_stock_message

logger = logging.getLogger(__name__)


class AlertService(BaseService):
    model = StockItem

    @classmethod
    def low_stock_queryset(cls, branch_id: int = None):
        queryset = cls.model.objects.filter(is_active=True).select_related("measuring_unit").filter(
            current_stock__lte=Coalesce(F("reorder_level"), F("minimum_stock"))
        )
        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)
        return queryset.order_by("name")

    @classmethod
    def serialize_low_stock(cls, item: StockItem) -> Dict[str, Any]:
        threshold = item.alert_threshold
        if item.reorder_quantity:
            suggested = item.reorder_quantity
        elif item.maximum_stock is not None:
            suggested = max(item.maximum_stock - item.current_stock, Decimal("0"))
        else:
            suggested = max(threshold - item.current_stock, Decimal("0"))

        return {
            "stock_item_id": item.id,
            "name": item.name,
            "sku": item.sku,
            "branch_id": item.branch_id,
            "unit": item.measuring_unit.short_name,
            "current_stock": str(item.current_stock),
            "threshold": str(threshold),
            "reorder_level": str(item.reorder_level) if item.reorder_level is not None else None,
            "minimum_stock": str(item.minimum_stock),
            "shortage": str(round_decimal(max(threshold - item.current_stock, Decimal("0")))),
            "suggested_order_quantity": str(round_decimal(suggested)),
        }

    @classmethod
    def list_low_stock(cls, branch_id: int = None) -> Dict[str, Any]:
        """Active items at or below their reorder level, or minimum stock when none is set."""
        items = cls.low_stock_queryset(branch_id)
        return success_response({
            "items": [cls.serialize_low_stock(item) for item in items],
            "count": items.count(),
        })

    @classmethod
    def is_low_stock(cls, item: StockItem) -> bool:
        return item.is_active and item.current_stock <= item.alert_threshold

    @classmethod
    def on_inventory_update(cls, stock_item_id: int) -> bool:
        inventory_settings = InventorySettings.load()
        if not inventory_settings.low_stock_alert_enabled:
            return False

        item = cls.model.objects.select_related("measuring_unit").filter(id=stock_item_id).first()
        if item is None or not cls.is_low_stock(item):
            return False

        return LowStockNotifier.notify(item, inventory_settings)

    @classmethod
    def check_all(cls, branch_id: int = None) -> Dict[str, Any]:
        inventory_settings = InventorySettings.load()
        if not inventory_settings.low_stock_alert_enabled:
            return success_response({"checked": 0, "notified": 0}, "Low stock alerts disabled")

        items = list(cls.low_stock_queryset(branch_id))
        notified = LowStockNotifier.notify_many(items, inventory_settings)

        logger.info(f"Low stock check: {len(items)} low item(s), {notified} notification(s) sent")

        return success_response({
            "checked": len(items),
            "notified": notified,
        })


class LowStockNotifier:
    """
    Sends one Telegram message per low item and stock level.
    The cache remembers what was already sent.
    """

    KEY_PREFIX = "inventory:low_stock"

    @classmethod
    def cache_key(cls, item: StockItem) -> str:
        return f"{cls.KEY_PREFIX}:{item.id}:{round_decimal(item.current_stock)}:{round_decimal(item.alert_threshold)}"

    @classmethod
    def notify(cls, item: StockItem, inventory_settings: Optional[InventorySettings] = None) -> bool:
        inventory_settings = inventory_settings or InventorySettings.load()
        if not inventory_settings.notify_telegram:
            return False

        key = cls.cache_key(item)
        timeout = getattr(settings, "LOW_STOCK_NOTIFICATION_TTL", 24 * 60 * 60)
        if not cache.add(key, True, timeout):
            return False

        service = get_telegram_service()
        if service is None:
            logger.debug("Telegram is not configured, low stock alert skipped")
            cache.delete(key)
            return False

        sent, error = service.send_message(format_low_stock_message(AlertService.serialize_low_stock(item)))
        if not sent:
            # Let the next check retry
            cache.delete(key)
            logger.warning(f"Low stock alert for {item.name} not sent: {error}")
            return False

        logger.info(f"Low stock alert sent for {item.name} ({item.current_stock})")
        return True

    @classmethod
    def notify_many(cls, items: List[StockItem], inventory_settings: Optional[InventorySettings] = None) -> int:
        inventory_settings = inventory_settings or InventorySettings.load()
        return sum(1 for item in items if cls.notify(item, inventory_settings))
