"""
Inventory Services - stock valuation and consumption business logic

Usage:
    from inventory.services import PurchaseReceivingService, ConsumptionService

    # Receive a delivery
    PurchaseReceivingService.receive_items(po_id=1, receipts=[{"item_id": 3, "quantity": 10}])

    # Deduct ingredients for a sold dish
    ConsumptionService.record_consumption(dish_id=12, quantity_sold=2, order_ref="R-1042")
"""

# Base utilities
from inventory.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    BusinessRuleError,
    OverReceiptError,
    InsufficientStockError,
    ReversalMismatchError,
    ConsistencyError,
    success_response,
    paginate_queryset,
    to_decimal,
    round_decimal,
    generate_number,
    BaseService,
)

# Settings
from .settings_service import InventorySettingsService

# Catalog
from .unit_service import StockUnitService, StockItemUnitService
from .category_service import StockCategoryService
from .supplier_service import SupplierService
from .item_service import StockItemService

# Lots & levels
from .level_service import StockLevelService
from .lot_service import CostLotService, LotAllocation, DebitResult

# Recipes & consumption
from .recipe_service import RecipeService
from .consumption_service import ConsumptionService
from .adjustment_service import StockAdjustmentService

# Purchasing
from .purchase_service import (
    PurchaseOrderService,
    PurchaseOrderItemService,
    PurchaseReceivingService,
)

# Alerts & order integration
from .alert_service import AlertService, LowStockNotifier
from .order_service import OrderStockService


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleError",
    "OverReceiptError",
    "InsufficientStockError",
    "ReversalMismatchError",
    "ConsistencyError",
    "success_response",
    "paginate_queryset",
    "to_decimal",
    "round_decimal",
    "generate_number",
    "BaseService",

    # Settings
    "InventorySettingsService",

    # Catalog
    "StockUnitService",
    "StockItemUnitService",
    "StockCategoryService",
    "SupplierService",
    "StockItemService",

    # Lots & levels
    "StockLevelService",
    "CostLotService",
    "LotAllocation",
    "DebitResult",

    # Recipes & consumption
    "RecipeService",
    "ConsumptionService",
    "StockAdjustmentService",

    # Purchasing
    "PurchaseOrderService",
    "PurchaseOrderItemService",
    "PurchaseReceivingService",

    # Alerts & order integration
    "AlertService",
    "LowStockNotifier",
    "OrderStockService",
]
