import json
import logging

from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from inventory.services import (
    ServiceError, ValidationError, NotFoundError, BusinessRuleError,
    OverReceiptError, InsufficientStockError, ReversalMismatchError, ConsistencyError,
    InventorySettingsService,
    StockUnitService, StockItemUnitService, StockCategoryService,
    SupplierService, StockItemService,
    StockLevelService, CostLotService, StockAdjustmentService,
    RecipeService, ConsumptionService,
    PurchaseOrderService, PurchaseOrderItemService, PurchaseReceivingService,
    AlertService, OrderStockService,
)

logger = logging.getLogger(__name__)


def error_response(message: str, code: str = "ERROR", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message}}
    if details:
        data["error"]["details"] = details
    return JsonResponse(data, status=status)


def handle_service_error(e: Exception):
    if isinstance(e, ValidationError):
        details = dict(e.details)
        if e.field:
            details["field"] = e.field
        return error_response(e.message, e.code, 400, details)
    elif isinstance(e, NotFoundError):
        return error_response(e.message, e.code, 404, e.details)
    elif isinstance(e, (BusinessRuleError, OverReceiptError, InsufficientStockError, ReversalMismatchError)):
        return error_response(e.message, e.code, 409, e.details)
    elif isinstance(e, ConsistencyError):
        return error_response(e.message, e.code, 500, e.details)
    elif isinstance(e, ServiceError):
        return error_response(e.message, e.code, 400, e.details)
    else:
        logger.exception("Unhandled inventory API error")
        return error_response("Internal server error", "SERVER_ERROR", 500)


class BaseInventoryView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except Exception as e:
            return handle_service_error(e)

    def get_json_body(self, request):
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def get_int(self, request, name: str, default=None):
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", name)

    def get_bool(self, request, name: str, default: bool = False) -> bool:
        value = request.GET.get(name)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes")

    def get_user_name(self, request):
        user = getattr(request, "user", None)
        if user is not None and user.is_authenticated:
            return user.get_username()
        return ""

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)


# ==================== SETTINGS ====================

class InventorySettingsView(BaseInventoryView):

    def get(self, request):
        return self.success(InventorySettingsService.get_all())

    def put(self, request):
        data = self.get_json_body(request)
        return self.success(InventorySettingsService.update(**data))


# ==================== UNITS ====================

class UnitListView(BaseInventoryView):
    """GET/POST /api/inventory/units/"""

    def get(self, request):
        return self.success(StockUnitService.list(
            include_inactive=self.get_bool(request, "include_inactive"),
            type_filter=request.GET.get("type"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(StockUnitService.create(**data), 201)


class UnitSeedView(BaseInventoryView):

    def post(self, request):
        return self.success(StockUnitService.seed_defaults())


class UnitConvertView(BaseInventoryView):
    """GET /api/inventory/units/convert/?quantity=&from=&to="""

    def get(self, request):
        result, details = StockUnitService.convert(
            quantity=request.GET.get("quantity"),
            from_unit_id=self.get_int(request, "from"),
            to_unit_id=self.get_int(request, "to"),
        )
        return self.success({"result": str(result), **details})


# ==================== CATEGORIES ====================

class CategoryListView(BaseInventoryView):

    def get(self, request):
        return self.success(StockCategoryService.list(
            branch_id=self.get_int(request, "branch_id"),
            include_inactive=self.get_bool(request, "include_inactive"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(StockCategoryService.create(**data), 201)


class CategoryDetailView(BaseInventoryView):

    def put(self, request, category_id):
        data = self.get_json_body(request)
        return self.success(StockCategoryService.update(category_id, **data))

    def delete(self, request, category_id):
        return self.success(StockCategoryService.deactivate(category_id))


# ==================== SUPPLIERS ====================

class SupplierListView(BaseInventoryView):

    def get(self, request):
        return self.success(SupplierService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            search=request.GET.get("search"),
            branch_id=self.get_int(request, "branch_id"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(SupplierService.create(**data), 201)


class SupplierDetailView(BaseInventoryView):

    def put(self, request, supplier_id):
        data = self.get_json_body(request)
        return self.success(SupplierService.update(supplier_id, **data))

    def delete(self, request, supplier_id):
        return self.success(SupplierService.deactivate(supplier_id))


# ==================== ITEMS ====================

class StockItemListView(BaseInventoryView):
    """GET/POST /api/inventory/items/"""

    def get(self, request):
        return self.success(StockItemService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            search=request.GET.get("search"),
            category_id=self.get_int(request, "category_id"),
            branch_id=self.get_int(request, "branch_id"),
            active_only=not self.get_bool(request, "include_inactive"),
            low_stock=self.get_bool(request, "low_stock"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(StockItemService.create(**data), 201)


class StockItemDetailView(BaseInventoryView):
    """GET/PUT/DELETE /api/inventory/items/<id>/"""

    def get(self, request, item_id):
        return self.success(StockItemService.get(item_id))

    def put(self, request, item_id):
        data = self.get_json_body(request)
        return self.success(StockItemService.update(item_id, **data))

    def delete(self, request, item_id):
        return self.success(StockItemService.deactivate(item_id))


class StockItemUnitView(BaseInventoryView):

    def post(self, request, item_id):
        data = self.get_json_body(request)
        return self.success(StockItemUnitService.add_unit(
            stock_item_id=item_id,
            unit_id=data.get("unit_id"),
            conversion_to_base=data.get("conversion_to_base"),
        ), 201)


class StockItemUnitDetailView(BaseInventoryView):

    def delete(self, request, item_unit_id):
        return self.success(StockItemUnitService.remove_unit(item_unit_id))


# ==================== LOTS & MOVEMENTS ====================

class LotListView(BaseInventoryView):
    """GET /api/inventory/lots/?stock_item_id=&open_only="""

    def get(self, request):
        return self.success(CostLotService.list_lots(
            stock_item_id=self.get_int(request, "stock_item_id"),
            open_only=self.get_bool(request, "open_only"),
            source=request.GET.get("source"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
        ))


class LotDetailView(BaseInventoryView):

    def get(self, request, lot_id):
        return self.success(CostLotService.get_lot(lot_id))


class MovementListView(BaseInventoryView):

    def get(self, request):
        return self.success(StockLevelService.list_movements(
            stock_item_id=self.get_int(request, "stock_item_id"),
            movement_type=request.GET.get("movement_type"),
            reference_type=request.GET.get("reference_type"),
            reference_id=request.GET.get("reference_id"),
            date_from=request.GET.get("date_from"),
            date_to=request.GET.get("date_to"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
        ))


class StockAdjustView(BaseInventoryView):
    """POST /api/inventory/adjust/ with a signed quantity"""

    def post(self, request):
        data = self.get_json_body(request)
        result = StockAdjustmentService.adjust(
            stock_item_id=data.get("stock_item_id"),
            quantity=data.get("quantity"),
            unit_cost=data.get("unit_cost"),
            wastage=bool(data.get("wastage", False)),
            adjusted_by=self.get_user_name(request),
            notes=data.get("notes", ""),
        )
        return self.success(result, 201)


class OpeningBalanceView(BaseInventoryView):

    def post(self, request, item_id):
        data = self.get_json_body(request)
        result = CostLotService.record_opening_balance(
            stock_item_id=item_id,
            quantity=data.get("quantity"),
            unit_cost=data.get("unit_cost"),
            notes=data.get("notes", ""),
        )
        return self.success(result, 201)


# ==================== REPORTS ====================

class LowStockView(BaseInventoryView):

    def get(self, request):
        return self.success(AlertService.list_low_stock(
            branch_id=self.get_int(request, "branch_id"),
        ))


class ValuationView(BaseInventoryView):

    def get(self, request):
        return self.success(CostLotService.get_valuation(
            branch_id=self.get_int(request, "branch_id"),
            category_id=self.get_int(request, "category_id"),
        ))


class ReconcileView(BaseInventoryView):

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(StockLevelService.reconcile(
            stock_item_id=data.get("stock_item_id"),
        ))


# ==================== RECIPES ====================

class RecipeListView(BaseInventoryView):

    def get(self, request):
        return self.success(RecipeService.list_dishes())


class RecipeDishView(BaseInventoryView):
    """GET/POST/PUT/DELETE /api/inventory/recipes/<dish_id>/"""

    def get(self, request, dish_id):
        return self.success(RecipeService.list_for_dish(
            dish_id, include_inactive=self.get_bool(request, "include_inactive")
        ))

    def post(self, request, dish_id):
        data = self.get_json_body(request)
        return self.success(RecipeService.add_line(
            dish_id=dish_id,
            stock_item_id=data.get("stock_item_id"),
            quantity=data.get("quantity"),
            unit_id=data.get("unit_id"),
            cost=data.get("cost"),
            dish_name=data.get("dish_name", ""),
            notes=data.get("notes", ""),
        ), 201)

    def put(self, request, dish_id):
        data = self.get_json_body(request)
        return self.success(RecipeService.replace_lines(
            dish_id, data.get("lines") or [], dish_name=data.get("dish_name", "")
        ))

    def delete(self, request, dish_id):
        return self.success(RecipeService.clear_recipe(dish_id))


class RecipeCostView(BaseInventoryView):

    def get(self, request, dish_id):
        return self.success(RecipeService.calculate_cost(
            dish_id, quantity=request.GET.get("quantity", "1")
        ))


class RecipeLineDetailView(BaseInventoryView):

    def put(self, request, line_id):
        data = self.get_json_body(request)
        return self.success(RecipeService.update_line(line_id, **data))

    def delete(self, request, line_id):
        return self.success(RecipeService.remove_line(line_id))


# ==================== PURCHASE ORDERS ====================

class PurchaseOrderListView(BaseInventoryView):

    def get(self, request):
        return self.success(PurchaseOrderService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            status=request.GET.get("status"),
            supplier_id=self.get_int(request, "supplier_id"),
            branch_id=self.get_int(request, "branch_id"),
            search=request.GET.get("search"),
            date_from=request.GET.get("date_from"),
            date_to=request.GET.get("date_to"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        data.setdefault("created_by", self.get_user_name(request))
        return self.success(PurchaseOrderService.create(**data), 201)


class PurchaseOrderStatsView(BaseInventoryView):

    def get(self, request):
        return self.success(PurchaseOrderService.get_stats(
            date_from=request.GET.get("date_from"),
            date_to=request.GET.get("date_to"),
            branch_id=self.get_int(request, "branch_id"),
        ))


class PurchaseOrderDetailView(BaseInventoryView):

    def get(self, request, po_id):
        return self.success(PurchaseOrderService.get(po_id))

    def put(self, request, po_id):
        data = self.get_json_body(request)
        return self.success(PurchaseOrderService.update(po_id, **data))


class PurchaseOrderItemView(BaseInventoryView):

    def post(self, request, po_id):
        data = self.get_json_body(request)
        return self.success(PurchaseOrderItemService.add(
            purchase_order_id=po_id,
            stock_item_id=data.get("stock_item_id"),
            quantity=data.get("quantity"),
            unit_price=data.get("unit_price"),
            unit_id=data.get("unit_id"),
            tax_percent=data.get("tax_percent", 0),
            notes=data.get("notes", ""),
        ), 201)


class PurchaseOrderItemDetailView(BaseInventoryView):

    def put(self, request, item_id):
        data = self.get_json_body(request)
        return self.success(PurchaseOrderItemService.update(item_id, **data))

    def delete(self, request, item_id):
        return self.success(PurchaseOrderItemService.remove(item_id))


class PurchaseOrderActionView(BaseInventoryView):
    """POST /api/inventory/purchase-orders/<id>/<send|confirm|cancel>/"""

    def post(self, request, po_id, action):
        data = self.get_json_body(request)

        if action == "send":
            result = PurchaseOrderService.send(po_id)
        elif action == "confirm":
            result = PurchaseOrderService.confirm(po_id, approved_by=self.get_user_name(request))
        elif action == "cancel":
            result = PurchaseOrderService.cancel(po_id, reason=data.get("reason", ""))
        else:
            raise ValidationError(f"Unknown action: {action}", "action")

        return self.success(result)


class PurchaseReceivingView(BaseInventoryView):
    """GET/POST /api/inventory/purchase-orders/<id>/receive/"""

    def get(self, request, po_id):
        return self.success(PurchaseReceivingService.list(po_id=po_id))

    def post(self, request, po_id):
        data = self.get_json_body(request)
        result = PurchaseReceivingService.receive_items(
            po_id=po_id,
            receipts=data.get("receipts") or [],
            received_by=data.get("received_by") or self.get_user_name(request),
            notes=data.get("notes", ""),
        )
        return self.success(result, 201)


# ==================== CONSUMPTION ====================

class ConsumptionListView(BaseInventoryView):

    def get(self, request):
        return self.success(ConsumptionService.list(
            branch_id=self.get_int(request, "branch_id"),
            order_ref=request.GET.get("order_ref"),
            stock_item_id=self.get_int(request, "stock_item_id"),
            dish_id=self.get_int(request, "dish_id"),
            order_type=request.GET.get("order_type"),
            date_from=request.GET.get("date_from"),
            date_to=request.GET.get("date_to"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        data.setdefault("consumed_by", self.get_user_name(request))
        return self.success(ConsumptionService.record_consumption(**data), 201)


class ManualConsumptionView(BaseInventoryView):

    def post(self, request):
        data = self.get_json_body(request)
        data.setdefault("consumed_by", self.get_user_name(request))
        return self.success(ConsumptionService.record_manual_consumption(**data), 201)


class ConsumptionDetailView(BaseInventoryView):

    def get(self, request, record_id):
        return self.success(ConsumptionService.get(record_id))


class ConsumptionReverseView(BaseInventoryView):

    def post(self, request, record_id):
        data = self.get_json_body(request)
        return self.success(ConsumptionService.reverse_consumption(record_id, notes=data.get("notes", "")))


# ==================== ORDER INTEGRATION ====================

class OrderConsumeView(BaseInventoryView):
    """POST /api/inventory/orders/consume/"""

    def post(self, request):
        data = self.get_json_body(request)
        result = OrderStockService.consume_order_items(
            order_ref=data.get("order_ref"),
            order_items=data.get("items") or [],
            branch_id=data.get("branch_id"),
            consumed_by=data.get("consumed_by") or self.get_user_name(request),
            order_type=data.get("order_type", "RESTAURANT"),
        )
        return self.success(result, 201)


class OrderAvailabilityView(BaseInventoryView):

    def post(self, request):
        data = self.get_json_body(request)
        return self.success(OrderStockService.check_availability(data.get("items") or []))


class OrderReverseView(BaseInventoryView):
    """POST /api/inventory/orders/<order_ref>/reverse/ with optional order_item_id"""

    def post(self, request, order_ref):
        data = self.get_json_body(request)
        if data.get("order_item_id") is not None:
            result = OrderStockService.reverse_order_item(
                order_ref, data["order_item_id"], reason=data.get("reason", "Order item cancelled")
            )
        else:
            result = OrderStockService.reverse_order(order_ref, reason=data.get("reason", "Order cancelled"))
        return self.success(result)
