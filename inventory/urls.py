from django.urls import path
from . import views

app_name = "inventory"

urlpatterns = [
    path("settings/", views.InventorySettingsView.as_view(), name="settings"),

    path("units/", views.UnitListView.as_view(), name="unit-list"),
    path("units/seed/", views.UnitSeedView.as_view(), name="unit-seed"),
    path("units/convert/", views.UnitConvertView.as_view(), name="unit-convert"),

    path("categories/", views.CategoryListView.as_view(), name="category-list"),
    path("categories/<int:category_id>/", views.CategoryDetailView.as_view(), name="category-detail"),

    path("suppliers/", views.SupplierListView.as_view(), name="supplier-list"),
    path("suppliers/<int:supplier_id>/", views.SupplierDetailView.as_view(), name="supplier-detail"),

    path("items/", views.StockItemListView.as_view(), name="item-list"),
    path("items/<int:item_id>/", views.StockItemDetailView.as_view(), name="item-detail"),
    path("items/<int:item_id>/units/", views.StockItemUnitView.as_view(), name="item-units"),
    path("items/<int:item_id>/opening-balance/", views.OpeningBalanceView.as_view(), name="item-opening-balance"),
    path("item-units/<int:item_unit_id>/", views.StockItemUnitDetailView.as_view(), name="item-unit-detail"),

    path("lots/", views.LotListView.as_view(), name="lot-list"),
    path("lots/<int:lot_id>/", views.LotDetailView.as_view(), name="lot-detail"),
    path("movements/", views.MovementListView.as_view(), name="movement-list"),
    path("adjust/", views.StockAdjustView.as_view(), name="adjust"),

    path("low-stock/", views.LowStockView.as_view(), name="low-stock"),
    path("valuation/", views.ValuationView.as_view(), name="valuation"),
    path("reconcile/", views.ReconcileView.as_view(), name="reconcile"),

    path("recipes/", views.RecipeListView.as_view(), name="recipe-list"),
    path("recipes/<int:dish_id>/", views.RecipeDishView.as_view(), name="recipe-dish"),
    path("recipes/<int:dish_id>/cost/", views.RecipeCostView.as_view(), name="recipe-cost"),
    path("recipe-lines/<int:line_id>/", views.RecipeLineDetailView.as_view(), name="recipe-line-detail"),

    path("purchase-orders/", views.PurchaseOrderListView.as_view(), name="po-list"),
    path("purchase-orders/stats/", views.PurchaseOrderStatsView.as_view(), name="po-stats"),
    path("purchase-orders/<int:po_id>/", views.PurchaseOrderDetailView.as_view(), name="po-detail"),
    path("purchase-orders/<int:po_id>/items/", views.PurchaseOrderItemView.as_view(), name="po-items"),
    path("purchase-orders/<int:po_id>/receive/", views.PurchaseReceivingView.as_view(), name="po-receive"),
    path("purchase-orders/<int:po_id>/<str:action>/", views.PurchaseOrderActionView.as_view(), name="po-action"),
    path("purchase-order-items/<int:item_id>/", views.PurchaseOrderItemDetailView.as_view(), name="po-item-detail"),

    path("consumption/", views.ConsumptionListView.as_view(), name="consumption-list"),
    path("consumption/manual/", views.ManualConsumptionView.as_view(), name="consumption-manual"),
    path("consumption/<int:record_id>/", views.ConsumptionDetailView.as_view(), name="consumption-detail"),
    path("consumption/<int:record_id>/reverse/", views.ConsumptionReverseView.as_view(), name="consumption-reverse"),

    path("orders/consume/", views.OrderConsumeView.as_view(), name="order-consume"),
    path("orders/availability/", views.OrderAvailabilityView.as_view(), name="order-availability"),
    path("orders/<str:order_ref>/reverse/", views.OrderReverseView.as_view(), name="order-reverse"),
]
