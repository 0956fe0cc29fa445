from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateFilter,
    RangeDateTimeFilter,
    RangeNumericFilter,
)

from .models import (
    StockUnit, StockCategory, Supplier, StockItem, StockItemUnit, RecipeLine,
    PurchaseOrder, PurchaseOrderItem, StockReceipt, StockReceiptItem,
    CostLot, ConsumptionRecord, ConsumptionAllocation, StockMovement,
    InventorySettings,
)


class ReadOnlyAdminMixin:
    """Ledger rows change only through the services."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class StockItemUnitInline(TabularInline):
    model = StockItemUnit
    extra = 0
    fields = ('unit', 'conversion_to_base')


class PurchaseOrderItemInline(TabularInline):
    model = PurchaseOrderItem
    extra = 0
    fields = ('stock_item', 'unit', 'quantity_ordered', 'quantity_received', 'unit_price', 'tax_percent', 'total_price')
    readonly_fields = ('quantity_received', 'total_price')


class StockReceiptItemInline(ReadOnlyAdminMixin, TabularInline):
    model = StockReceiptItem
    extra = 0
    fields = ('po_item', 'stock_item', 'quantity', 'unit_cost', 'batch_number', 'expiry_date')
    readonly_fields = fields


class ConsumptionAllocationInline(ReadOnlyAdminMixin, TabularInline):
    model = ConsumptionAllocation
    extra = 0
    fields = ('lot', 'quantity', 'unit_cost')
    readonly_fields = fields


@admin.register(StockUnit)
class StockUnitAdmin(ModelAdmin):
    list_display = ['id', 'name', 'short_name', 'unit_type', 'is_base_unit', 'base_unit', 'conversion_factor', 'is_active']
    list_filter = ['unit_type', 'is_base_unit', 'is_active']
    search_fields = ['name', 'short_name']


@admin.register(StockCategory)
class StockCategoryAdmin(ModelAdmin):
    list_display = ['id', 'name', 'branch_id', 'sort_order', 'item_count', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name']

    @display(description=_("Items"))
    def item_count(self, obj):
        return obj.items.filter(is_active=True).count()


@admin.register(Supplier)
class SupplierAdmin(ModelAdmin):
    list_display = ['id', 'name', 'contact_person', 'phone', 'payment_terms_days', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'contact_person', 'phone', 'email', 'tax_id']


@admin.register(StockItem)
class StockItemAdmin(ModelAdmin):
    list_display = ['id', 'name', 'sku', 'category', 'stock_display', 'threshold_display', 'stock_badge', 'is_active']
    list_filter = [
        'category',
        'is_active',
        ('current_stock', RangeNumericFilter),
    ]
    list_filter_submit = True
    search_fields = ['name', 'sku']
    readonly_fields = ['current_stock', 'created_at', 'updated_at']
    inlines = [StockItemUnitInline]

    fieldsets = (
        (_('Item'), {
            'fields': ('name', 'sku', 'category', 'supplier', 'branch_id', 'measuring_unit', 'description', 'is_active')
        }),
        (_('Stock'), {
            'fields': ('current_stock', 'minimum_stock', 'maximum_stock', 'reorder_level', 'reorder_quantity')
        }),
        (_('Cost'), {
            'fields': ('default_price',)
        }),
    )

    @display(description=_("Stock"), ordering='current_stock')
    def stock_display(self, obj):
        return f"{obj.current_stock} {obj.measuring_unit.short_name}"

    @display(description=_("Threshold"))
    def threshold_display(self, obj):
        return obj.alert_threshold

    @display(description=_("Level"), label=True)
    def stock_badge(self, obj):
        if obj.current_stock < 0:
            return 'danger', _("Negative")
        if obj.current_stock <= obj.alert_threshold:
            return 'warning', _("Low")
        return 'success', _("OK")


@admin.register(RecipeLine)
class RecipeLineAdmin(ModelAdmin):
    list_display = ['id', 'dish_id', 'dish_name', 'stock_item', 'quantity', 'unit', 'cost', 'is_active']
    list_filter = ['is_active']
    search_fields = ['dish_name', 'stock_item__name']
    autocomplete_fields = ['stock_item']


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(ModelAdmin):
    list_display = ['order_number', 'supplier', 'status_badge', 'order_date', 'expected_date', 'total']
    list_filter = [
        'status',
        'supplier',
        ('order_date', RangeDateFilter),
    ]
    list_filter_submit = True
    search_fields = ['order_number', 'supplier__name']
    readonly_fields = ['order_number', 'status', 'subtotal', 'tax_amount', 'total', 'received_date', 'created_at']
    inlines = [PurchaseOrderItemInline]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            PurchaseOrder.Status.DRAFT: 'info',
            PurchaseOrder.Status.SENT: 'info',
            PurchaseOrder.Status.CONFIRMED: 'primary',
            PurchaseOrder.Status.PARTIALLY_RECEIVED: 'warning',
            PurchaseOrder.Status.RECEIVED: 'success',
            PurchaseOrder.Status.CANCELLED: 'danger',
        }
        return colors.get(obj.status, 'info'), obj.get_status_display()


@admin.register(StockReceipt)
class StockReceiptAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['receipt_number', 'order_link', 'received_by', 'received_at']
    list_filter = [('received_at', RangeDateTimeFilter)]
    list_filter_submit = True
    search_fields = ['receipt_number', 'purchase_order__order_number']
    inlines = [StockReceiptItemInline]

    @display(description=_("Purchase Order"))
    def order_link(self, obj):
        url = reverse('admin:inventory_purchaseorder_change', args=[obj.purchase_order_id])
        return format_html('<a href="{}">{}</a>', url, obj.purchase_order.order_number)


@admin.register(CostLot)
class CostLotAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['lot_number', 'stock_item', 'source', 'quantity', 'remaining_quantity', 'unit_cost', 'acquired_at']
    list_filter = [
        'source',
        'costing_method',
        ('acquired_at', RangeDateTimeFilter),
    ]
    list_filter_submit = True
    search_fields = ['lot_number', 'stock_item__name', 'batch_number']


@admin.register(ConsumptionRecord)
class ConsumptionRecordAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['id', 'stock_item', 'order_ref', 'dish_id', 'order_type', 'quantity', 'total_cost', 'shortfall_quantity', 'created_at']
    list_filter = [
        'order_type',
        'costing_method',
        ('created_at', RangeDateTimeFilter),
    ]
    list_filter_submit = True
    search_fields = ['order_ref', 'stock_item__name']
    inlines = [ConsumptionAllocationInline]


@admin.register(StockMovement)
class StockMovementAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['movement_number', 'stock_item', 'movement_type', 'quantity', 'quantity_before', 'quantity_after', 'created_at']
    list_filter = [
        'movement_type',
        ('created_at', RangeDateTimeFilter),
    ]
    list_filter_submit = True
    search_fields = ['movement_number', 'stock_item__name', 'reference_id']


@admin.register(InventorySettings)
class InventorySettingsAdmin(ModelAdmin):
    list_display = ['id', 'costing_method', 'allow_negative_stock', 'low_stock_alert_enabled', 'notify_telegram', 'updated_at']

    def has_add_permission(self, request):
        return not InventorySettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
