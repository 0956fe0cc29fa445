import uuid as uuid_lib

from django.db import models


class StockUnit(models.Model):
    class UnitType(models.TextChoices):
        WEIGHT = "WEIGHT", "Weight"
        VOLUME = "VOLUME", "Volume"
        COUNT = "COUNT", "Count"
        PACKAGE = "PACKAGE", "Package"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=50, unique=True)
    short_name = models.CharField(max_length=10)
    unit_type = models.CharField(max_length=20, choices=UnitType.choices)
    is_base_unit = models.BooleanField(default=False)
    base_unit = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="derived_units",
        help_text="The base unit this unit converts to (e.g. gram for kilogram)",
    )
    conversion_factor = models.DecimalField(
        max_digits=15,
        decimal_places=6,
        default=1,
        help_text="Multiply by this factor to convert to base unit",
    )
    decimal_places = models.PositiveSmallIntegerField(
        default=3,
        help_text="Number of decimal places to display for this unit",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["unit_type", "name"]

    def __str__(self):
        return f"{self.name} ({self.short_name})"

    @property
    def root_unit(self):
        return self if self.is_base_unit or not self.base_unit_id else self.base_unit


class StockCategory(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True, default="")
    branch_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    sort_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "stock categories"
        ordering = ["sort_order", "name"]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    contact_person = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    tax_id = models.CharField(max_length=50, blank=True, default="")
    payment_terms_days = models.PositiveIntegerField(default=30)
    branch_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class StockItem(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=50, unique=True, blank=True, null=True)
    category = models.ForeignKey(
        StockCategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="items",
    )
    measuring_unit = models.ForeignKey(
        StockUnit,
        on_delete=models.PROTECT,
        related_name="stock_items",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="stock_items",
    )
    branch_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)

    # Materialized aggregate, kept equal to the open lot quantity
    current_stock = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    # Stock thresholds
    minimum_stock = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    maximum_stock = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )
    reorder_level = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )
    reorder_quantity = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )

    # Fallback cost when no lots exist
    default_price = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def alert_threshold(self):
        if self.reorder_level is not None:
            return self.reorder_level
        return self.minimum_stock


class StockItemUnit(models.Model):
    """
    Alternative units for a stock item.
    E.g. flour is kept in kilograms but delivered in 25 kg sacks.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.CASCADE, related_name="alternative_units"
    )
    unit = models.ForeignKey(StockUnit, on_delete=models.PROTECT)
    conversion_to_base = models.DecimalField(
        max_digits=15,
        decimal_places=6,
        help_text="Multiply qty in this unit by this factor to get the item's measuring unit qty",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [("stock_item", "unit")]

    def __str__(self):
        return f"{self.stock_item.name} – {self.unit.short_name}"


class RecipeLine(models.Model):
    """
    One ingredient of a dish: how much of a stock item a single portion uses.
    Dishes live in the menu subsystem and are referenced by id only.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    dish_id = models.PositiveIntegerField(db_index=True)
    dish_name = models.CharField(max_length=200, blank=True, default="")
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="recipe_lines"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit = models.ForeignKey(StockUnit, on_delete=models.PROTECT, related_name="+")
    cost = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True,
        help_text="Optional cost snapshot per measuring unit of the stock item",
    )
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["dish_id", "id"]

    def __str__(self):
        return f"Dish {self.dish_id}: {self.stock_item.name} × {self.quantity}"


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        SENT = "SENT", "Sent"
        CONFIRMED = "CONFIRMED", "Confirmed"
        PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED", "Partially Received"
        RECEIVED = "RECEIVED", "Received"
        CANCELLED = "CANCELLED", "Cancelled"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    order_number = models.CharField(max_length=50, unique=True)
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, related_name="purchase_orders"
    )
    branch_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )
    order_date = models.DateField()
    expected_date = models.DateField(null=True, blank=True)
    received_date = models.DateField(null=True, blank=True)

    subtotal = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    tax_amount = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    total = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    created_by = models.CharField(max_length=100, blank=True, default="")
    approved_by = models.CharField(max_length=100, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-order_date", "-id"]

    def __str__(self):
        return self.order_number


class PurchaseOrderItem(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.CASCADE, related_name="items"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="+"
    )
    unit = models.ForeignKey(StockUnit, on_delete=models.PROTECT, related_name="+")
    quantity_ordered = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_received = models.DecimalField(
        max_digits=15, decimal_places=4, default=0
    )
    unit_price = models.DecimalField(max_digits=15, decimal_places=4)
    tax_percent = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=15, decimal_places=4)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    @property
    def quantity_pending(self):
        return self.quantity_ordered - self.quantity_received

    def __str__(self):
        return f"{self.stock_item.name} × {self.quantity_ordered}"


class StockReceipt(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    receipt_number = models.CharField(max_length=50, unique=True)
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.PROTECT, related_name="receipts"
    )
    received_by = models.CharField(max_length=100, blank=True, default="")
    received_at = models.DateTimeField()
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-received_at"]

    def __str__(self):
        return self.receipt_number


class StockReceiptItem(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    receipt = models.ForeignKey(
        StockReceipt, on_delete=models.CASCADE, related_name="items"
    )
    po_item = models.ForeignKey(
        PurchaseOrderItem, on_delete=models.PROTECT, related_name="receipt_items"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="+"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    batch_number = models.CharField(max_length=100, blank=True, default="")
    expiry_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.stock_item.name} × {self.quantity}"


class CostLot(models.Model):
    """
    One acquisition of stock at one unit cost. Only remaining_quantity
    ever changes: consumption lowers it, reversal restores it.
    """

    class Source(models.TextChoices):
        PURCHASE = "PURCHASE", "Purchase"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"
        OPENING = "OPENING", "Opening Balance"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    lot_number = models.CharField(max_length=50, unique=True)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="lots"
    )
    source = models.CharField(max_length=20, choices=Source.choices)
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4)
    remaining_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    costing_method = models.CharField(max_length=20)
    acquired_at = models.DateTimeField(db_index=True)

    batch_number = models.CharField(max_length=100, blank=True, default="")
    expiry_date = models.DateField(null=True, blank=True)
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lots",
    )
    receipt_item = models.OneToOneField(
        StockReceiptItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lot",
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["acquired_at", "id"]
        indexes = [
            models.Index(fields=["stock_item", "acquired_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(remaining_quantity__gte=0)
                & models.Q(remaining_quantity__lte=models.F("quantity")),
                name="costlot_remaining_within_quantity",
            ),
        ]

    def __str__(self):
        return f"{self.lot_number} – {self.stock_item.name}"


class ConsumptionRecord(models.Model):
    class OrderType(models.TextChoices):
        RESTAURANT = "RESTAURANT", "Restaurant"
        ROOM_SERVICE = "ROOM_SERVICE", "Room Service"
        MANUAL = "MANUAL", "Manual"
        WASTAGE = "WASTAGE", "Wastage"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="consumptions"
    )
    order_ref = models.CharField(max_length=100, blank=True, default="", db_index=True)
    order_item_id = models.PositiveIntegerField(null=True, blank=True)
    dish_id = models.PositiveIntegerField(null=True, blank=True)
    order_type = models.CharField(
        max_length=20, choices=OrderType.choices, default=OrderType.RESTAURANT
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4)
    # Part of quantity not covered by any lot (negative stock allowed)
    shortfall_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    costing_method = models.CharField(max_length=20)
    branch_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    consumed_by = models.CharField(max_length=100, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["order_ref", "dish_id", "order_item_id"]),
            models.Index(fields=["stock_item", "created_at"]),
        ]

    def __str__(self):
        return f"{self.stock_item.name} × {self.quantity} ({self.order_ref or self.order_type})"


class ConsumptionAllocation(models.Model):
    consumption = models.ForeignKey(
        ConsumptionRecord, on_delete=models.CASCADE, related_name="allocations"
    )
    lot = models.ForeignKey(
        CostLot, on_delete=models.PROTECT, related_name="allocations"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.lot.lot_number} × {self.quantity}"


class StockMovement(models.Model):
    class MovementType(models.TextChoices):
        PURCHASE_IN = "PURCHASE_IN", "Purchase In"
        SALE_OUT = "SALE_OUT", "Sale Out"
        SALE_REVERSAL = "SALE_REVERSAL", "Sale Reversal"
        ADJUSTMENT_PLUS = "ADJUSTMENT_PLUS", "Adjustment +"
        ADJUSTMENT_MINUS = "ADJUSTMENT_MINUS", "Adjustment −"
        OPENING_BALANCE = "OPENING_BALANCE", "Opening Balance"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    movement_number = models.CharField(max_length=50, unique=True)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="movements"
    )
    movement_type = models.CharField(
        max_length=30, choices=MovementType.choices, db_index=True
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_before = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_after = models.DecimalField(max_digits=15, decimal_places=4)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    # Generic reference to source document
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=100, blank=True, default="")

    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["stock_item", "created_at"]),
            models.Index(fields=["reference_type", "reference_id"]),
        ]

    def __str__(self):
        return f"{self.movement_number} | {self.get_movement_type_display()}"


class InventorySettings(models.Model):
    """
    Singleton settings table. Use InventorySettings.load() to get the instance.
    """

    class CostingMethod(models.TextChoices):
        FIFO = "FIFO", "First In, First Out"
        LIFO = "LIFO", "Last In, First Out"
        AVERAGE = "AVERAGE", "Weighted Average"

    costing_method = models.CharField(
        max_length=20, choices=CostingMethod.choices, default=CostingMethod.FIFO
    )
    allow_negative_stock = models.BooleanField(default=False)

    # Alerts
    low_stock_alert_enabled = models.BooleanField(default=True)
    notify_telegram = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "inventory settings"
        verbose_name_plural = "inventory settings"

    def save(self, *args, **kwargs):
        # Enforce singleton: always use pk=1
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        obj, _ = cls.objects.get_or_create(pk=1)
        return obj

    def __str__(self):
        return "Inventory Settings"
