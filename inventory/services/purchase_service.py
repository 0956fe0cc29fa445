import logging
from typing import Dict, Any, List
from decimal import Decimal
from datetime import date
from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone

from inventory.models import (
    PurchaseOrder, PurchaseOrderItem, StockReceipt, StockReceiptItem,
    StockItem, CostLot
)
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, BusinessRuleError, OverReceiptError,
    to_decimal, round_decimal, positive_quantity, generate_number, parse_date
)
from inventory.services.level_service import StockLevelService
from inventory.services.lot_service import CostLotService
from inventory.services.supplier_service import SupplierService
from inventory.services.unit_service import StockUnitService, StockItemUnitService

logger = logging.getLogger(__name__)


class PurchaseOrderService(BaseService):

    model = PurchaseOrder

    OPEN_STATUSES = [
        PurchaseOrder.Status.DRAFT,
        PurchaseOrder.Status.SENT,
        PurchaseOrder.Status.CONFIRMED,
        PurchaseOrder.Status.PARTIALLY_RECEIVED,
    ]

    @classmethod
    def serialize(cls, po: PurchaseOrder,
                  include_items: bool = True,
                  include_receipts: bool = False) -> Dict[str, Any]:
        data = {
            "id": po.id,
            "uuid": str(po.uuid),
            "order_number": po.order_number,

            "supplier_id": po.supplier_id,
            "supplier": po.supplier.name,
            "branch_id": po.branch_id,

            "status": po.status,
            "status_display": po.get_status_display(),

            "order_date": po.order_date.isoformat(),
            "expected_date": po.expected_date.isoformat() if po.expected_date else None,
            "received_date": po.received_date.isoformat() if po.received_date else None,

            "subtotal": str(po.subtotal),
            "tax_amount": str(po.tax_amount),
            "total": str(po.total),

            "created_by": po.created_by,
            "approved_by": po.approved_by,
            "notes": po.notes,
            "created_at": po.created_at.isoformat(),
        }

        if include_items:
            data["items"] = [
                PurchaseOrderItemService.serialize(item)
                for item in po.items.select_related("stock_item", "unit")
            ]

        if include_receipts:
            data["receipts"] = [
                PurchaseReceivingService.serialize(rcp)
                for rcp in po.receipts.prefetch_related("items", "items__stock_item")
            ]

        return data

    @classmethod
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             status: str = None,
             supplier_id: int = None,
             branch_id: int = None,
             search: str = None,
             date_from=None,
             date_to=None) -> Dict[str, Any]:

        queryset = cls.model.objects.select_related("supplier")

        if status:
            queryset = queryset.filter(status=status)
        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)
        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)
        if search:
            queryset = queryset.filter(
                Q(order_number__icontains=search) |
                Q(supplier__name__icontains=search)
            )

        date_from = parse_date(date_from, "date_from")
        date_to = parse_date(date_to, "date_to")
        if date_from:
            queryset = queryset.filter(order_date__gte=date_from)
        if date_to:
            queryset = queryset.filter(order_date__lte=date_to)

        orders, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "orders": [cls.serialize(po, include_items=False) for po in orders],
            "pagination": pagination,
            "statuses": [{"value": c[0], "label": c[1]} for c in PurchaseOrder.Status.choices],
        })

    @classmethod
    def get_order(cls, po_id: int, lock: bool = False) -> PurchaseOrder:
        queryset = cls.model.objects.select_related("supplier")
        if lock:
            queryset = queryset.select_for_update(of=("self",))
        try:
            return queryset.get(id=po_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Purchase order", po_id)

    @classmethod
    def get(cls, po_id: int, include_receipts: bool = True) -> Dict[str, Any]:
        po = cls.get_order(po_id)
        return success_response({
            "order": cls.serialize(po, include_receipts=include_receipts)
        })

    @classmethod
    @transaction.atomic
    def create(cls,
               supplier_id: int,
               items: List[Dict],
               branch_id: int = None,
               order_date: date = None,
               expected_date: date = None,
               created_by: str = "",
               notes: str = "") -> Dict[str, Any]:

        if not items:
            raise ValidationError("Purchase order needs at least one item", "items")

        supplier = SupplierService.get_active_supplier(supplier_id)

        order_date = parse_date(order_date, "order_date") or timezone.now().date()
        expected_date = parse_date(expected_date, "expected_date")
        if expected_date and expected_date < order_date:
            raise ValidationError("Expected date cannot be before order date", "expected_date")

        order_number = generate_number("PO", cls.model, "order_number")

        po = cls.model.objects.create(
            order_number=order_number,
            supplier=supplier,
            branch_id=branch_id if branch_id is not None else supplier.branch_id,
            status=PurchaseOrder.Status.DRAFT,
            order_date=order_date,
            expected_date=expected_date,
            created_by=created_by or "",
            notes=notes,
        )

        for item_data in items:
            PurchaseOrderItemService.add(
                purchase_order_id=po.id,
                stock_item_id=item_data.get("stock_item_id"),
                quantity=item_data.get("quantity"),
                unit_price=item_data.get("unit_price"),
                unit_id=item_data.get("unit_id"),
                tax_percent=item_data.get("tax_percent", 0),
                notes=item_data.get("notes", ""),
            )

        po.refresh_from_db()
        logger.info(f"Purchase order {order_number} created for {supplier.name}")

        return success_response({
            "id": po.id,
            "order_number": po.order_number,
            "order": cls.serialize(po)
        }, f"Purchase order {order_number} created")

    @classmethod
    @transaction.atomic
    def update(cls, po_id: int, **kwargs) -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)

        if po.status != PurchaseOrder.Status.DRAFT:
            raise BusinessRuleError("Can only update orders in DRAFT status")

        update_fields = ["updated_at"]
        for field in ["expected_date", "order_date"]:
            if field in kwargs:
                setattr(po, field, parse_date(kwargs[field], field))
                update_fields.append(field)
        for field in ["notes", "branch_id"]:
            if field in kwargs:
                setattr(po, field, kwargs[field])
                update_fields.append(field)

        if po.order_date is None:
            raise ValidationError("Order date is required", "order_date")

        po.save(update_fields=update_fields)

        return success_response({
            "order": cls.serialize(po)
        }, "Purchase order updated")

    @classmethod
    def _recalculate_totals(cls, po_id: int):
        po = cls.get_by_id(po_id)
        if not po:
            return

        items = po.items.all()

        subtotal = sum((item.total_price for item in items), Decimal("0"))
        tax_amount = sum(
            (item.total_price * item.tax_percent / 100 for item in items),
            Decimal("0")
        )

        po.subtotal = round_decimal(subtotal)
        po.tax_amount = round_decimal(tax_amount)
        po.total = round_decimal(subtotal + tax_amount)
        po.save(update_fields=["subtotal", "tax_amount", "total", "updated_at"])

    @classmethod
    @transaction.atomic
    def send(cls, po_id: int) -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)

        if po.status != PurchaseOrder.Status.DRAFT:
            raise BusinessRuleError(f"Cannot send order in {po.status} status", "po_status")

        if not po.items.exists():
            raise BusinessRuleError("Cannot send order with no items", "po_items")

        po.status = PurchaseOrder.Status.SENT
        po.save(update_fields=["status", "updated_at"])

        return success_response({
            "status": po.status
        }, f"Order {po.order_number} sent")

    @classmethod
    @transaction.atomic
    def confirm(cls, po_id: int, approved_by: str = "") -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)

        if po.status != PurchaseOrder.Status.SENT:
            raise BusinessRuleError(f"Cannot confirm order in {po.status} status", "po_status")

        po.status = PurchaseOrder.Status.CONFIRMED
        po.approved_by = approved_by or ""
        po.save(update_fields=["status", "approved_by", "updated_at"])

        return success_response({
            "status": po.status
        }, f"Order {po.order_number} confirmed")

    @classmethod
    @transaction.atomic
    def cancel(cls, po_id: int, reason: str = "") -> Dict[str, Any]:
        po = cls.get_order(po_id, lock=True)

        if po.status in [PurchaseOrder.Status.RECEIVED, PurchaseOrder.Status.CANCELLED]:
            raise BusinessRuleError(f"Cannot cancel order in {po.status} status", "po_status")

        if po.receipts.exists():
            raise BusinessRuleError("Cannot cancel order with received stock", "po_receipts")

        po.status = PurchaseOrder.Status.CANCELLED
        if reason:
            po.notes = f"{po.notes}\nCancelled: {reason}".strip()
        po.save(update_fields=["status", "notes", "updated_at"])

        return success_response({
            "status": po.status
        }, f"Order {po.order_number} cancelled")

    @classmethod
    def get_stats(cls, date_from=None, date_to=None, branch_id: int = None) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        date_from = parse_date(date_from, "date_from")
        date_to = parse_date(date_to, "date_to")
        if date_from:
            queryset = queryset.filter(order_date__gte=date_from)
        if date_to:
            queryset = queryset.filter(order_date__lte=date_to)
        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)

        by_status = {}
        for status in PurchaseOrder.Status.choices:
            by_status[status[0]] = queryset.filter(status=status[0]).count()

        total_value = queryset.exclude(
            status=PurchaseOrder.Status.CANCELLED
        ).aggregate(total=Sum("total"))["total"] or Decimal("0")

        pending_value = queryset.filter(
            status__in=cls.OPEN_STATUSES
        ).aggregate(total=Sum("total"))["total"] or Decimal("0")

        return success_response({
            "total_orders": queryset.count(),
            "by_status": by_status,
            "total_value": str(round_decimal(total_value)),
            "pending_value": str(round_decimal(pending_value)),
        })


class PurchaseOrderItemService(BaseService):

    model = PurchaseOrderItem

    @classmethod
    def serialize(cls, item: PurchaseOrderItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "uuid": str(item.uuid),
            "purchase_order_id": item.purchase_order_id,
            "stock_item_id": item.stock_item_id,
            "stock_item": {
                "id": item.stock_item.id,
                "name": item.stock_item.name,
                "sku": item.stock_item.sku,
            },
            "quantity_ordered": str(item.quantity_ordered),
            "quantity_received": str(item.quantity_received),
            "quantity_pending": str(item.quantity_pending),
            "unit_id": item.unit_id,
            "unit": item.unit.short_name,
            "unit_price": str(item.unit_price),
            "tax_percent": str(item.tax_percent),
            "total_price": str(item.total_price),
            "notes": item.notes,
        }

    @classmethod
    def _clean_price(cls, value, field: str) -> Decimal:
        if value is None or value == "":
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required", field)
        price = round_decimal(to_decimal(value, field=field))
        if price < 0:
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be negative", field)
        return price

    @classmethod
    def _clean_tax(cls, value) -> Decimal:
        tax_percent = round_decimal(to_decimal(value, field="tax_percent"), 2)
        if tax_percent < 0 or tax_percent > 100:
            raise ValidationError("Tax percent must be between 0 and 100", "tax_percent")
        return tax_percent

    @classmethod
    def _draft_item(cls, item_id: int) -> PurchaseOrderItem:
        try:
            item = cls.model.objects.select_related(
                "purchase_order", "stock_item", "stock_item__measuring_unit", "unit"
            ).get(id=item_id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Order item", item_id)

        if item.purchase_order.status != PurchaseOrder.Status.DRAFT:
            raise BusinessRuleError("Can only change items in DRAFT orders", "po_status")
        return item

    @classmethod
    @transaction.atomic
    def add(cls,
            purchase_order_id: int,
            stock_item_id: int,
            quantity: Decimal,
            unit_price: Decimal,
            unit_id: int = None,
            tax_percent: Decimal = Decimal("0"),
            notes: str = "") -> Dict[str, Any]:

        try:
            po = PurchaseOrder.objects.get(id=purchase_order_id)
        except (PurchaseOrder.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Purchase order", purchase_order_id)

        if po.status != PurchaseOrder.Status.DRAFT:
            raise BusinessRuleError("Can only add items to DRAFT orders", "po_status")

        try:
            stock_item = StockItem.objects.select_related("measuring_unit").get(id=stock_item_id, is_active=True)
        except (StockItem.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Stock item", stock_item_id)

        if unit_id:
            unit = StockUnitService.get_active_unit(unit_id)
            StockItemUnitService.check_convertible(stock_item, unit)
        else:
            unit = stock_item.measuring_unit

        quantity = positive_quantity(quantity)
        unit_price = cls._clean_price(unit_price, "unit_price")
        tax_percent = cls._clean_tax(tax_percent)

        item = cls.model.objects.create(
            purchase_order=po,
            stock_item=stock_item,
            unit=unit,
            quantity_ordered=quantity,
            unit_price=unit_price,
            tax_percent=tax_percent,
            total_price=round_decimal(quantity * unit_price),
            notes=notes or "",
        )

        PurchaseOrderService._recalculate_totals(purchase_order_id)

        return success_response({
            "id": item.id,
            "item": cls.serialize(item)
        }, "Item added to order")

    @classmethod
    @transaction.atomic
    def update(cls, item_id: int, **kwargs) -> Dict[str, Any]:
        item = cls._draft_item(item_id)

        if "quantity_ordered" in kwargs:
            item.quantity_ordered = positive_quantity(kwargs["quantity_ordered"], "quantity_ordered")
        if "unit_price" in kwargs:
            item.unit_price = cls._clean_price(kwargs["unit_price"], "unit_price")
        if "tax_percent" in kwargs:
            item.tax_percent = cls._clean_tax(kwargs["tax_percent"])
        if "notes" in kwargs:
            item.notes = kwargs["notes"] or ""

        item.total_price = round_decimal(item.quantity_ordered * item.unit_price)
        item.save()

        PurchaseOrderService._recalculate_totals(item.purchase_order_id)

        return success_response({
            "item": cls.serialize(item)
        }, "Item updated")

    @classmethod
    @transaction.atomic
    def remove(cls, item_id: int) -> Dict[str, Any]:
        item = cls._draft_item(item_id)

        po_id = item.purchase_order_id
        item.delete()

        PurchaseOrderService._recalculate_totals(po_id)

        return success_response(message="Item removed")


class PurchaseReceivingService(BaseService):

    model = StockReceipt

    @classmethod
    def serialize(cls, receipt: StockReceipt) -> Dict[str, Any]:
        return {
            "id": receipt.id,
            "uuid": str(receipt.uuid),
            "receipt_number": receipt.receipt_number,
            "purchase_order_id": receipt.purchase_order_id,
            "received_by": receipt.received_by,
            "received_at": receipt.received_at.isoformat(),
            "notes": receipt.notes,
            "items": [
                {
                    "id": ri.id,
                    "po_item_id": ri.po_item_id,
                    "stock_item_id": ri.stock_item_id,
                    "stock_item": ri.stock_item.name,
                    "quantity": str(ri.quantity),
                    "unit_cost": str(ri.unit_cost),
                    "batch_number": ri.batch_number,
                    "expiry_date": ri.expiry_date.isoformat() if ri.expiry_date else None,
                }
                for ri in receipt.items.all()
            ],
        }

    @classmethod
    @transaction.atomic
    def receive_items(cls,
                      po_id: int,
                      receipts: List[Dict[str, Any]],
                      received_by: str = "",
                      notes: str = "") -> Dict[str, Any]:
        """
        Book delivered quantities against a purchase order.

        Each line opens one cost lot in the stock item's measuring unit and
        raises its counter. The whole batch is one transaction.
        """
        if not receipts:
            raise ValidationError("Nothing to receive", "receipts")

        po = PurchaseOrderService.get_order(po_id, lock=True)

        if po.status == PurchaseOrder.Status.CANCELLED:
            raise BusinessRuleError("Cannot receive against a cancelled order", "po_status")

        po_items = {
            item.id: item
            for item in po.items.select_for_update(of=("self",)).select_related(
                "stock_item", "stock_item__measuring_unit", "unit", "unit__base_unit"
            )
        }

        StockLevelService.lock_items(item.stock_item_id for item in po_items.values())

        now = timezone.now()
        receipt = cls.model.objects.create(
            receipt_number=generate_number("RCP", cls.model, "receipt_number"),
            purchase_order=po,
            received_by=received_by or "",
            received_at=now,
            notes=notes or "",
        )

        lots = []
        for line in receipts:
            try:
                item_id = int(line.get("item_id"))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid order item id: {line.get('item_id')!r}", "item_id")
            po_item = po_items.get(item_id)
            if po_item is None:
                raise NotFoundError("Order item", item_id)

            quantity = positive_quantity(line.get("quantity"))
            if po_item.quantity_received + quantity > po_item.quantity_ordered:
                raise OverReceiptError(
                    po_item.stock_item.name,
                    po_item.quantity_ordered,
                    po_item.quantity_received,
                    quantity,
                )

            unit_cost = line.get("unit_cost")
            if unit_cost is None or unit_cost == "":
                unit_cost = po_item.unit_price
            unit_cost = PurchaseOrderItemService._clean_price(unit_cost, "unit_cost")

            stock_item = po_item.stock_item
            stock_quantity = round_decimal(
                StockItemUnitService.convert_for_item(stock_item, quantity, po_item.unit)
            )
            if stock_quantity <= 0:
                raise ValidationError(
                    f"Quantity {quantity} {po_item.unit.short_name} is too small to stock",
                    "quantity"
                )
            stock_unit_cost = round_decimal(unit_cost * quantity / stock_quantity)

            receipt_item = StockReceiptItem.objects.create(
                receipt=receipt,
                po_item=po_item,
                stock_item=stock_item,
                quantity=quantity,
                unit_cost=unit_cost,
                batch_number=line.get("batch_number") or "",
                expiry_date=parse_date(line.get("expiry_date"), "expiry_date"),
            )

            lot = CostLotService.create_lot(
                stock_item_id=stock_item.id,
                quantity=stock_quantity,
                unit_cost=stock_unit_cost,
                source=CostLot.Source.PURCHASE,
                acquired_at=now,
                batch_number=receipt_item.batch_number,
                expiry_date=receipt_item.expiry_date,
                supplier=po.supplier,
                receipt_item=receipt_item,
                reference_type="StockReceipt",
                reference_id=receipt.receipt_number,
                notes=f"{po.order_number} / {receipt.receipt_number}",
            )
            lots.append(lot)

            po_item.quantity_received += quantity
            po_item.save(update_fields=["quantity_received"])

        fully_received = all(
            item.quantity_received >= item.quantity_ordered for item in po_items.values()
        )
        if fully_received:
            po.status = PurchaseOrder.Status.RECEIVED
            po.received_date = now.date()
        else:
            po.status = PurchaseOrder.Status.PARTIALLY_RECEIVED
        po.save(update_fields=["status", "received_date", "updated_at"])

        logger.info(
            f"Receipt {receipt.receipt_number} booked against {po.order_number}: "
            f"{len(lots)} lot(s), order now {po.status}"
        )

        return success_response({
            "receipt": cls.serialize(receipt),
            "lots": [CostLotService.serialize(lot) for lot in lots],
            "order_status": po.status,
        }, f"Received {len(lots)} line(s) for {po.order_number}")

    @classmethod
    def list(cls, po_id: int = None, page: int = 1, per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.prefetch_related("items", "items__stock_item")
        if po_id:
            queryset = queryset.filter(purchase_order_id=po_id)

        receipts, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "receipts": [cls.serialize(r) for r in receipts],
            "pagination": pagination,
        })
