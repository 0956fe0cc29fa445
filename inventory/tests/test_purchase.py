from decimal import Decimal

import pytest

from inventory.models import PurchaseOrder, CostLot, StockReceipt
from inventory.services import (
    PurchaseOrderService, PurchaseOrderItemService, PurchaseReceivingService, StockLevelService,
    ValidationError, NotFoundError, BusinessRuleError, OverReceiptError,
)


@pytest.fixture
def purchase_order(supplier, flour, eggs):
    result = PurchaseOrderService.create(
        supplier_id=supplier.id,
        items=[
            {"stock_item_id": flour.id, "quantity": "10", "unit_price": "1.20", "tax_percent": "13"},
            {"stock_item_id": eggs.id, "quantity": "30", "unit_price": "0.25"},
        ],
        created_by="purchasing",
    )
    return PurchaseOrder.objects.get(id=result["id"])


def po_item_for(po, stock_item):
    return po.items.get(stock_item=stock_item)


@pytest.mark.django_db
class TestPurchaseOrders:

    def test_create_calculates_totals(self, purchase_order):
        assert purchase_order.status == PurchaseOrder.Status.DRAFT
        assert purchase_order.order_number.startswith("PO-")
        assert purchase_order.subtotal == Decimal("19.5")
        assert purchase_order.tax_amount == Decimal("1.56")
        assert purchase_order.total == Decimal("21.06")

    def test_create_without_items(self, supplier):
        with pytest.raises(ValidationError):
            PurchaseOrderService.create(supplier_id=supplier.id, items=[])

    def test_create_with_unknown_supplier(self, flour):
        with pytest.raises(NotFoundError):
            PurchaseOrderService.create(
                supplier_id=404,
                items=[{"stock_item_id": flour.id, "quantity": "1", "unit_price": "1"}],
            )

    def test_item_needs_price(self, supplier, flour):
        with pytest.raises(ValidationError):
            PurchaseOrderService.create(
                supplier_id=supplier.id,
                items=[{"stock_item_id": flour.id, "quantity": "1"}],
            )

    def test_item_unit_must_convert(self, supplier, flour, units):
        with pytest.raises(ValidationError):
            PurchaseOrderService.create(
                supplier_id=supplier.id,
                items=[{"stock_item_id": flour.id, "quantity": "1", "unit_price": "1", "unit_id": units["l"].id}],
            )

    def test_status_flow(self, purchase_order):
        with pytest.raises(BusinessRuleError):
            PurchaseOrderService.confirm(purchase_order.id)

        assert PurchaseOrderService.send(purchase_order.id)["status"] == PurchaseOrder.Status.SENT
        assert PurchaseOrderService.confirm(purchase_order.id, approved_by="gm")["status"] == PurchaseOrder.Status.CONFIRMED

        with pytest.raises(BusinessRuleError):
            PurchaseOrderService.update(purchase_order.id, notes="late change")

    def test_items_locked_after_send(self, purchase_order, flour):
        PurchaseOrderService.send(purchase_order.id)

        with pytest.raises(BusinessRuleError):
            PurchaseOrderItemService.update(po_item_for(purchase_order, flour).id, quantity_ordered="20")

    def test_remove_item_recalculates(self, purchase_order, eggs):
        PurchaseOrderItemService.remove(po_item_for(purchase_order, eggs).id)

        purchase_order.refresh_from_db()
        assert purchase_order.subtotal == Decimal("12")
        assert purchase_order.total == Decimal("13.56")

    def test_stats(self, purchase_order):
        result = PurchaseOrderService.get_stats()

        assert result["total_orders"] == 1
        assert result["by_status"]["DRAFT"] == 1
        assert result["pending_value"] == "21.0600"


@pytest.mark.django_db
class TestReceiving:

    def test_partial_then_full_receipt(self, purchase_order, flour, eggs):
        flour_line = po_item_for(purchase_order, flour)
        eggs_line = po_item_for(purchase_order, eggs)

        first = PurchaseReceivingService.receive_items(
            purchase_order.id,
            [{"item_id": flour_line.id, "quantity": "4", "batch_number": "B-17"}],
            received_by="store",
        )

        assert first["order_status"] == PurchaseOrder.Status.PARTIALLY_RECEIVED
        lot = CostLot.objects.get(id=first["lots"][0]["id"])
        assert lot.quantity == Decimal("4")
        assert lot.unit_cost == Decimal("1.2")
        assert lot.supplier_id == purchase_order.supplier_id
        assert lot.batch_number == "B-17"

        second = PurchaseReceivingService.receive_items(
            purchase_order.id,
            [
                {"item_id": flour_line.id, "quantity": "6", "unit_cost": "1.10"},
                {"item_id": eggs_line.id, "quantity": "30"},
            ],
        )

        assert second["order_status"] == PurchaseOrder.Status.RECEIVED
        purchase_order.refresh_from_db()
        assert purchase_order.received_date is not None

        flour.refresh_from_db()
        eggs.refresh_from_db()
        assert flour.current_stock == Decimal("10")
        assert eggs.current_stock == Decimal("30")
        assert StockLevelService.reconcile(notify=False)["drifts"] == []

    def test_over_receipt_rejected(self, purchase_order, flour):
        flour_line = po_item_for(purchase_order, flour)
        PurchaseReceivingService.receive_items(purchase_order.id, [{"item_id": flour_line.id, "quantity": "8"}])

        with pytest.raises(OverReceiptError):
            PurchaseReceivingService.receive_items(purchase_order.id, [{"item_id": flour_line.id, "quantity": "3"}])

        flour_line.refresh_from_db()
        assert flour_line.quantity_received == Decimal("8")

    def test_failed_line_rolls_back_receipt(self, purchase_order, flour, eggs):
        flour_line = po_item_for(purchase_order, flour)
        eggs_line = po_item_for(purchase_order, eggs)

        with pytest.raises(OverReceiptError):
            PurchaseReceivingService.receive_items(
                purchase_order.id,
                [
                    {"item_id": flour_line.id, "quantity": "5"},
                    {"item_id": eggs_line.id, "quantity": "31"},
                ],
            )

        assert not StockReceipt.objects.exists()
        assert not CostLot.objects.exists()
        flour.refresh_from_db()
        assert flour.current_stock == Decimal("0")

    def test_unknown_order_line(self, purchase_order):
        with pytest.raises(NotFoundError):
            PurchaseReceivingService.receive_items(purchase_order.id, [{"item_id": 999, "quantity": "1"}])

    def test_order_line_id_as_string(self, purchase_order, flour):
        flour_line = po_item_for(purchase_order, flour)

        result = PurchaseReceivingService.receive_items(
            purchase_order.id, [{"item_id": str(flour_line.id), "quantity": "2"}]
        )

        assert result["order_status"] == PurchaseOrder.Status.PARTIALLY_RECEIVED
        flour.refresh_from_db()
        assert flour.current_stock == Decimal("2")

    def test_malformed_order_line_id(self, purchase_order):
        with pytest.raises(ValidationError):
            PurchaseReceivingService.receive_items(purchase_order.id, [{"item_id": "first", "quantity": "1"}])

        assert not StockReceipt.objects.exists()

    def test_cancelled_order_cannot_receive(self, purchase_order, flour):
        PurchaseOrderService.cancel(purchase_order.id, reason="supplier out of stock")

        with pytest.raises(BusinessRuleError):
            PurchaseReceivingService.receive_items(
                purchase_order.id,
                [{"item_id": po_item_for(purchase_order, flour).id, "quantity": "1"}],
            )

    def test_cannot_cancel_after_receipt(self, purchase_order, flour):
        PurchaseReceivingService.receive_items(
            purchase_order.id,
            [{"item_id": po_item_for(purchase_order, flour).id, "quantity": "1"}],
        )

        with pytest.raises(BusinessRuleError):
            PurchaseOrderService.cancel(purchase_order.id)

    def test_receipt_converted_to_stock_unit(self, supplier, make_item, units):
        sugar = make_item("Sugar", "g")
        result = PurchaseOrderService.create(
            supplier_id=supplier.id,
            items=[{"stock_item_id": sugar.id, "quantity": "2", "unit_price": "10", "unit_id": units["kg"].id}],
        )
        line = PurchaseOrder.objects.get(id=result["id"]).items.get()

        received = PurchaseReceivingService.receive_items(result["id"], [{"item_id": line.id, "quantity": "2"}])

        lot = CostLot.objects.get(id=received["lots"][0]["id"])
        assert lot.quantity == Decimal("2000")
        assert lot.unit_cost == Decimal("0.01")
        assert lot.total_cost == Decimal("20")
