import json

import pytest
from django.urls import reverse

from inventory.models import ConsumptionRecord, PurchaseOrder, StockItem


def post_json(client, url, data=None):
    return client.post(url, data=json.dumps(data or {}), content_type="application/json")


@pytest.fixture
def stocked(flour, eggs, make_lot):
    make_lot(flour, 10, "1.00")
    make_lot(eggs, 30, "0.25")


@pytest.mark.django_db
class TestCatalogViews:

    def test_create_item(self, client, units):
        response = post_json(client, reverse("inventory:item-list"), {
            "name": "Basmati Rice",
            "measuring_unit_id": units["kg"].id,
            "minimum_stock": "5",
        })

        assert response.status_code == 201
        assert response.json()["item"]["name"] == "Basmati Rice"

    def test_create_item_without_name(self, client, units):
        response = post_json(client, reverse("inventory:item-list"), {"name": "", "measuring_unit_id": units["kg"].id})

        body = response.json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"]["field"] == "name"

    def test_item_not_found(self, client, db):
        response = client.get(reverse("inventory:item-detail", args=[4040]))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_invalid_json(self, client, db):
        response = client.post(reverse("inventory:item-list"), data="{oops", content_type="application/json")

        assert response.status_code == 400

    def test_convert(self, client, units):
        response = client.get(reverse("inventory:unit-convert"), {
            "quantity": "500", "from": units["g"].id, "to": units["kg"].id,
        })

        assert response.json()["result"] == "0.500"

    def test_settings_update(self, client, db):
        response = client.put(
            reverse("inventory:settings"),
            data=json.dumps({"costing_method": "AVERAGE"}),
            content_type="application/json",
        )

        assert response.status_code == 200
        assert response.json()["settings"]["costing_method"] == "AVERAGE"


@pytest.mark.django_db
class TestStockViews:

    def test_low_stock(self, client, stocked, make_item):
        make_item("Saffron", "g", minimum_stock="10")

        response = client.get(reverse("inventory:low-stock"))

        assert [row["name"] for row in response.json()["items"]] == ["Saffron"]

    def test_valuation(self, client, stocked):
        response = client.get(reverse("inventory:valuation"))

        assert response.json()["total_value"] == "17.5000"

    def test_adjust_out_beyond_stock(self, client, stocked, flour):
        response = post_json(client, reverse("inventory:adjust"), {"stock_item_id": flour.id, "quantity": "-11"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INSUFFICIENT_STOCK"

    def test_adjust_with_huge_quantity(self, client, stocked, flour):
        response = post_json(client, reverse("inventory:adjust"), {"stock_item_id": flour.id, "quantity": "1e40"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_reconcile_reports_drift(self, client, stocked, flour):
        StockItem.objects.filter(id=flour.id).update(current_stock=0)

        response = post_json(client, reverse("inventory:reconcile"))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "CONSISTENCY_ERROR"


@pytest.mark.django_db
class TestConsumptionViews:

    def test_record_and_reverse(self, client, pancake_recipe, stocked):
        response = post_json(client, reverse("inventory:consumption-list"), {
            "dish_id": pancake_recipe,
            "quantity_sold": 2,
            "order_ref": "R-5001",
        })
        assert response.status_code == 201

        record_id = response.json()["records"][0]["id"]
        url = reverse("inventory:consumption-reverse", args=[record_id])
        assert post_json(client, url).status_code == 200

        again = post_json(client, url)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "REVERSAL_MISMATCH"

    def test_insufficient_stock(self, client, pancake_recipe, stocked):
        response = post_json(client, reverse("inventory:consumption-list"), {
            "dish_id": pancake_recipe,
            "quantity_sold": 20,
            "order_ref": "R-5002",
        })

        assert response.status_code == 409
        assert response.json()["error"]["details"]["item"] == "Eggs"
        assert not ConsumptionRecord.objects.exists()

    def test_order_consume_and_reverse(self, client, pancake_recipe, stocked):
        response = post_json(client, reverse("inventory:order-consume"), {
            "order_ref": "R-5003",
            "items": [{"order_item_id": 1, "dish_id": pancake_recipe, "quantity": 1}],
        })
        assert response.status_code == 201

        response = post_json(client, reverse("inventory:order-reverse", args=["R-5003"]))
        assert response.json()["total_reversals"] == 2

    def test_availability(self, client, pancake_recipe, stocked):
        response = post_json(client, reverse("inventory:order-availability"), {
            "items": [{"dish_id": pancake_recipe, "quantity": 20}],
        })

        assert response.json()["all_available"] is False


@pytest.mark.django_db
class TestPurchaseViews:

    def test_order_lifecycle(self, client, supplier, flour):
        response = post_json(client, reverse("inventory:po-list"), {
            "supplier_id": supplier.id,
            "items": [{"stock_item_id": flour.id, "quantity": "5", "unit_price": "1.10"}],
        })
        assert response.status_code == 201
        po_id = response.json()["id"]
        item_id = response.json()["order"]["items"][0]["id"]

        assert post_json(client, reverse("inventory:po-action", args=[po_id, "send"])).status_code == 200

        response = post_json(client, reverse("inventory:po-receive", args=[po_id]), {
            "receipts": [{"item_id": item_id, "quantity": "6"}],
        })
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "OVER_RECEIPT"

        response = post_json(client, reverse("inventory:po-receive", args=[po_id]), {
            "receipts": [{"item_id": item_id, "quantity": "5"}],
        })
        assert response.status_code == 201
        assert response.json()["order_status"] == PurchaseOrder.Status.RECEIVED

    def test_unknown_action(self, client, supplier, flour):
        response = post_json(client, reverse("inventory:po-list"), {
            "supplier_id": supplier.id,
            "items": [{"stock_item_id": flour.id, "quantity": "5", "unit_price": "1.10"}],
        })

        response = post_json(client, reverse("inventory:po-action", args=[response.json()["id"], "archive"]))

        assert response.status_code == 400
