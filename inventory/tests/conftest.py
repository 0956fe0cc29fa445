"""Pytest configuration and fixtures."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone

from inventory.models import StockUnit, StockItem, Supplier, InventorySettings, CostLot
from inventory.services import (
    StockUnitService, StockItemService, SupplierService, CostLotService, RecipeService,
)


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def units(db):
    """Default measuring units keyed by short name."""
    StockUnitService.seed_defaults()
    return {u.short_name: u for u in StockUnit.objects.all()}


@pytest.fixture
def inventory_settings(db):
    return InventorySettings.load()


@pytest.fixture
def supplier(db):
    result = SupplierService.create(name="Valley Farms", phone="+977-1-5550101")
    return Supplier.objects.get(id=result["id"])


@pytest.fixture
def make_item(units):
    def _make_item(name="Flour", unit="kg", **kwargs):
        result = StockItemService.create(
            name=name,
            measuring_unit_id=units[unit].id,
            **kwargs
        )
        return StockItem.objects.get(id=result["id"])
    return _make_item


@pytest.fixture
def flour(make_item):
    return make_item("Flour", "kg", minimum_stock="2", default_price="1.50")


@pytest.fixture
def eggs(make_item):
    return make_item("Eggs", "pcs", minimum_stock="12", default_price="0.25")


@pytest.fixture
def make_lot(db):
    """Open a lot acquired `age_days` ago, so tests control FIFO order."""
    def _make_lot(item, quantity, unit_cost, age_days=0):
        return CostLotService.create_lot(
            stock_item_id=item.id,
            quantity=Decimal(str(quantity)),
            unit_cost=Decimal(str(unit_cost)),
            source=CostLot.Source.PURCHASE,
            acquired_at=timezone.now() - timedelta(days=age_days),
        )
    return _make_lot


@pytest.fixture
def pancake_recipe(flour, eggs, units):
    """Dish 100: 200 g flour and 2 eggs per portion."""
    RecipeService.add_line(dish_id=100, stock_item_id=flour.id, quantity="200", unit_id=units["g"].id,
                           dish_name="Pancakes")
    RecipeService.add_line(dish_id=100, stock_item_id=eggs.id, quantity="2", dish_name="Pancakes")
    return 100


class FakeTelegram:
    def __init__(self, ok=True):
        self.ok = ok
        self.messages = []

    def send_message(self, text, parse_mode="HTML", disable_notification=False):
        self.messages.append(text)
        if self.ok:
            return True, None
        return False, "offline"


@pytest.fixture
def telegram(monkeypatch):
    fake = FakeTelegram()
    monkeypatch.setattr("inventory.services.alert_service.get_telegram_service", lambda: fake)
    monkeypatch.setattr("inventory.services.notification_service.get_telegram_service", lambda config=None: fake)
    return fake
