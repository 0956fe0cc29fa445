from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from inventory.models import StockItem, StockUnit


@pytest.mark.django_db
class TestSeedUnits:

    def test_creates_then_skips(self):
        out = StringIO()
        call_command("seed_units", stdout=out)
        assert "Created" in out.getvalue()
        assert StockUnit.objects.filter(short_name="l").exists()

        out = StringIO()
        call_command("seed_units", stdout=out)
        assert "already exist" in out.getvalue()


@pytest.mark.django_db
class TestReconcileStock:

    def test_consistent(self, flour, make_lot):
        make_lot(flour, 2, "1.00")
        out = StringIO()

        call_command("reconcile_stock", stdout=out)

        assert "consistent" in out.getvalue()

    def test_drift_fails_command(self, flour, make_lot):
        make_lot(flour, 2, "1.00")
        StockItem.objects.filter(id=flour.id).update(current_stock=3)
        err = StringIO()

        with pytest.raises(CommandError):
            call_command("reconcile_stock", "--no-notify", stderr=err)

        assert "Flour" in err.getvalue()


@pytest.mark.django_db
class TestLowStockMonitor:

    def test_single_sweep(self, flour, eggs, make_lot, telegram, monkeypatch):
        monkeypatch.setattr(
            "inventory.management.commands.run_low_stock_monitor.close_old_connections", lambda: None
        )
        make_lot(flour, 10, "1.00")
        out = StringIO()

        call_command("run_low_stock_monitor", "--once", stdout=out)

        assert "1 low item(s), 1 notification(s) sent" in out.getvalue()
        assert len(telegram.messages) == 1
