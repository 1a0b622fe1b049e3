from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from catalog.models import Product, RollupRequest
from catalog.rollup import request_rollup
from catalog.tasks import drain_rollup_queue, nightly_rollup_sweep


@pytest.mark.django_db
def test_drain_rollup_queue_task(product, alkor, make_offer):
    make_offer(product, alkor, stock_qty=3, pvp_ttc=Decimal("4.20"))
    request_rollup(product.pk, reason="test")

    assert drain_rollup_queue() == {"recomputed": 1, "failed": 0}
    assert not RollupRequest.objects.exists()
    product.refresh_from_db()
    assert product.public_price_ttc == Decimal("4.20")


@pytest.mark.django_db
def test_nightly_sweep_deactivates_ghosts_before_recompute(settings, product, alkor, comlandi, make_offer):
    settings.GHOST_OFFER_THRESHOLD_DAYS = {"ALKOR": 3, "COMLANDI": 3}
    now = timezone.now()
    make_offer(product, alkor, stock_qty=5, pvp_ttc=Decimal("8.00"), last_seen_at=now - timedelta(days=10))
    make_offer(product, comlandi, stock_qty=2, pvp_ttc=Decimal("9.00"), last_seen_at=now)

    result = nightly_rollup_sweep()

    assert result["ghost_offers"]["ALKOR"] == 1
    assert result["recomputed"] == 1
    product.refresh_from_db()
    assert product.public_price_source == Product.PriceSource.PVP_COMLANDI
    assert product.available_qty_total == 2


@pytest.mark.django_db
def test_recompute_rollups_command(product, coefficient, capsys):
    call_command("recompute_rollups")
    product.refresh_from_db()
    assert product.public_price_ttc == Decimal("6.00")
    assert "1 produit(s) recalcule(s)" in capsys.readouterr().out

    call_command("recompute_rollups", product=str(product.pk))

    with pytest.raises(CommandError):
        call_command("recompute_rollups", product="00000000-0000-0000-0000-000000000000")
