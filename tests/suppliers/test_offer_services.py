from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from catalog.models import Product, RollupRequest
from core.models import AuditLog
from suppliers.models import Supplier, SupplierOffer
from suppliers.services import (
    OfferConflictError,
    deactivate_ghost_offers,
    restore_offer_snapshot,
    set_offer_active,
    snapshot_offer,
    upsert_offer,
)


@pytest.mark.django_db
def test_supplier_code_is_uppercased():
    supplier = Supplier.objects.create(code=" alkor ", name="Alkor")
    assert supplier.code == "ALKOR"


@pytest.mark.django_db
def test_upsert_offer_creates_then_updates_same_reference(product, alkor):
    offer, created, previous = upsert_offer(
        product,
        alkor,
        supplier_reference="ALK-1",
        values={"purchase_price_ht": Decimal("1.50"), "stock_qty": 4, "unknown": "ignored"},
    )
    assert created is True
    assert previous is None
    assert offer.last_seen_at is not None
    assert RollupRequest.objects.filter(product=product).exists()

    offer2, created, previous = upsert_offer(product, alkor, supplier_reference="ALK-1", values={"stock_qty": 9})
    assert created is False
    assert offer2.pk == offer.pk
    assert previous["stock_qty"] == 4
    assert Decimal(previous["purchase_price_ht"]) == Decimal("1.50")
    offer2.refresh_from_db()
    assert offer2.stock_qty == 9


@pytest.mark.django_db
def test_upsert_offer_reuses_single_offer_without_multiple_references(product, alkor, make_offer):
    existing = make_offer(product, alkor, supplier_reference="OLD", stock_qty=1)

    offer, created, _previous = upsert_offer(product, alkor, supplier_reference="NEW", values={"stock_qty": 2})

    assert created is False
    assert offer.pk == existing.pk
    assert offer.supplier_reference == "NEW"
    assert SupplierOffer.objects.filter(product=product, supplier=alkor).count() == 1


@pytest.mark.django_db
def test_upsert_offer_allows_second_reference_when_supplier_permits(product, soft, make_offer):
    soft.allows_multiple_references = True
    soft.save()
    make_offer(product, soft, supplier_reference="S-1")

    _offer, created, _previous = upsert_offer(product, soft, supplier_reference="S-2")

    assert created is True
    assert SupplierOffer.objects.filter(product=product, supplier=soft).count() == 2


@pytest.mark.django_db
def test_upsert_offer_rejects_reference_owned_by_another_product(product, alkor, make_offer):
    other = Product.objects.create(name="Gomme")
    make_offer(other, alkor, supplier_reference="ALK-9")

    with pytest.raises(OfferConflictError):
        upsert_offer(product, alkor, supplier_reference="ALK-9")


@pytest.mark.django_db
def test_offer_snapshot_restores_previous_values(product, alkor, make_offer):
    offer = make_offer(product, alkor, pvp_ttc=Decimal("4.90"), stock_qty=3, tax_breakdown={"d3e": "0.02"})
    snapshot = snapshot_offer(offer)

    offer.pvp_ttc = Decimal("9.99")
    offer.stock_qty = 0
    offer.tax_breakdown = {}
    offer.save()
    restore_offer_snapshot(offer, snapshot)

    offer.refresh_from_db()
    assert offer.pvp_ttc == Decimal("4.90")
    assert offer.stock_qty == 3
    assert offer.tax_breakdown == {"d3e": "0.02"}
    assert RollupRequest.objects.filter(product=product, reason="offer_restored").exists()


@pytest.mark.django_db
def test_toggle_offer_recomputes_rollup_and_audits(product, alkor, comlandi, make_offer, staff_user):
    alkor_offer = make_offer(product, alkor, stock_qty=5, pvp_ttc=Decimal("8.00"))
    make_offer(product, comlandi, stock_qty=2, pvp_ttc=Decimal("9.00"))

    offer, result = set_offer_active(alkor_offer, False, actor=staff_user)

    assert offer.is_active is False
    assert result.recomputed == 1
    product.refresh_from_db()
    assert product.public_price_source == Product.PriceSource.PVP_COMLANDI
    assert product.available_qty_total == 2
    assert not RollupRequest.objects.filter(product=product).exists()
    log = AuditLog.objects.get(action="SUPPLIER_OFFER_TOGGLED")
    assert log.actor == staff_user
    assert log.before_json == {"is_active": True}
    assert log.after_json == {"is_active": False}

    set_offer_active(alkor_offer, True)
    product.refresh_from_db()
    assert product.public_price_source == Product.PriceSource.PVP_ALKOR
    assert product.available_qty_total == 7


@pytest.mark.django_db
def test_ghost_offers_are_deactivated_per_supplier_threshold(product, alkor, soft, make_offer):
    now = timezone.now()
    stale_alkor = make_offer(product, alkor, stock_qty=5, pvp_ttc=Decimal("8.00"), last_seen_at=now - timedelta(days=4))
    recent_soft = make_offer(product, soft, stock_qty=1, pvp_ttc=Decimal("9.50"), last_seen_at=now - timedelta(days=4))
    other = Product.objects.create(name="Classeur")
    never_seen = make_offer(other, alkor, stock_qty=1)

    counts = deactivate_ghost_offers(now=now, thresholds={"ALKOR": 3, "SOFT": 8})

    assert counts == {"ALKOR": 1, "SOFT": 0}
    stale_alkor.refresh_from_db()
    recent_soft.refresh_from_db()
    never_seen.refresh_from_db()
    assert stale_alkor.is_active is False
    assert recent_soft.is_active is True
    assert never_seen.is_active is True

    product.refresh_from_db()
    assert product.public_price_source == Product.PriceSource.PVP_SOFT
    assert product.available_qty_total == 1
