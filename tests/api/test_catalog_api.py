from decimal import Decimal

import pytest

from catalog.models import PricingCoefficient, Product
from core.models import AuditLog
from suppliers.models import Supplier


@pytest.mark.django_db
def test_products_are_readable_but_not_recomputable_by_plain_users(client, plain_user, product):
    client.force_login(plain_user)

    response = client.get("/api/v1/products/", {"family": "Ecriture"})
    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["results"][0]["offers_count"] == 0

    response = client.post(f"/api/v1/products/{product.pk}/recompute-rollup/")
    assert response.status_code == 403


@pytest.mark.django_db
def test_recompute_rollup_uses_family_coefficient(client, staff_user, product, coefficient):
    client.force_login(staff_user)

    response = client.post(f"/api/v1/products/{product.pk}/recompute-rollup/")

    assert response.status_code == 200
    assert response.json()["public_price_ttc"] == "6.00"
    assert response.json()["public_price_source"] == Product.PriceSource.COEF
    product.refresh_from_db()
    assert product.rollup_updated_at is not None


@pytest.mark.django_db
def test_toggle_offer_endpoint(client, staff_user, product, alkor, comlandi, make_offer):
    offer = make_offer(product, alkor, stock_qty=4, pvp_ttc=Decimal("5.00"))
    make_offer(product, comlandi, stock_qty=1, pvp_ttc=Decimal("5.50"))
    client.force_login(staff_user)

    response = client.post(
        f"/api/v1/supplier-offers/{offer.pk}/toggle-active/",
        {"is_active": False},
        content_type="application/json",
    )

    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["is_active"] is False
    assert body["product"]["public_price_source"] == Product.PriceSource.PVP_COMLANDI
    assert body["product"]["available_qty_total"] == 1
    assert body["rollup_failed"] is False

    response = client.post(f"/api/v1/supplier-offers/{offer.pk}/toggle-active/", {}, content_type="application/json")
    assert response.json()["offer"]["is_active"] is True


@pytest.mark.django_db
def test_coefficient_changes_are_audited(client, staff_user):
    client.force_login(staff_user)

    response = client.post(
        "/api/v1/pricing-coefficients/",
        {"family": "Papeterie", "multiplier": "1.80"},
        content_type="application/json",
    )
    assert response.status_code == 201
    coefficient_id = response.json()["id"]

    duplicate = client.post(
        "/api/v1/pricing-coefficients/",
        {"family": "Papeterie", "multiplier": "2.00"},
        content_type="application/json",
    )
    assert duplicate.status_code == 400

    response = client.patch(
        f"/api/v1/pricing-coefficients/{coefficient_id}/",
        {"multiplier": "2.10"},
        content_type="application/json",
    )
    assert response.status_code == 200
    assert PricingCoefficient.objects.get(pk=coefficient_id).multiplier == Decimal("2.10")

    assert client.delete(f"/api/v1/pricing-coefficients/{coefficient_id}/").status_code == 204

    actions = set(AuditLog.objects.filter(entity_type="PricingCoefficient").values_list("action", flat=True))
    assert actions == {"COEFFICIENT_CREATED", "COEFFICIENT_UPDATED", "COEFFICIENT_DELETED"}
    update_log = AuditLog.objects.get(action="COEFFICIENT_UPDATED")
    assert update_log.actor == staff_user


@pytest.mark.django_db
def test_coefficient_must_be_positive(client, staff_user):
    client.force_login(staff_user)
    response = client.post(
        "/api/v1/pricing-coefficients/",
        {"family": "Papeterie", "multiplier": "0"},
        content_type="application/json",
    )
    assert response.status_code == 400


@pytest.mark.django_db
def test_supplier_with_offers_cannot_be_deleted(client, staff_user, product, alkor, make_offer):
    make_offer(product, alkor)
    client.force_login(staff_user)

    response = client.delete(f"/api/v1/suppliers/{alkor.pk}/")

    assert response.status_code == 400
    assert Supplier.objects.filter(pk=alkor.pk).exists()
