from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from catalog.models import PricingCoefficient, Product
from imports.fields import ImportKind
from imports.models import ImportJob
from imports.services import create_import_job, stage_import_rows
from suppliers.models import Supplier, SupplierOffer


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="gestionnaire",
        email="gestionnaire@test.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def plain_user(db):
    return get_user_model().objects.create_user(
        username="lecteur",
        email="lecteur@test.com",
        password="testpass123",
    )


@pytest.fixture
def alkor(db):
    return Supplier.objects.create(code="ALKOR", name="Alkor")


@pytest.fixture
def comlandi(db):
    return Supplier.objects.create(code="COMLANDI", name="Comlandi")


@pytest.fixture
def soft(db):
    return Supplier.objects.create(code="SOFT", name="Soft Carrier")


@pytest.fixture
def product(db):
    return Product.objects.create(
        name="Stylo bille bleu",
        ean="3086123456789",
        sku="STY-001",
        family="Ecriture",
        sub_family="Stylos",
        cost_price_ht=Decimal("2.00"),
        vat_rate=Decimal("20.00"),
    )


@pytest.fixture
def coefficient(db):
    return PricingCoefficient.objects.create(family="Ecriture", multiplier=Decimal("2.5"))


@pytest.fixture
def make_offer():
    def _make(product, supplier, **values):
        values.setdefault("stock_qty", 0)
        return SupplierOffer.objects.create(product=product, supplier=supplier, **values)

    return _make


@pytest.fixture
def catalogue_mapping():
    return {
        "name": "Designation",
        "ean": "EAN",
        "supplier_reference": "Ref fournisseur",
        "family": "Famille",
        "purchase_price_ht": "Prix achat HT",
        "pvp_ttc": "PVP TTC",
        "stock_qty": "Stock",
    }


@pytest.fixture
def catalogue_row():
    def _row(index, **overrides):
        row = {
            "Designation": f"Cahier {index}",
            "EAN": f"{3000000000000 + index}",
            "Ref fournisseur": f"ALK-{index:05d}",
            "Famille": "Papeterie",
            "Prix achat HT": "1,50",
            "PVP TTC": "3,90",
            "Stock": "10",
        }
        row.update(overrides)
        return row

    return _row


@pytest.fixture
def staged_job(alkor, catalogue_mapping, catalogue_row):
    def _staged(rows=None, count=3, supplier=alkor, kind=ImportKind.CATALOGUE, mapping=None):
        job = create_import_job(
            "alkor.xlsx",
            supplier=supplier,
            kind=kind,
            mapping=mapping or catalogue_mapping,
        )
        if rows is None:
            rows = [catalogue_row(i) for i in range(1, count + 1)]
        stage_import_rows(job, rows)
        return ImportJob.objects.get(pk=job.pk)

    return _staged
