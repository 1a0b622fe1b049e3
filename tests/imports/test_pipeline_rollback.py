from decimal import Decimal

import pytest

from catalog.models import Product
from core.models import AuditLog
from imports.exceptions import ImportJobStateError, ImportRollbackFailed
from imports.fields import ImportKind
from imports.models import ApplyMode, ImportJob, ImportJobRow
from imports.services import apply_import_job, create_import_job, rollback_import_job, stage_import_rows
from suppliers.models import SupplierOffer


@pytest.mark.django_db
def test_rollback_deletes_products_created_by_the_job(staged_job, staff_user):
    job = staged_job(count=500)
    apply_import_job(job, mode=ApplyMode.CREATE)
    assert Product.objects.count() == 500

    report = rollback_import_job(job, actor=staff_user)

    assert report.as_dict() == {
        "rows_rolled_back": 500,
        "products_deleted": 500,
        "products_restored": 0,
        "offers_restored": 0,
        "offers_deleted": 500,
    }
    assert Product.objects.count() == 0
    assert SupplierOffer.objects.count() == 0

    job.refresh_from_db()
    assert job.status == ImportJob.Status.ROLLED_BACK
    assert job.rolled_back_at is not None
    assert job.rows.filter(status=ImportJobRow.Status.ROLLED_BACK).count() == 500
    log = AuditLog.objects.get(action="IMPORT_JOB_ROLLED_BACK")
    assert log.actor == staff_user
    assert log.before_json == {"status": ImportJob.Status.DONE}

    with pytest.raises(ImportJobStateError):
        rollback_import_job(job)
    with pytest.raises(ImportJobStateError):
        apply_import_job(job, mode=ApplyMode.CREATE)


@pytest.mark.django_db
def test_rollback_restores_updated_product_and_leaves_untouched_rows(staged_job, catalogue_row, product, alkor):
    job = staged_job(rows=[
        catalogue_row(1, EAN=product.ean, Designation="Stylo renomme", Famille="Bureau"),
        catalogue_row(2, Designation=""),
        catalogue_row(3),
    ])
    apply_import_job(job, mode=ApplyMode.CREATE)
    product.refresh_from_db()
    assert product.name == "Stylo renomme"

    report = rollback_import_job(job)

    assert (report.rows_rolled_back, report.products_deleted, report.products_restored) == (2, 1, 1)
    assert report.offers_deleted == 2
    product.refresh_from_db()
    assert product.name == "Stylo bille bleu"
    assert product.family == "Ecriture"
    assert product.cost_price_ht == Decimal("2.00")
    assert not SupplierOffer.objects.filter(product=product).exists()
    assert report.rollups_recomputed == 1
    assert job.rows.get(row_index=2).status == ImportJobRow.Status.INVALID


@pytest.mark.django_db
def test_rollback_of_price_update_restores_offer_values(product, alkor, make_offer):
    offer = make_offer(
        product,
        alkor,
        supplier_reference="A1",
        purchase_price_ht=Decimal("2.00"),
        pvp_ttc=Decimal("4.00"),
        stock_qty=3,
    )
    job = create_import_job(
        "prix.csv",
        supplier=alkor,
        kind=ImportKind.PRICING,
        mapping={"ref_art": "Ref", "pvp_ttc": "PVP", "stock_qty": "Stock"},
    )
    stage_import_rows(job, [{"Ref": "A1", "PVP": "4,50", "Stock": "40"}])
    apply_import_job(job, mode=ApplyMode.PRICES)
    product.refresh_from_db()
    assert product.public_price_ttc == Decimal("4.50")

    report = rollback_import_job(job)

    assert (report.offers_restored, report.offers_deleted, report.products_deleted) == (1, 0, 0)
    assert report.products_restored == 1
    offer.refresh_from_db()
    assert offer.pvp_ttc == Decimal("4.00")
    assert offer.stock_qty == 3
    assert offer.vat_rate is None
    product.refresh_from_db()
    assert product.public_price_ttc == Decimal("4.00")
    assert product.public_price_source == Product.PriceSource.PVP_ALKOR
    assert product.available_qty_total == 3


@pytest.mark.django_db
def test_rollback_fails_without_changes_when_a_product_is_gone(staged_job, catalogue_row, product):
    job = staged_job(rows=[catalogue_row(1), catalogue_row(2, EAN=product.ean)])
    apply_import_job(job, mode=ApplyMode.CREATE)
    created = Product.objects.get(ean="3000000000001")
    product.delete()

    with pytest.raises(ImportRollbackFailed):
        rollback_import_job(job)

    job.refresh_from_db()
    assert job.status == ImportJob.Status.DONE
    assert Product.objects.filter(pk=created.pk).exists()
    assert job.rows.filter(status=ImportJobRow.Status.APPLIED).count() == 2


@pytest.mark.django_db
def test_rollback_requires_an_applied_job(staged_job, catalogue_row):
    job = staged_job(count=2)
    with pytest.raises(ImportJobStateError):
        rollback_import_job(job)

    invalid_only = staged_job(rows=[catalogue_row(1, Designation="")])
    apply_import_job(invalid_only, mode=ApplyMode.CREATE)
    with pytest.raises(ImportJobStateError):
        rollback_import_job(invalid_only)

    assert ImportJob.objects.get(pk=job.pk).status == ImportJob.Status.STAGING
