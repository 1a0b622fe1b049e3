import io
from decimal import Decimal

import openpyxl
import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from catalog.models import Product
from imports.models import ApplyMode, ImportJob, ImportMappingTemplate
from imports.services import apply_import_job

BASE = "/api/v1/import-jobs/"


def _xlsx(rows):
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return SimpleUploadedFile(
        "alkor.xlsx",
        buffer.getvalue(),
        content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


@pytest.mark.django_db
def test_import_endpoints_are_reserved_to_catalog_managers(client, plain_user, staged_job):
    job = staged_job(count=1)
    client.force_login(plain_user)

    assert client.get(BASE).status_code == 403
    response = client.post(f"{BASE}{job.pk}/apply/", {"mode": "create"}, content_type="application/json")
    assert response.status_code == 403
    assert ImportJob.objects.get(pk=job.pk).status == ImportJob.Status.STAGING


@pytest.mark.django_db
def test_upload_detects_mapping_stages_and_applies(client, staff_user, alkor):
    client.force_login(staff_user)
    upload = _xlsx([
        ["EAN UC", "Ref Art 6", "Designation", "Famille", "Prix achat HT", "PVP TTC", "Stock", "Colonne libre"],
        [3000000000001, "ALK-1", "Cahier A4", "Papeterie", 1.5, 3.9, 10, "x"],
        [3000000000002, "ALK-2", "Cahier A5", "Papeterie", 1.1, 2.9, 0, "y"],
    ])

    response = client.post(
        f"{BASE}upload/",
        {"file": upload, "supplier": str(alkor.pk), "apply_mode": ApplyMode.CREATE},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["staged"] == 2
    assert body["mapping"]["name"] == "Designation"
    assert body["unmapped_headers"] == ["Colonne libre"]
    assert body["missing_required"] == []
    assert body["report"]["created"] == 2
    assert body["report"]["errors"] == 0
    assert body["job"]["status"] == ImportJob.Status.DONE
    assert body["job"]["supplier_code"] == "ALKOR"
    product = Product.objects.get(ean="3000000000001")
    assert product.public_price_ttc == Decimal("3.90")


@pytest.mark.django_db
def test_upload_with_template_and_missing_required_returns_400(client, staff_user, alkor):
    client.force_login(staff_user)
    template = ImportMappingTemplate.objects.create(
        name="Alkor stock",
        supplier=alkor,
        kind="catalogue",
        mapping={"ean": "EAN", "stock_qty": "Stock"},
    )
    upload = SimpleUploadedFile("alkor.csv", b"EAN;Stock\n3000000000001;4\n", content_type="text/csv")

    response = client.post(
        f"{BASE}upload/",
        {"file": upload, "supplier": str(alkor.pk), "template": str(template.pk), "apply_mode": "create"},
    )

    assert response.status_code == 400
    assert response.json()["missing"] == ["name"]
    job = ImportJob.objects.get()
    assert job.status == ImportJob.Status.STAGING
    assert job.total_rows == 1


@pytest.mark.django_db
def test_upload_rejects_unsupported_file(client, staff_user):
    client.force_login(staff_user)
    response = client.post(f"{BASE}upload/", {"file": SimpleUploadedFile("notes.pdf", b"%PDF-1.4")})
    assert response.status_code == 400
    assert not ImportJob.objects.exists()


@pytest.mark.django_db
def test_detect_mapping_from_headers(client, staff_user):
    client.force_login(staff_user)
    response = client.post(
        f"{BASE}detect-mapping/",
        {"kind": "pricing", "headers": ["Ref", "Prix achat", "Stock"]},
        content_type="application/json",
    )
    assert response.status_code == 200
    assert response.json()["mapping"] == {"ref_art": "Ref", "purchase_price_ht": "Prix achat", "stock_qty": "Stock"}


@pytest.mark.django_db
def test_create_stage_apply_flow(client, staff_user, alkor, catalogue_mapping, catalogue_row):
    client.force_login(staff_user)
    response = client.post(
        BASE,
        {"filename": "alkor.json", "supplier": str(alkor.pk), "kind": "catalogue"},
        content_type="application/json",
    )
    assert response.status_code == 201
    job_id = response.json()["id"]

    response = client.post(
        f"{BASE}{job_id}/stage/",
        {"mapping": catalogue_mapping, "rows": [catalogue_row(1), catalogue_row(2, Designation="")]},
        content_type="application/json",
    )
    assert response.status_code == 200
    assert response.json()["staged"] == 2
    assert response.json()["job"]["total_rows"] == 2

    response = client.post(f"{BASE}{job_id}/apply/", {"mode": "create"}, content_type="application/json")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == ImportJob.Status.DONE
    assert (body["created"], body["errors"]) == (1, 1)
    assert body["details"] == ["Ligne 2 : Nom produit requis"]

    response = client.get(f"{BASE}{job_id}/rows/", {"status": "invalid"})
    assert response.status_code == 200
    results = response.json()["results"]
    assert [row["row_index"] for row in results] == [2]
    assert results[0]["error_messages"] == ["Nom produit requis"]

    assert client.get(f"{BASE}{job_id}/rows/", {"status": "oops"}).status_code == 400

    response = client.post(
        f"{BASE}{job_id}/stage/",
        {"rows": [catalogue_row(3)]},
        content_type="application/json",
    )
    assert response.status_code == 409


@pytest.mark.django_db
def test_apply_rejects_unknown_mode_and_kind_mismatch(client, staff_user, staged_job):
    job = staged_job(count=1)
    client.force_login(staff_user)

    response = client.post(f"{BASE}{job.pk}/apply/", {"mode": "merge"}, content_type="application/json")
    assert response.status_code == 400

    response = client.post(f"{BASE}{job.pk}/apply/", {"mode": "prices"}, content_type="application/json")
    assert response.status_code == 409


@pytest.mark.django_db
def test_async_apply_queues_the_task(client, staff_user, staged_job):
    job = staged_job(count=2)
    client.force_login(staff_user)

    response = client.post(
        f"{BASE}{job.pk}/apply/",
        {"mode": "create", "async": True},
        content_type="application/json",
    )

    assert response.status_code == 202
    assert response.json()["task_id"]
    job.refresh_from_db()
    assert job.status == ImportJob.Status.DONE
    assert job.created_count == 2


@pytest.mark.django_db
def test_report_and_rollback(client, staff_user, staged_job):
    job = staged_job(count=3)
    apply_import_job(job, mode=ApplyMode.CREATE)
    client.force_login(staff_user)

    response = client.get(f"{BASE}{job.pk}/report/")
    assert response.status_code == 200
    assert response.json()["created"] == 3

    response = client.post(f"{BASE}{job.pk}/rollback/")
    assert response.status_code == 200
    assert response.json()["products_deleted"] == 3
    assert not Product.objects.exists()

    response = client.post(f"{BASE}{job.pk}/rollback/")
    assert response.status_code == 409
    assert "detail" in response.json()


@pytest.mark.django_db
def test_template_creation_overwrites_same_name_and_rejects_unknown_fields(client, staff_user, alkor):
    client.force_login(staff_user)
    url = "/api/v1/import-templates/"
    payload = {"supplier": str(alkor.pk), "name": "Alkor base", "kind": "catalogue", "mapping": {"name": "Nom"}}

    first = client.post(url, payload, content_type="application/json")
    payload["mapping"] = {"name": "Designation", "ean": "EAN", "brand": ""}
    second = client.post(url, payload, content_type="application/json")

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["id"] == first.json()["id"]
    template = ImportMappingTemplate.objects.get()
    assert template.mapping == {"name": "Designation", "ean": "EAN"}

    payload["mapping"] = {"colour": "Couleur"}
    response = client.post(url, payload, content_type="application/json")
    assert response.status_code == 400
    assert "mapping" in response.json()


@pytest.mark.django_db
def test_template_rename_onto_existing_name_is_rejected(client, staff_user, alkor):
    client.force_login(staff_user)
    ImportMappingTemplate.objects.create(supplier=alkor, name="Alkor base", kind="catalogue", mapping={"name": "Nom"})
    other = ImportMappingTemplate.objects.create(supplier=alkor, name="Alkor tarifs", kind="catalogue", mapping={})

    response = client.patch(
        f"/api/v1/import-templates/{other.pk}/", {"name": "Alkor base"}, content_type="application/json"
    )

    assert response.status_code == 400
    assert "name" in response.json()
