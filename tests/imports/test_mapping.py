import pytest

from imports.exceptions import ImportMappingError
from imports.fields import CATALOGUE_FIELDS, PRICING_FIELDS, ImportKind
from imports.mapping import (
    auto_detect_mapping,
    load_mapping_template,
    map_row,
    normalize_header,
    save_mapping_template,
    validate_mapping,
)
from imports.models import ImportMappingTemplate


def test_normalize_header_strips_accents_and_spaces():
    assert normalize_header("  Désignation   Produit ") == "designation produit"
    assert normalize_header("Prix d’achat HT") == "prix d'achat ht"


def test_auto_detect_catalogue_headers():
    headers = ["EAN UC", "Ref Art 6", "Désignation", "Sous-famille", "Famille", "Prix achat HT", "PVP TTC", "Stock"]
    result = auto_detect_mapping(headers, CATALOGUE_FIELDS)

    assert result.mapping == {
        "ean": "EAN UC",
        "supplier_reference": "Ref Art 6",
        "name": "Désignation",
        "sub_family": "Sous-famille",
        "family": "Famille",
        "purchase_price_ht": "Prix achat HT",
        "pvp_ttc": "PVP TTC",
        "stock_qty": "Stock",
    }
    assert result.missing_required == []
    assert result.unmapped_headers == []


def test_auto_detect_keeps_first_header_for_a_field():
    result = auto_detect_mapping(["Libelle", "Nom", "Colonne X"], CATALOGUE_FIELDS)
    assert result.mapping == {"name": "Libelle"}
    assert result.unmapped_headers == ["Nom", "Colonne X"]


def test_auto_detect_reports_missing_required_field():
    result = auto_detect_mapping(["Prix achat", "Stock"], PRICING_FIELDS)
    assert result.missing_required == ["ref_art"]


def test_sorecop_is_not_taken_for_cop():
    result = auto_detect_mapping(["Ref", "Sorecop", "Copie privee"], PRICING_FIELDS)
    assert result.mapping["sorecop"] == "Sorecop"
    assert result.mapping["cop"] == "Copie privee"


def test_short_description_header_is_not_taken_for_description():
    result = auto_detect_mapping(["Description courte", "Description"], CATALOGUE_FIELDS)
    assert result.mapping == {"short_description": "Description courte", "description": "Description"}


def test_validate_mapping_rejects_unknown_keys_and_absent_columns():
    with pytest.raises(ImportMappingError) as excinfo:
        validate_mapping({"name": "Nom", "colour": "Couleur"}, CATALOGUE_FIELDS)
    assert excinfo.value.unknown == ["colour"]

    with pytest.raises(ImportMappingError):
        validate_mapping({"name": "Nom"}, CATALOGUE_FIELDS, headers=["Designation"])

    assert validate_mapping({"ean": "EAN"}, CATALOGUE_FIELDS) == ["name"]


def test_map_row_trims_and_drops_blank_cells():
    mapped = map_row({"Nom": "  Cahier  ", "EAN": "", "Stock": "4"}, {"name": "Nom", "ean": "EAN", "stock_qty": "Stock"})
    assert mapped == {"name": "Cahier", "stock_qty": "4"}


@pytest.mark.django_db
def test_template_round_trip_overwrites_and_drops_unknown_keys(alkor):
    save_mapping_template("Alkor base", {"name": "Designation", "ean": "EAN"}, kind=ImportKind.CATALOGUE, supplier=alkor)
    template = save_mapping_template(
        "Alkor base",
        {"name": "Libelle", "ean": "EAN", "stock_qty": ""},
        kind=ImportKind.CATALOGUE,
        supplier=alkor,
    )
    assert ImportMappingTemplate.objects.count() == 1
    assert template.mapping == {"name": "Libelle", "ean": "EAN"}

    ImportMappingTemplate.objects.filter(pk=template.pk).update(mapping={"name": "Libelle", "legacy": "Old"})
    template.refresh_from_db()
    assert load_mapping_template(template) == {"name": "Libelle"}
    assert load_mapping_template(template, headers=["EAN"]) == {}


@pytest.mark.django_db
def test_template_requires_a_name():
    with pytest.raises(ImportMappingError):
        save_mapping_template("  ", {"name": "Nom"}, kind=ImportKind.CATALOGUE)
