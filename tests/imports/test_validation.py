from decimal import Decimal

import pytest

from imports.fields import CATALOGUE_FIELDS, PRICING_FIELDS
from imports.validation import clean_row, normalize_ean, parse_bool, parse_decimal, validate_row


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("12,50", Decimal("12.50")),
        ("1 234,56 €", Decimal("1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("3.9", Decimal("3.9")),
        ("", None),
        ("abc", None),
        ("NaN", None),
    ],
)
def test_parse_decimal_supplier_formats(raw, expected):
    assert parse_decimal(raw) == expected


def test_normalize_ean_and_parse_bool():
    assert normalize_ean("3 086-123456789") == "3086123456789"
    assert parse_bool("Oui") is True
    assert parse_bool("non") is False
    assert parse_bool("peut-etre") is None


def test_valid_catalogue_row_has_no_errors():
    row = {"name": "Cahier", "ean": "3086123456789", "pvp_ttc": "3,90", "stock_qty": "4", "is_eco": "oui"}
    assert validate_row(row, CATALOGUE_FIELDS) == []


def test_missing_name_is_reported_first():
    errors = validate_row({"ean": "123"}, CATALOGUE_FIELDS)
    assert errors == ["Nom produit requis", "EAN invalide (8 ou 13 chiffres)"]


def test_rule_messages_follow_field_order():
    row = {
        "name": "Cahier",
        "image_url": "ftp://img",
        "weight_kg": "-1",
        "purchase_price_ht": "0",
        "pvp_ttc": "abc",
        "vat_rate": "120",
        "min_qty": "0",
        "stock_qty": "2,5",
    }
    assert validate_row(row, CATALOGUE_FIELDS) == [
        "URL image : URL invalide (http/https)",
        "Poids (kg) doit etre >= 0",
        "Prix d'achat HT doit etre > 0",
        "PVP TTC : valeur numerique invalide",
        "Taux TVA doit etre compris entre 0 et 100",
        "Quantite minimale doit etre >= 1",
        "Stock doit etre un entier",
    ]


def test_numbers_beyond_column_limits_are_rejected():
    row = {"name": "Cahier", "weight_kg": "12345678", "stock_qty": "1e30", "pvp_ttc": "9999999"}
    assert validate_row(row, CATALOGUE_FIELDS) == [
        "Poids (kg) : valeur trop grande (max 9999999)",
        "Stock : valeur trop grande (max 2147483647)",
    ]


def test_boolean_rule():
    errors = validate_row({"name": "Cahier", "is_eco": "peut-etre"}, CATALOGUE_FIELDS)
    assert errors == ["Produit ecologique : booleen invalide"]


def test_pricing_row_needs_a_value_to_update():
    assert validate_row({"ref_art": "A1"}, PRICING_FIELDS) == ["Aucune valeur a mettre a jour"]
    assert validate_row({}, PRICING_FIELDS) == ["Champ requis manquant : Reference article"]
    assert validate_row({"ref_art": "A1", "stock_qty": "0"}, PRICING_FIELDS) == []


def test_clean_row_coerces_and_drops_blanks():
    cleaned = clean_row(
        {"name": " Cahier ", "ean": "3086 123456789", "pvp_ttc": "3,90", "stock_qty": "4", "brand": " ", "x": "y"},
        CATALOGUE_FIELDS,
    )
    assert cleaned == {
        "name": "Cahier",
        "ean": "3086123456789",
        "pvp_ttc": Decimal("3.90"),
        "stock_qty": 4,
    }
