"""Canonical import fields.

Each import kind has a fixed, ordered dictionary of canonical fields. A field
carries its validation rule and the header patterns used to recognise it in a
supplier file. Order matters for header detection: the first pattern found in
a header wins, so fields whose patterns contain another field's pattern
("sous-famille" contains "famille", "sorecop" contains "cop") come first.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from django.db import models


class ImportKind(models.TextChoices):
    CATALOGUE = "catalogue", "Catalogue"
    PRICING = "pricing", "Prix et stock"


class FieldRule(str, Enum):
    TEXT = "text"
    EAN = "ean"
    DECIMAL = "decimal"                    # >= 0
    POSITIVE_DECIMAL = "positive_decimal"  # > 0
    INTEGER = "integer"                    # >= 0
    POSITIVE_INTEGER = "positive_integer"  # >= 1
    PERCENT = "percent"                    # 0..100
    URL = "url"
    BOOLEAN = "boolean"

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_RULES


NUMERIC_RULES = frozenset({
    FieldRule.DECIMAL,
    FieldRule.POSITIVE_DECIMAL,
    FieldRule.INTEGER,
    FieldRule.POSITIVE_INTEGER,
    FieldRule.PERCENT,
})


@dataclass(frozen=True)
class CanonicalField:
    key: str
    label: str
    rule: FieldRule = FieldRule.TEXT
    required: bool = False
    patterns: tuple[str, ...] = ()


class FieldDictionary:
    """Ordered, immutable set of canonical fields for one import kind."""

    def __init__(self, kind: str, fields: list[CanonicalField]):
        self.kind = kind
        self._fields = tuple(fields)
        self._by_key = {f.key: f for f in self._fields}
        if len(self._by_key) != len(self._fields):
            raise ValueError(f"Duplicate field key in {kind} dictionary.")

    def __iter__(self):
        return iter(self._fields)

    def __len__(self):
        return len(self._fields)

    def __contains__(self, key):
        return key in self._by_key

    def keys(self) -> list[str]:
        return [f.key for f in self._fields]

    def get(self, key: str) -> CanonicalField:
        return self._by_key[key]

    def required_keys(self) -> list[str]:
        return [f.key for f in self._fields if f.required]

    def pattern_pairs(self) -> list[tuple[str, str]]:
        """Flattened ``(pattern, key)`` pairs in detection order."""
        return [(pattern, f.key) for f in self._fields for pattern in f.patterns]


TAX_CODES = ("eco_tax", "d3e", "deee", "cop", "sorecop")


# ---------------------------------------------------------------------------
# Catalogue (descriptive supplier files, e.g. the Alkor article base)
# ---------------------------------------------------------------------------

CATALOGUE_FIELDS = FieldDictionary(ImportKind.CATALOGUE, [
    CanonicalField("ean", "EAN", FieldRule.EAN, patterns=(
        "ean uc", "ean13", "ean8", "ean", "code-barres", "code barres", "barcode", "gtin",
    )),
    CanonicalField("supplier_reference", "Reference fournisseur", patterns=(
        "ref art 6", "ref fournisseur", "reference fournisseur", "supplier ref", "supplier reference",
        "code article",
    )),
    CanonicalField("manufacturer_ref", "Reference fabricant", patterns=(
        "code fabricant", "ref fabricant", "reference fabricant", "manufacturer ref", "maker ref",
    )),
    CanonicalField("sku_interne", "SKU interne", patterns=(
        "sku", "ref interne", "reference interne",
    )),
    CanonicalField("replacement_ref", "Remplacement propose", patterns=("remplacement",)),
    CanonicalField("sub_family", "Sous-famille", patterns=(
        "sous-famille", "sous-famile", "sous famille", "sub family", "sub-family",
    )),
    CanonicalField("family", "Famille", patterns=(
        "description famille", "famille", "categorie", "category", "family", "rayon",
    )),
    CanonicalField("nomenclature", "Nomenclature", patterns=("nomenclature",)),
    CanonicalField("short_description", "Description courte", patterns=(
        "description courte", "libelle court", "libelle complementaire", "short description",
    )),
    CanonicalField("manufacturer", "Fabricant", patterns=(
        "nom fabricant", "marque fabricant", "fabricant", "manufacturer",
    )),
    CanonicalField("brand", "Marque", patterns=("marque produit", "marque", "brand")),
    CanonicalField("lifecycle", "Cycle de vie", patterns=("cycle de vie", "lifecycle")),
    CanonicalField("article_status", "Statut article", patterns=("statut de l'article", "statut")),
    CanonicalField("is_eco", "Produit ecologique", FieldRule.BOOLEAN, patterns=(
        "produit ecologique", "eco-responsable",
    )),
    CanonicalField("warranty", "Duree de garantie", patterns=("duree de garantie", "garantie", "warranty")),
    CanonicalField("image_url", "URL image", FieldRule.URL, patterns=(
        "image url", "url image", "photo url", "image", "photo", "img",
    )),
    CanonicalField("weight_kg", "Poids (kg)", FieldRule.DECIMAL, patterns=("poids", "weight", "masse")),
    CanonicalField("purchase_price_ht", "Prix d'achat HT", FieldRule.POSITIVE_DECIMAL, patterns=(
        "prix achat ht", "prix d'achat ht", "prix achat", "prix d'achat", "prix fournisseur",
        "pa ht", "achat ht", "cout", "cost",
    )),
    CanonicalField("pvp_ttc", "PVP TTC", FieldRule.POSITIVE_DECIMAL, patterns=(
        "pvp ttc", "pvp", "prix de vente conseille", "pvc", "prix public", "prix ttc", "price ttc",
        "tarif ttc",
    )),
    CanonicalField("vat_rate", "Taux TVA", FieldRule.PERCENT, patterns=("taux tva", "tva", "vat")),
    CanonicalField("min_qty", "Quantite minimale", FieldRule.POSITIVE_INTEGER, patterns=(
        "quantite minimale", "qte min", "minimum de commande", "min qty", "moq",
    )),
    CanonicalField("stock_qty", "Stock", FieldRule.INTEGER, patterns=(
        "stock", "quantite disponible", "quantite", "qte", "qty", "inventory",
    )),
    CanonicalField("delivery_delay_days", "Delai de livraison", FieldRule.INTEGER, patterns=(
        "delai de livraison", "delai", "delivery",
    )),
    CanonicalField("sorecop", "Sorecop", FieldRule.DECIMAL, patterns=("sorecop",)),
    CanonicalField("d3e", "D3E", FieldRule.DECIMAL, patterns=("d3e",)),
    CanonicalField("deee", "DEEE", FieldRule.DECIMAL, patterns=("deee",)),
    CanonicalField("cop", "Copie privee", FieldRule.DECIMAL, patterns=("copie privee", "cop")),
    CanonicalField("eco_tax", "Eco-participation", FieldRule.DECIMAL, patterns=(
        "eco-taxe", "ecotaxe", "eco taxe", "eco-participation", "eco participation",
    )),
    CanonicalField("description", "Description", patterns=("description", "desc", "detail")),
    CanonicalField("name", "Nom produit", required=True, patterns=(
        "libelle commercial", "designation", "nom produit", "libelle", "nom", "name", "label",
    )),
])


# ---------------------------------------------------------------------------
# Pricing (price and stock refresh keyed by supplier article code)
# ---------------------------------------------------------------------------

PRICING_FIELDS = FieldDictionary(ImportKind.PRICING, [
    CanonicalField("ref_art", "Reference article", required=True, patterns=(
        "ref art 6", "ref art", "reference", "code article", "article", "ref",
    )),
    CanonicalField("purchase_price_ht", "Prix d'achat HT", FieldRule.POSITIVE_DECIMAL, patterns=(
        "prix achat ht", "prix d'achat ht", "pa ht", "prix achat", "prix d'achat",
    )),
    CanonicalField("pvp_ttc", "PVP TTC", FieldRule.POSITIVE_DECIMAL, patterns=(
        "pvp ttc", "prix de vente conseille", "pvp", "pvc", "prix public",
    )),
    CanonicalField("vat_rate", "Taux TVA", FieldRule.PERCENT, patterns=("taux tva", "tva")),
    CanonicalField("sorecop", "Sorecop", FieldRule.DECIMAL, patterns=("sorecop",)),
    CanonicalField("d3e", "D3E", FieldRule.DECIMAL, patterns=("d3e",)),
    CanonicalField("deee", "DEEE", FieldRule.DECIMAL, patterns=("deee",)),
    CanonicalField("cop", "Copie privee", FieldRule.DECIMAL, patterns=("copie privee", "cop")),
    CanonicalField("eco_tax", "Eco-participation", FieldRule.DECIMAL, patterns=(
        "eco-taxe", "ecotaxe", "eco taxe", "eco-participation", "eco",
    )),
    CanonicalField("min_qty", "Quantite minimale", FieldRule.POSITIVE_INTEGER, patterns=(
        "quantite minimale", "qte min", "min qty", "moq",
    )),
    CanonicalField("stock_qty", "Stock", FieldRule.INTEGER, patterns=("stock", "quantite", "qte", "qty")),
    CanonicalField("delivery_delay_days", "Delai de livraison", FieldRule.INTEGER, patterns=(
        "delai de livraison", "delai",
    )),
])

# Pricing rows must carry at least one of these besides the reference.
PRICING_VALUE_KEYS = tuple(k for k in PRICING_FIELDS.keys() if k != "ref_art")

DICTIONARIES = {
    ImportKind.CATALOGUE: CATALOGUE_FIELDS,
    ImportKind.PRICING: PRICING_FIELDS,
}


def get_dictionary(kind: str) -> FieldDictionary:
    try:
        return DICTIONARIES[ImportKind(kind)]
    except ValueError:
        raise ValueError(f"Type d'import inconnu : {kind}")
