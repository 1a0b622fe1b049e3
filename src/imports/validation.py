"""Row validator and value coercion for mapped import rows."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from .fields import PRICING_VALUE_KEYS, CanonicalField, FieldDictionary, FieldRule, ImportKind

EAN_RE = re.compile(r"^(\d{8}|\d{13})$")
URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
_NUMBER_NOISE_RE = re.compile(r"[\s€$£%]")

TRUE_VALUES = frozenset({"1", "oui", "o", "yes", "y", "true", "vrai", "x", "actif"})
FALSE_VALUES = frozenset({"0", "non", "n", "no", "false", "faux", "inactif"})

MESSAGE_REQUIRED_NAME = "Nom produit requis"

# Product.weight_kg is DecimalField(10, 3); PositiveIntegerField tops out at 2**31 - 1.
MAX_DECIMAL = Decimal("9999999")
MAX_INTEGER = 2147483647
INTEGER_RULES = frozenset({FieldRule.INTEGER, FieldRule.POSITIVE_INTEGER})


class FieldValueError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def parse_decimal(raw) -> Decimal | None:
    """Parse supplier-formatted numbers: ``12,50``, ``1 234,56 €``, ``1.234,56``, ``1,234.56``.

    Returns None for blank or unparseable input.
    """
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, float)):
        return Decimal(str(raw))
    text = _NUMBER_NOISE_RE.sub("", str(raw))
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def normalize_ean(raw) -> str:
    return re.sub(r"[\s\-]", "", str(raw or ""))


def parse_bool(raw) -> bool | None:
    text = str(raw or "").strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def coerce_value(canonical: CanonicalField, raw):
    """Convert a raw cell to the Python value of ``canonical``'s rule.

    Raises:
        FieldValueError: with the user-facing message for the row.
    """
    rule = canonical.rule
    label = canonical.label
    text = str(raw).strip()

    if rule is FieldRule.TEXT:
        return text
    if rule is FieldRule.EAN:
        ean = normalize_ean(text)
        if not EAN_RE.match(ean):
            raise FieldValueError("EAN invalide (8 ou 13 chiffres)")
        return ean
    if rule is FieldRule.URL:
        if not URL_RE.match(text):
            raise FieldValueError(f"{label} : URL invalide (http/https)")
        return text
    if rule is FieldRule.BOOLEAN:
        value = parse_bool(text)
        if value is None:
            raise FieldValueError(f"{label} : booleen invalide")
        return value
    if rule.is_numeric:
        return _coerce_number(canonical, text)
    raise ValueError(f"Unhandled field rule {rule!r}.")


def _coerce_number(canonical: CanonicalField, text: str):
    rule = canonical.rule
    label = canonical.label
    number = parse_decimal(text)
    if number is None:
        raise FieldValueError(f"{label} : valeur numerique invalide")

    # Smallest column bound among the product and offer fields fed by imports.
    limit = MAX_INTEGER if rule in INTEGER_RULES else MAX_DECIMAL
    if abs(number) > limit:
        raise FieldValueError(f"{label} : valeur trop grande (max {limit})")

    if rule is FieldRule.POSITIVE_DECIMAL:
        if number <= 0:
            raise FieldValueError(f"{label} doit etre > 0")
        return number
    if rule is FieldRule.DECIMAL:
        if number < 0:
            raise FieldValueError(f"{label} doit etre >= 0")
        return number
    if rule is FieldRule.PERCENT:
        if number < 0 or number > 100:
            raise FieldValueError(f"{label} doit etre compris entre 0 et 100")
        return number

    # Integer rules
    if number != number.to_integral_value():
        raise FieldValueError(f"{label} doit etre un entier")
    value = int(number)
    if rule is FieldRule.POSITIVE_INTEGER and value < 1:
        raise FieldValueError(f"{label} doit etre >= 1")
    if value < 0:
        raise FieldValueError(f"{label} doit etre >= 0")
    return value


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------

def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


def validate_row(mapped_data: dict, dictionary: FieldDictionary) -> list[str]:
    """Return the ordered list of problems with ``mapped_data`` (empty when valid).

    Required fields are checked first, then each present value against its
    rule, in dictionary order. Pure: no database access.
    """
    errors: list[str] = []
    for canonical in dictionary:
        if canonical.required and _is_blank(mapped_data.get(canonical.key)):
            if canonical.key == "name":
                errors.append(MESSAGE_REQUIRED_NAME)
            else:
                errors.append(f"Champ requis manquant : {canonical.label}")

    for canonical in dictionary:
        raw = mapped_data.get(canonical.key)
        if _is_blank(raw):
            continue
        try:
            coerce_value(canonical, raw)
        except FieldValueError as exc:
            errors.append(str(exc))

    if dictionary.kind == ImportKind.PRICING and not _is_blank(mapped_data.get("ref_art")):
        if all(_is_blank(mapped_data.get(key)) for key in PRICING_VALUE_KEYS):
            errors.append("Aucune valeur a mettre a jour")
    return errors


def clean_row(mapped_data: dict, dictionary: FieldDictionary) -> dict:
    """Coerce every present value of an already validated row.

    Unknown keys and blank values are dropped.
    """
    cleaned = {}
    for canonical in dictionary:
        raw = mapped_data.get(canonical.key)
        if _is_blank(raw):
            continue
        cleaned[canonical.key] = coerce_value(canonical, raw)
    return cleaned
