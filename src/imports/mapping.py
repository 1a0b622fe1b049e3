"""Column mapper: supplier headers to canonical import fields.

Detection is a pure function of the headers and the field dictionary.
Templates persist a mapping per supplier so the next file from the same
supplier can reuse it.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

from .exceptions import ImportMappingError
from .fields import FieldDictionary, get_dictionary

logger = logging.getLogger("catalog_engine")

_WHITESPACE_RE = re.compile(r"\s+")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'"})


def normalize_header(value) -> str:
    """Lowercase, strip diacritics and collapse whitespace."""
    cleaned = str(value or "").translate(_APOSTROPHES).lower()
    cleaned = unicodedata.normalize("NFKD", cleaned)
    cleaned = "".join(ch for ch in cleaned if not unicodedata.combining(ch))
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


@dataclass
class MappingResult:
    mapping: dict[str, str] = field(default_factory=dict)
    unmapped_headers: list[str] = field(default_factory=list)
    missing_required: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "mapping": dict(self.mapping),
            "unmapped_headers": list(self.unmapped_headers),
            "missing_required": list(self.missing_required),
        }


def auto_detect_mapping(headers: list[str], dictionary: FieldDictionary) -> MappingResult:
    """Guess ``{field_key: header}`` for ``headers``.

    A header matches a pattern when the normalised header equals or contains
    the normalised pattern. Patterns are tried in dictionary order and the
    first hit decides; a field already claimed by an earlier header is not
    reassigned.
    """
    pairs = [(normalize_header(pattern), key) for pattern, key in dictionary.pattern_pairs()]
    result = MappingResult()

    for header in headers:
        normalized = normalize_header(header)
        if not normalized:
            continue
        matched_key = None
        for pattern, key in pairs:
            if normalized == pattern or pattern in normalized:
                matched_key = key
                break
        if matched_key is None or matched_key in result.mapping:
            result.unmapped_headers.append(header)
            continue
        result.mapping[matched_key] = header

    result.missing_required = [k for k in dictionary.required_keys() if k not in result.mapping]
    return result


def validate_mapping(
    mapping: dict[str, str],
    dictionary: FieldDictionary,
    headers: list[str] | None = None,
) -> list[str]:
    """Check ``mapping`` against ``dictionary`` and return missing required keys.

    Raises:
        ImportMappingError: unknown field keys, or columns absent from
            ``headers`` when headers are given.
    """
    unknown = [key for key in mapping if key not in dictionary]
    if unknown:
        raise ImportMappingError(
            f"Champs inconnus dans le mapping : {', '.join(sorted(unknown))}.",
            unknown=unknown,
        )
    if headers is not None:
        header_set = set(headers)
        absent = [col for col in mapping.values() if col and col not in header_set]
        if absent:
            raise ImportMappingError(
                f"Colonnes absentes du fichier : {', '.join(absent)}.",
                unknown=absent,
            )
    return [key for key in dictionary.required_keys() if not mapping.get(key)]


def map_row(raw_row: dict, mapping: dict[str, str]) -> dict[str, str]:
    """Project a raw ``{column: value}`` row onto canonical keys.

    Values are trimmed strings; empty cells are left out.
    """
    mapped = {}
    for key, column in mapping.items():
        if not column:
            continue
        value = raw_row.get(column)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            mapped[key] = text
    return mapped


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def save_mapping_template(name: str, mapping: dict[str, str], *, kind: str, supplier=None):
    """Create or overwrite the template ``name`` for ``(supplier, kind)``."""
    from .models import ImportMappingTemplate

    name = (name or "").strip()
    if not name:
        raise ImportMappingError("Le nom du modele est obligatoire.")
    validate_mapping(mapping, get_dictionary(kind))

    template, created = ImportMappingTemplate.objects.update_or_create(
        supplier=supplier,
        kind=kind,
        name=name,
        defaults={"mapping": {k: v for k, v in mapping.items() if v}},
    )
    logger.info(
        "Mapping template %s '%s' (%s, supplier=%s).",
        "created" if created else "updated",
        name,
        kind,
        getattr(supplier, "code", None),
    )
    return template


def load_mapping_template(template, headers: list[str] | None = None) -> dict[str, str]:
    """Return a fresh working mapping from ``template``.

    Keys the dictionary no longer knows are dropped, as are columns missing
    from ``headers`` when headers are given.
    """
    dictionary = get_dictionary(template.kind)
    header_set = set(headers) if headers is not None else None
    mapping = {}
    for key, column in (template.mapping or {}).items():
        if key not in dictionary:
            logger.warning("Template %s: unknown field '%s' dropped.", template.pk, key)
            continue
        if header_set is not None and column not in header_set:
            continue
        mapping[key] = column
    return mapping
