"""File parser: decode supplier spreadsheets into headers and string rows.

Only the first sheet of a workbook is read and its first row holds the
headers. Cells are returned as strings so staging stores exactly what the
supplier sent; typing happens later in :mod:`imports.validation`.
"""
from __future__ import annotations

import csv
import io
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal

import openpyxl
import xlrd
from django.conf import settings

from .exceptions import ImportFileError

logger = logging.getLogger("catalog_engine")

XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
XLS_EXTENSIONS = {".xls"}
CSV_EXTENSIONS = {".csv", ".txt"}
SUPPORTED_EXTENSIONS = XLSX_EXTENSIONS | XLS_EXTENSIONS | CSV_EXTENSIONS


@dataclass
class ParsedFile:
    headers: list[str] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    preview: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def as_dict(self) -> dict:
        return {"headers": self.headers, "rows": self.rows, "preview": self.preview}


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------

def cell_to_text(value) -> str:
    """Render a cell value as the string a user would have typed."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value).strip()


def _unique_headers(raw_headers: list) -> list[tuple[int, str]]:
    """Return ``(column_index, header)`` for non-empty headers, suffixing duplicates."""
    seen: dict[str, int] = {}
    result = []
    for index, raw in enumerate(raw_headers):
        header = cell_to_text(raw)
        if not header:
            continue
        count = seen.get(header, 0) + 1
        seen[header] = count
        if count > 1:
            header = f"{header} ({count})"
        result.append((index, header))
    return result


def _build(raw_rows) -> ParsedFile:
    """Turn an iterator of cell sequences (header row first) into a ParsedFile."""
    raw_rows = iter(raw_rows)
    header_cells = None
    for cells in raw_rows:
        if any(cell_to_text(c) for c in cells):
            header_cells = list(cells)
            break
    if header_cells is None:
        raise ImportFileError("Le fichier est vide.")

    columns = _unique_headers(header_cells)
    if not columns:
        raise ImportFileError("Le fichier ne contient aucun en-tete exploitable.")

    parsed = ParsedFile(headers=[h for _, h in columns])
    for cells in raw_rows:
        cells = list(cells)
        row = {
            header: cell_to_text(cells[index]) if index < len(cells) else ""
            for index, header in columns
        }
        if any(row.values()):
            parsed.rows.append(row)

    parsed.preview = parsed.rows[: settings.IMPORT_PREVIEW_ROWS]
    return parsed


# ---------------------------------------------------------------------------
# Format readers
# ---------------------------------------------------------------------------

def _read_xlsx(content: bytes) -> ParsedFile:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise ImportFileError(f"Fichier Excel illisible : {exc}") from exc
    try:
        ws = wb.worksheets[0]
        return _build(ws.iter_rows(values_only=True))
    finally:
        wb.close()


def _read_xls(content: bytes) -> ParsedFile:
    try:
        wb = xlrd.open_workbook(file_contents=content)
    except xlrd.XLRDError as exc:
        raise ImportFileError(f"Fichier Excel 97-2003 illisible : {exc}") from exc
    ws = wb.sheet_by_index(0)

    def _cell(row_idx, col_idx):
        cell = ws.cell(row_idx, col_idx)
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xlrd.xldate_as_datetime(cell.value, wb.datemode)
        if cell.ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
            return None
        return cell.value

    rows = ([_cell(r, c) for c in range(ws.ncols)] for r in range(ws.nrows))
    return _build(rows)


def decode_csv_bytes(content: bytes) -> str:
    """Decode CSV bytes as UTF-8 (with or without BOM), falling back to cp1252 then latin-1."""
    for encoding in ("utf-8-sig", "cp1252", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ImportFileError("Encodage CSV non supporte (utilisez UTF-8).")


def _read_csv(content: bytes) -> ParsedFile:
    text = decode_csv_bytes(content)
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;|\t")
    except csv.Error:
        dialect = csv.excel
    return _build(csv.reader(io.StringIO(text), dialect=dialect))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_import_file(fileobj, filename: str | None = None) -> ParsedFile:
    """Decode an uploaded XLSX, XLS or CSV file.

    Args:
        fileobj: a binary file-like object (Django ``UploadedFile`` or open file).
        filename: used to pick the decoder; defaults to ``fileobj.name``.

    Raises:
        ImportFileError: unsupported extension, empty or oversized file,
            unreadable content or no header row.
    """
    filename = filename or getattr(fileobj, "name", "") or ""
    extension = os.path.splitext(filename)[1].lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise ImportFileError(
            f"Format de fichier non supporte : {extension or filename!r} (xlsx, xls ou csv)."
        )

    size = getattr(fileobj, "size", None)
    max_size = settings.IMPORT_MAX_FILE_SIZE
    if size and size > max_size:
        raise ImportFileError(f"Le fichier depasse {max_size // (1024 * 1024)} Mo.")

    content = fileobj.read()
    if not content:
        raise ImportFileError("Le fichier est vide.")
    if len(content) > max_size:
        raise ImportFileError(f"Le fichier depasse {max_size // (1024 * 1024)} Mo.")

    if extension in XLSX_EXTENSIONS:
        parsed = _read_xlsx(content)
    elif extension in XLS_EXTENSIONS:
        parsed = _read_xls(content)
    else:
        parsed = _read_csv(content)

    logger.info(
        "Parsed import file %s: %d column(s), %d row(s).",
        filename,
        len(parsed.headers),
        parsed.total_rows,
    )
    return parsed
