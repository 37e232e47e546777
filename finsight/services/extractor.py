"""Turns uploaded files into ``NormalizedDocument`` objects.

Tabular files (.xlsx, .xls, .csv) are flattened sheet by sheet into text;
page documents (.pdf) are passed through as base64 without inspection.
"""

import asyncio
import base64
import csv
import io
import json
import logging
import math
import zipfile
from collections.abc import Iterable
from datetime import date
from datetime import datetime
from datetime import time
from pathlib import Path
from typing import Any

import magic
import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from finsight.core.exceptions import DocumentReadError
from finsight.core.exceptions import EmptyDocumentError
from finsight.core.exceptions import UnsupportedFormatError
from finsight.core.validation import ALLOWED_EXTENSIONS
from finsight.core.validation import MEDIA_TYPE_EXTENSIONS
from finsight.core.validation import MIME_MAPPING
from finsight.core.validation import OPAQUE_EXTENSIONS
from finsight.core.validation import TABULAR_EXTENSIONS
from finsight.models.document_models import DocumentKind
from finsight.models.document_models import NormalizedDocument

logger = logging.getLogger(__name__)

SHEET_MARKER = '--- SHEET: "{name}" ---'
TABULAR_MEDIA_TYPE = "text/plain"
CSV_SHEET_NAME = "Sheet1"
CSV_SNIFF_BYTES = 64 * 1024

Sheet = tuple[str, list[list[Any]]]


# ---------------------------------------------------------------------------
# Selection boundary
# ---------------------------------------------------------------------------


def _clean_media_type(media_type: str | None) -> str | None:
    if not media_type:
        return None
    return media_type.split(";")[0].strip().lower() or None


def _sniff_media_type(content: bytes) -> str | None:
    try:
        return magic.from_buffer(content, mime=True)
    except Exception as e:
        logger.warning("MIME sniffing failed: %s", e)
        return None


def resolve_extension(filename: str, content: bytes, declared_media_type: str | None = None) -> str:
    """Decide which accepted format a file is, before any parsing.

    A PDF is recognised by declared type or suffix. Otherwise a tabular suffix
    wins, then the declared media type, then the type sniffed from the bytes.

    Raises:
        UnsupportedFormatError: if none of these identify an accepted format.
    """
    declared = _clean_media_type(declared_media_type)
    suffix = Path(filename).suffix.lower()

    if declared == MIME_MAPPING[".pdf"] or suffix in OPAQUE_EXTENSIONS:
        return ".pdf"
    if suffix in TABULAR_EXTENSIONS:
        return suffix
    if declared in MEDIA_TYPE_EXTENSIONS:
        return MEDIA_TYPE_EXTENSIONS[declared]

    sniffed = _clean_media_type(_sniff_media_type(content))
    if sniffed in MEDIA_TYPE_EXTENSIONS:
        logger.info("Resolved '%s' from sniffed media type %s", filename, sniffed)
        return MEDIA_TYPE_EXTENSIONS[sniffed]

    logger.warning("Rejected '%s': suffix=%r declared=%r sniffed=%r", filename, suffix, declared, sniffed)
    raise UnsupportedFormatError(
        f"Unsupported file type for '{filename}'. Allowed extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
    )


# ---------------------------------------------------------------------------
# Sheet readers
# ---------------------------------------------------------------------------


def _read_xlsx(content: bytes) -> list[Sheet]:
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        # worksheets excludes chartsheets, which carry no cells
        return [(ws.title, [list(row) for row in ws.iter_rows(values_only=True)]) for ws in workbook.worksheets]
    finally:
        workbook.close()


def _read_xls(content: bytes) -> list[Sheet]:
    book = xlrd.open_workbook(file_contents=content)
    sheets: list[Sheet] = []
    for sheet in book.sheets():
        rows: list[list[Any]] = []
        for row_idx in range(sheet.nrows):
            row: list[Any] = []
            for cell in sheet.row(row_idx):
                if cell.ctype == xlrd.XL_CELL_DATE:
                    row.append(xlrd.xldate.xldate_as_datetime(cell.value, book.datemode))
                elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
                    row.append(None)
                else:
                    row.append(cell.value)
            rows.append(row)
        sheets.append((sheet.name, rows))
    return sheets


def _decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def _read_csv(content: bytes) -> list[Sheet]:
    text = _decode_text(content)
    try:
        dialect = csv.Sniffer().sniff(text[:CSV_SNIFF_BYTES], delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    return [(CSV_SHEET_NAME, [list(row) for row in csv.reader(io.StringIO(text), dialect)])]


_READERS = {
    ".xlsx": (_read_xlsx, (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError)),
    ".xls": (_read_xls, (xlrd.XLRDError, OSError, ValueError)),
    ".csv": (_read_csv, (csv.Error,)),
}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return str(value)
        return int(value) if value.is_integer() else value
    if isinstance(value, int):
        return value
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    return str(value)


def render_matrix(rows: Iterable[Iterable[Any]]) -> list[list[Any]]:
    """Header-less rectangular matrix: blank rows dropped, short rows padded with ''."""
    matrix: list[list[Any]] = []
    for raw_row in rows:
        row = [_cell_value(v) for v in raw_row]
        while row and row[-1] == "":
            row.pop()
        if row:
            matrix.append(row)

    width = max((len(r) for r in matrix), default=0)
    return [r + [""] * (width - len(r)) for r in matrix]


def flatten_sheets(sheets: list[Sheet]) -> str:
    """Concatenate every non-empty sheet, each preceded by its marker line."""
    blocks: list[str] = []
    for name, rows in sheets:
        matrix = render_matrix(rows)
        if not matrix:
            logger.debug("Skipping empty sheet '%s'", name)
            continue
        body = ",\n".join("  " + json.dumps(r, ensure_ascii=False) for r in matrix)
        blocks.append(f"{SHEET_MARKER.format(name=name)}\n[\n{body}\n]")
    return "\n\n".join(blocks)


def encode_opaque(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def normalize_document(
    filename: str,
    content: bytes,
    declared_media_type: str | None = None,
    request_id: str = "-",
) -> NormalizedDocument:
    """Produce exactly one NormalizedDocument for an uploaded file, or raise."""
    ext = resolve_extension(filename, content, declared_media_type)
    logger.info("[%s] NORMALIZE: '%s' as %s (%d bytes)", request_id, filename, ext, len(content))

    if ext in OPAQUE_EXTENSIONS:
        return NormalizedDocument(
            name=filename,
            kind=DocumentKind.OPAQUE,
            media_type=MIME_MAPPING[ext],
            payload=encode_opaque(content),
        )

    reader, read_errors = _READERS[ext]
    try:
        sheets = reader(content)
    except read_errors as e:
        logger.error("[%s] NORMALIZE: failed to read '%s': %s", request_id, filename, e)
        raise DocumentReadError(f"Could not read '{filename}': the file is corrupted or not a valid {ext} file.") from e

    if not sheets:
        raise EmptyDocumentError(f"The file '{filename}' contains no sheets.")

    payload = flatten_sheets(sheets)
    if not payload:
        logger.warning("[%s] NORMALIZE: all %d sheets of '%s' are empty", request_id, len(sheets), filename)
        raise EmptyDocumentError(f"The file '{filename}' appears to be empty.")

    logger.debug("[%s] NORMALIZE: '%s' flattened to %d chars", request_id, filename, len(payload))
    return NormalizedDocument(
        name=filename,
        kind=DocumentKind.TABULAR,
        media_type=TABULAR_MEDIA_TYPE,
        payload=payload,
    )


async def normalize_document_async(
    filename: str,
    content: bytes,
    declared_media_type: str | None = None,
    request_id: str = "-",
) -> NormalizedDocument:
    """Run ``normalize_document`` in a worker thread so the event loop stays free."""
    return await asyncio.to_thread(normalize_document, filename, content, declared_media_type, request_id)
