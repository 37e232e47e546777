import base64
import json
from datetime import datetime

import pytest

from finsight.core.exceptions import DocumentReadError
from finsight.core.exceptions import EmptyDocumentError
from finsight.core.exceptions import UnsupportedFormatError
from finsight.models.document_models import DocumentKind
from finsight.services import extractor
from finsight.services.extractor import SHEET_MARKER
from finsight.services.extractor import flatten_sheets
from finsight.services.extractor import normalize_document
from finsight.services.extractor import normalize_document_async
from finsight.services.extractor import render_matrix
from finsight.services.extractor import resolve_extension


def _marker(name: str) -> str:
    return SHEET_MARKER.format(name=name)


# ---------------------------------------------------------------------------
# Tabular documents
# ---------------------------------------------------------------------------


def test_xlsx_only_non_empty_sheets_are_flattened(make_workbook):
    content = make_workbook(
        {
            "Income Statement": [["Item", "2023"], ["Revenue", 1200], ["Costs", 900]],
            "Empty": [],
            "Balance Sheet": [["Assets", 5000]],
        }
    )

    doc = normalize_document("PL_2023.xlsx", content)

    assert doc.kind is DocumentKind.TABULAR
    assert doc.media_type == "text/plain"
    assert doc.name == "PL_2023.xlsx"
    assert _marker("Income Statement") in doc.payload
    assert _marker("Balance Sheet") in doc.payload
    assert _marker("Empty") not in doc.payload
    assert doc.payload.count("--- SHEET:") == 2
    assert doc.payload.index(_marker("Income Statement")) < doc.payload.index(_marker("Balance Sheet"))
    assert '["Revenue", 1200]' in doc.payload


def test_xlsx_all_sheets_empty_raises(make_workbook):
    content = make_workbook({"One": [], "Two": [[None, None]]})
    with pytest.raises(EmptyDocumentError):
        normalize_document("blank.xlsx", content)


def test_corrupt_xlsx_raises_read_error():
    with pytest.raises(DocumentReadError):
        normalize_document("broken.xlsx", b"this is not a zip archive")


def test_corrupt_xls_raises_read_error():
    with pytest.raises(DocumentReadError):
        normalize_document("broken.xls", b"garbage bytes that are not BIFF")


def test_csv_is_a_single_sheet_with_sniffed_delimiter():
    content = "Year;Revenue\n2022;100\n2023;120\n".encode("utf-8")

    doc = normalize_document("sales.csv", content)

    assert doc.payload.startswith(_marker("Sheet1"))
    assert '["Year", "Revenue"]' in doc.payload
    assert '["2023", "120"]' in doc.payload


def test_csv_latin1_fallback():
    content = "Città,Ricavi\nMilano,100\n".encode("latin-1")
    doc = normalize_document("vendite.csv", content)
    assert "Città" in doc.payload


def test_csv_blank_only_raises_empty():
    with pytest.raises(EmptyDocumentError):
        normalize_document("empty.csv", b"\n\n,,\n")


# ---------------------------------------------------------------------------
# Opaque documents
# ---------------------------------------------------------------------------


def test_pdf_is_base64_passthrough():
    content = b"%PDF-1.4\n%binary\x00\xff"
    doc = normalize_document("Notes.pdf", content)

    assert doc.kind is DocumentKind.OPAQUE
    assert doc.media_type == "application/pdf"
    assert base64.b64decode(doc.payload) == content


def test_pdf_declared_media_type_without_suffix():
    doc = normalize_document("scan", b"%PDF-1.7", declared_media_type="application/pdf")
    assert doc.kind is DocumentKind.OPAQUE


def test_zero_length_pdf_is_accepted():
    doc = normalize_document("empty.pdf", b"")
    assert doc.payload == ""


# ---------------------------------------------------------------------------
# Selection boundary
# ---------------------------------------------------------------------------


def test_unsupported_suffix_raises_before_parsing(monkeypatch):
    monkeypatch.setattr(extractor, "_sniff_media_type", lambda content: "text/plain")

    def _fail(_content):
        raise AssertionError("reader must not run")

    monkeypatch.setattr(extractor, "_READERS", {ext: (_fail, (ValueError,)) for ext in extractor._READERS})

    with pytest.raises(UnsupportedFormatError):
        normalize_document("notes.txt", b"hello")


@pytest.mark.parametrize(
    "declared, expected",
    [
        ("text/csv", ".csv"),
        ("application/vnd.ms-excel", ".xls"),
        ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet; charset=binary", ".xlsx"),
    ],
)
def test_declared_media_type_resolves_extension(declared, expected):
    assert resolve_extension("upload", b"", declared) == expected


def test_suffix_wins_over_declared_media_type():
    assert resolve_extension("data.csv", b"", "application/octet-stream") == ".csv"


def test_sniffed_media_type_used_as_last_resort(monkeypatch):
    monkeypatch.setattr(extractor.magic, "from_buffer", lambda content, mime=True: "text/csv")
    assert resolve_extension("export", b"a,b\n1,2\n") == ".csv"


def test_sniffing_failure_is_not_fatal(monkeypatch):
    def _boom(content, mime=True):
        raise RuntimeError("libmagic unavailable")

    monkeypatch.setattr(extractor.magic, "from_buffer", _boom)
    with pytest.raises(UnsupportedFormatError):
        resolve_extension("export.bin", b"\x00\x01")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def test_render_matrix_drops_blank_rows_and_pads():
    rows = [["A", None, None], [None, None], ["B", 2.0, 3.5], [" c ", True]]
    assert render_matrix(rows) == [["A", "", ""], ["B", 2, 3.5], ["c", True, ""]]


def test_render_matrix_formats_dates():
    assert render_matrix([[datetime(2023, 12, 31)]]) == [["2023-12-31T00:00:00"]]


def test_flatten_sheets_body_is_a_json_matrix():
    text = flatten_sheets([("S", [["x", 1], ["y"]])])
    marker, body = text.split("\n", 1)
    assert marker == _marker("S")
    assert json.loads(body) == [["x", 1], ["y", ""]]


@pytest.mark.asyncio
async def test_normalize_document_async_matches_sync():
    content = b"a,b\n1,2\n"
    assert await normalize_document_async("x.csv", content) == normalize_document("x.csv", content)
