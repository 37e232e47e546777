"""Full flow through the HTTP surface with only the chat-completions call stubbed."""

import base64
import json
from unittest.mock import AsyncMock
from unittest.mock import MagicMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from finsight.core.config import Settings
from finsight.generation_logic.session import SessionStore
from finsight.main import create_app
from finsight.services.llm import AnalysisInvoker
from finsight.services.schema_contract import ANALYSIS_CONTRACT

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\n%%EOF\n"

pytestmark = pytest.mark.e2e


@pytest.fixture()
def create(make_completion):
    return AsyncMock(return_value=make_completion("{}"))


@pytest.fixture()
def client(create):
    def _factory(api_key):
        fake = MagicMock()
        fake.chat.completions.create = create
        return fake

    invoker = AnalysisInvoker(
        credential_providers=[lambda: "server-key"],
        config=Settings(llm_temperature=0.2),
        client_factory=_factory,
    )
    return TestClient(create_app(SessionStore(invoker=invoker)))


def test_workbook_and_pdf_analysis_then_edit(client, create, make_workbook, make_completion, report_data):
    workbook = make_workbook(
        {
            "Income Statement": [["Rossi S.r.l."], ["Item", 2022, 2023], ["Revenue", 1100000, 1200000]],
            "Empty": [],
        }
    )
    create.return_value = make_completion(json.dumps(report_data))

    session_id = client.post("/api/sessions").json()["id"]
    resp = client.post(
        f"/api/sessions/{session_id}/analyze",
        files=[
            ("files", ("PL_2023.xlsx", workbook, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")),
            ("files", ("Notes.pdf", PDF_BYTES, "application/pdf")),
        ],
        data={"language": "en"},
    )

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["companyName"] == "Rossi S.r.l."

    kwargs = create.await_args.kwargs
    assert kwargs["temperature"] == 0.2
    assert kwargs["response_format"] == ANALYSIS_CONTRACT.response_format()

    parts = kwargs["messages"][0]["content"]
    assert len(parts) == 4
    instructions, sheet_part, pdf_delimiter, pdf_part = parts

    assert "TARGET LANGUAGE: English" in instructions["text"]
    assert "PL_2023.xlsx, Notes.pdf" in instructions["text"]

    assert sheet_part["text"].startswith("=== DOCUMENT: PL_2023.xlsx ===\n")
    assert '--- SHEET: "Income Statement" ---' in sheet_part["text"]
    assert '["Revenue", 1100000, 1200000]' in sheet_part["text"]
    assert '["Rossi S.r.l.", "", ""]' in sheet_part["text"]
    assert '--- SHEET: "Empty" ---' not in sheet_part["text"]

    assert pdf_delimiter == {"type": "text", "text": "=== DOCUMENT: Notes.pdf ==="}
    assert pdf_part["type"] == "file"
    assert pdf_part["file"]["filename"] == "Notes.pdf"
    prefix = "data:application/pdf;base64,"
    assert pdf_part["file"]["file_data"].startswith(prefix)
    assert base64.b64decode(pdf_part["file"]["file_data"][len(prefix) :]) == PDF_BYTES

    # Conversational edit: only the returned field changes
    create.return_value = make_completion(
        json.dumps({"answer": "Summary shortened.", "updatedAnalysis": {"executiveSummary": "Short."}})
    )
    chat = client.post(f"/api/sessions/{session_id}/chat", json={"instruction": "Shorten the summary"})

    assert chat.status_code == status.HTTP_200_OK
    body = chat.json()
    assert body["updated"] is True
    assert body["report"]["executiveSummary"] == "Short."
    assert body["report"]["kpis"] == resp.json()["kpis"]
    assert create.await_args.kwargs["response_format"] == {"type": "json_object"}
    # the chat call carries the same source documents
    chat_parts = create.await_args.kwargs["messages"][0]["content"]
    assert [p["text"] for p in chat_parts if p["type"] == "text"][1].startswith("=== DOCUMENT: PL_2023.xlsx ===")


def test_malformed_generation_leaves_session_without_report(client, create, make_completion):
    create.return_value = make_completion('{"companyName": "Only a name"}')
    session_id = client.post("/api/sessions").json()["id"]

    resp = client.post(
        f"/api/sessions/{session_id}/analyze",
        files=[("files", ("pl.csv", b"a,b\n1,2\n", "text/csv"))],
    )

    assert resp.status_code == status.HTTP_502_BAD_GATEWAY
    assert "Only a name" not in resp.text
    assert client.get(f"/api/sessions/{session_id}").json()["report"] is None
