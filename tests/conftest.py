import io
import json
from types import SimpleNamespace
from typing import Any

import openpyxl
import pytest


# Fixture factory to build .xlsx bytes from {sheet name: rows}
@pytest.fixture
def make_workbook():
    def _make_workbook(sheets: dict[str, list[list[Any]]]) -> bytes:
        wb = openpyxl.Workbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(title=name)
            for row in rows:
                ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return _make_workbook


def _section(title: str) -> dict[str, Any]:
    return {"title": title, "content": f"{title} discussion.", "keyTakeaways": [f"{title} takeaway"]}


@pytest.fixture
def report_data() -> dict[str, Any]:
    """A complete, valid report in wire format."""
    return {
        "companyName": "Rossi S.r.l.",
        "reportDate": "FY 2023",
        "methodology": "Income statement read from sheet 'Income Statement'.",
        "executiveSummary": "Revenue grew while margins held steady.",
        "financialHealthScore": 72,
        "healthRadar": [
            {"subject": "Profitability", "score": 70, "scaleMax": 100},
            {"subject": "Liquidity", "score": 65, "scaleMax": 100},
            {"subject": "Solvency", "score": 80, "scaleMax": 100},
            {"subject": "Efficiency", "score": 60, "scaleMax": 100},
            {"subject": "Growth", "score": 75, "scaleMax": 100},
        ],
        "kpis": [
            {"label": "Revenue", "value": 1200000, "unit": "EUR", "trend": "up", "color": "green", "insight": "+9% YoY"},
            {"label": "EBITDA margin", "value": "18%", "trend": "neutral", "color": "blue", "insight": "Stable"},
        ],
        "historicalData": [
            {"period": "2022", "revenue": 1100000, "profit": 90000, "costs": 1010000, "ebitdaMarginPercent": 17.5, "cashFlow": 120000},
            {"period": "2023", "revenue": 1200000, "profit": 110000, "costs": 1090000, "ebitdaMarginPercent": 18.0, "cashFlow": 140000},
        ],
        "swotAnalysis": {
            "strengths": ["Loyal customers"],
            "weaknesses": ["Customer concentration"],
            "opportunities": ["Export"],
            "threats": ["Rising energy costs"],
        },
        "profitabilityAnalysis": _section("Profitability"),
        "liquidityAnalysis": _section("Liquidity"),
        "growthAnalysis": _section("Growth"),
        "strategicInsights": ["Margins are resilient."],
        "recommendations": ["Diversify the customer base."],
    }


@pytest.fixture
def report_json(report_data) -> str:
    return json.dumps(report_data)


class FakeInvoker:
    """Stands in for AnalysisInvoker: records requests and replays queued responses."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def invoke(self, request, contract, api_key=None, request_id=None) -> str:
        self.calls.append({"request": request, "contract": contract, "api_key": api_key})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


def chat_completion(content: str | None) -> SimpleNamespace:
    """Minimal object shaped like an OpenAI chat completion response."""
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])


@pytest.fixture
def make_invoker():
    return FakeInvoker


@pytest.fixture
def make_completion():
    return chat_completion
