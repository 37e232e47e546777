from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Literal

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import create_model
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RadarPoint(BaseModel):
    """One of the five scored dimensions of the health radar."""

    model_config = _WIRE_CONFIG

    subject: str = Field(description="Dimension name in the target language (e.g. Profitability, Liquidity).")
    score: float = Field(ge=0, le=100, description="Value 0-100.")
    scale_max: float = Field(default=100, ge=100, le=100, description="Always 100.")


class KPI(BaseModel):
    model_config = _WIRE_CONFIG

    label: str = Field(description="KPI name in the target language.")
    value: str | float
    unit: str | None = None
    trend: Literal["up", "down", "neutral"]
    color: Literal["green", "red", "blue", "yellow"]
    insight: str = Field(description="Brief insight in the target language.")


class HistoricalPoint(BaseModel):
    model_config = _WIRE_CONFIG

    period: str
    revenue: float
    profit: float
    costs: float
    ebitda_margin_percent: float = Field(description="Percentage (0-100).")
    cash_flow: float


class SWOT(BaseModel):
    model_config = _WIRE_CONFIG

    strengths: list[str]
    weaknesses: list[str]
    opportunities: list[str]
    threats: list[str]


class AnalysisSection(BaseModel):
    model_config = _WIRE_CONFIG

    title: str
    content: str = Field(description="Long and detailed analysis (at least 150 words).")
    key_takeaways: list[str] | None = None


class ChartSeries(BaseModel):
    model_config = _WIRE_CONFIG

    key: str
    color: str
    name: str


class DynamicChart(BaseModel):
    """Chart description embedded in a user-added report section."""

    model_config = _WIRE_CONFIG

    title: str
    chart_type: Literal["bar", "line", "area", "composed"] = Field(alias="type")
    data: list[dict[str, Any]]
    x_axis_key: str
    data_keys: list[ChartSeries]


class CustomReportSection(BaseModel):
    model_config = _WIRE_CONFIG

    id: str
    title: str
    content: str
    chart: DynamicChart | None = None


class Report(BaseModel):
    """The structured financial analysis held by a session."""

    model_config = _WIRE_CONFIG

    company_name: str = Field(min_length=1, description="The exact legal entity name found in the documents.")
    report_date: str | None = Field(default=None, description="Reference date (e.g. 'FY 2023').")
    methodology: str | None = Field(default=None, description="Brief note on how the data was read and interpreted.")
    executive_summary: str = Field(description="Very detailed discursive analysis (at least 200 words).")
    financial_health_score: float = Field(ge=0, le=100, description="General score 0-100.")

    health_radar: list[RadarPoint] = Field(min_length=5, max_length=5, description="Exactly 5 dimensions for the radar chart.")
    kpis: list[KPI]
    historical_data: list[HistoricalPoint]

    swot_analysis: SWOT
    profitability_analysis: AnalysisSection
    liquidity_analysis: AnalysisSection
    growth_analysis: AnalysisSection

    strategic_insights: list[str]
    recommendations: list[str]

    custom_sections: list[CustomReportSection] | None = None


# Same fields as Report, all optional; derived so the two never drift apart.
ReportPatch = create_model(
    "ReportPatch",
    __config__=_WIRE_CONFIG,
    **{
        name: (info.annotation | None, Field(default=None, description=info.description))
        for name, info in Report.model_fields.items()
    },
)


class PatchResult(BaseModel):
    """Outcome of a conversational edit: an answer and optionally the changed fields."""

    model_config = ConfigDict(populate_by_name=True)

    answer: str
    updated_fields: ReportPatch | None = Field(  # type: ignore[valid-type]
        default=None,
        validation_alias=AliasChoices("updatedAnalysis", "updatedFields", "updated_fields"),
        serialization_alias="updatedAnalysis",
    )

    def changed_fields(self) -> dict[str, Any]:
        """Wire-keyed dict of the fields the generator actually returned."""
        if self.updated_fields is None:
            return {}
        return self.updated_fields.model_dump(by_alias=True, include=self.updated_fields.model_fields_set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
