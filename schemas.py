## ─────────────────────────────────────────────────────────────────────────────
## schemas.py  —  Pydantic v2 schemas for the analysis contract and the API
## ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every wire model: snake_case in Python, camelCase in JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes come back from TIMESTAMP WITHOUT TIME ZONE columns; all are stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Analysis value objects ────────────────────────────────────────────────────

class Metric(CamelModel):
    """One extracted biomarker. `value` stays a string to keep the document's formatting."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str
    value: str
    unit: str = ""
    status: Literal["excellent", "good", "attention", "critical"]
    normal_range: str = ""
    category: str = "General"

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        return _lower(value)


class Insight(CamelModel):
    category: str
    title: str
    description: str
    severity: Literal["low", "medium", "high"]

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        return _lower(value)


class Recommendation(CamelModel):
    category: Literal["diet", "exercise", "sleep", "stress", "general"]
    title: str
    actions: list[str] = Field(default_factory=list)
    priority: Literal["low", "medium", "high"]

    @field_validator("category", "priority", mode="before")
    @classmethod
    def _normalize_enums(cls, value):
        return _lower(value)


class AnalysisPayload(CamelModel):
    """The structured result the AI model must return, and what gets persisted."""
    life_score: int = Field(ge=0, le=100)
    metrics: list[Metric]
    insights: list[Insight] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    summary: str

    @field_validator("life_score", mode="before")
    @classmethod
    def _round_score(cls, value):
        if isinstance(value, float):
            return round(value)
        return value

    def to_columns(self) -> dict:
        """Column values for a HealthAnalysis row; JSON columns keep the camelCase shape."""
        return {
            "life_score": self.life_score,
            "metrics": [m.model_dump(by_alias=True) for m in self.metrics],
            "insights": [i.model_dump(by_alias=True) for i in self.insights],
            "recommendations": [r.model_dump(by_alias=True) for r in self.recommendations],
            "summary": self.summary,
        }


# ── Report / analysis responses ───────────────────────────────────────────────

class AnalysisResponse(CamelModel):
    id: str
    report_id: str
    life_score: int
    analysis_date: datetime
    metrics: list[Metric]
    insights: list[Insight]
    recommendations: list[Recommendation]
    summary: str

    @field_validator("analysis_date")
    @classmethod
    def _utc_analysis_date(cls, value):
        return _as_utc(value)


class ReportResponse(CamelModel):
    """A report joined with its analysis; `analysis` is null while analysis is in progress."""
    id: str
    file_name: str
    file_type: str
    file_path: str
    uploaded_at: datetime
    analysis: Optional[AnalysisResponse] = None

    @field_validator("uploaded_at")
    @classmethod
    def _utc_uploaded_at(cls, value):
        return _as_utc(value)


class UploadResponse(CamelModel):
    """Returned immediately when an upload is accepted."""
    report_id: str
    message: str


class DashboardResponse(CamelModel):
    total_reports: int
    analyzed_reports: int
    latest_report: Optional[ReportResponse] = None


# ── Health checks ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    database: str
    redis: str
