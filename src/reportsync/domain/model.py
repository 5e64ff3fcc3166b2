"""Records exchanged with the reports backend.

The backend speaks snake_case, older deployments camelCase; both spellings are
accepted through the camel-case alias generator with ``populate_by_name``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime  # noqa: TC003
from enum import StrEnum
from typing import Literal, cast

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import MalformedResultError

ReportId = int | str


def same_report(left: ReportId | None, right: ReportId | None) -> bool:
    """Compare report ids the way the backend does, ignoring int/str spelling."""

    if left is None or right is None:
        return False
    return str(left) == str(right)


def _upper(value: object) -> object:
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _coerce_task_id(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _blank_to_none(value)


class ReportStatus(StrEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in {ReportStatus.COMPLETED, ReportStatus.FAILED}


class TaskState(StrEnum):
    PENDING = "PENDING"
    STARTED = "STARTED"
    RETRY = "RETRY"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    REVOKED = "REVOKED"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskState.SUCCESS, TaskState.FAILURE, TaskState.REVOKED}


class ReportsBaseModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ErrorResults(ReportsBaseModel):
    error: str
    details: str | None = None


class Finding(ReportsBaseModel):
    question: str
    summary: str
    sql_query: str | None = None
    chart_url: str | None = None


class AnalysisStats(ReportsBaseModel):
    questions_processed: int = 0
    successful_findings: int = 0


class SuccessResults(ReportsBaseModel):
    """Payload of a completed report.

    Two layouts exist: the question-driven summary (``executive_summary`` with findings
    and recommendations) and the table-level database analysis (``insights`` keyed by
    table with per-column ``correlations``). A report may carry both.
    """

    executive_summary: str | None = None
    detailed_findings: list[Finding] = Field(default_factory=list["Finding"])
    recommendations: list[str] = Field(default_factory=list)
    analysis_stats: AnalysisStats | None = None
    insights: dict[str, str] = Field(default_factory=dict)
    correlations: dict[str, dict[str, dict[str, float | None]]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_known_layout(self) -> SuccessResults:
        if self.executive_summary is None and not self.insights:
            raise ValueError("results carry neither an executive summary nor insights")
        return self


class Report(ReportsBaseModel):
    id: ReportId
    status: ReportStatus
    created_at: datetime | None = None
    results: dict[str, object] | None = None
    task_id: str | None = None
    connection_alias: str | None = None
    connection_id: int | None = None

    _normalize_status = field_validator("status", mode="before")(_upper)
    _normalize_task_id = field_validator("task_id", mode="before")(_coerce_task_id)

    @field_validator("results", mode="before")
    @classmethod
    def _empty_results_to_none(cls, value: object) -> object:
        if isinstance(value, Mapping) and not value:
            return None
        return value

    def error_results(self) -> ErrorResults | None:
        """Return the structured error when ``results`` is error shaped."""

        if self.results is None or not isinstance(self.results.get("error"), str):
            return None
        details = self.results.get("details")
        return ErrorResults(
            error=cast(str, self.results["error"]),
            details=str(details) if details is not None else None,
        )

    def success_results(self) -> SuccessResults:
        """Parse the success payload of a completed report.

        Raises ``MalformedResultError`` when the report is not completed or the payload
        does not match any known layout.
        """

        if self.status is not ReportStatus.COMPLETED:
            raise MalformedResultError(f"Report {self.id} is {self.status}, not completed")
        if self.results is None:
            raise MalformedResultError(f"Report {self.id} completed without results")
        try:
            return SuccessResults.model_validate(self.results)
        except ValidationError as exc:
            raise MalformedResultError(f"Report {self.id} has malformed results: {exc}") from exc


class DiversityReport(ReportsBaseModel):
    analyzed_tables: int = 0
    total_tables: int = 0


class TaskStatus(ReportsBaseModel):
    task_id: str | None = None
    status: TaskState
    progress_percentage: float = 0.0
    stage: str | None = None
    current_question: str | None = None
    diversity_report: DiversityReport | None = None

    _normalize_status = field_validator("status", mode="before")(_upper)
    _normalize_task_id = field_validator("task_id", mode="before")(_coerce_task_id)

    @field_validator("progress_percentage", mode="before")
    @classmethod
    def _clamp_progress(cls, value: object) -> object:
        if value is None:
            return 0.0
        if isinstance(value, int | float | str):
            try:
                number = float(value)
            except ValueError:
                return value
            return min(max(number, 0.0), 100.0)
        return value


class AnalysisStarted(ReportsBaseModel):
    report_id: ReportId = Field(validation_alias=AliasChoices("report_id", "reportId", "id"))
    task_id: str | None = None

    _normalize_task_id = field_validator("task_id", mode="before")(_coerce_task_id)


DatabaseType = Literal["postgres", "sqlserver"]
