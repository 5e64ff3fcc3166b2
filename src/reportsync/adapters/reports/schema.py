"""Request and error envelopes of the reports HTTP API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import cast

from pydantic import BaseModel, ConfigDict, Field


class ReportsApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FeedbackRequest(ReportsApiModel):
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class AnalysisRequest(ReportsApiModel):
    connection_string: str = Field(alias="connectionString", min_length=1)
    db_type: str = Field(alias="dbType")
    alias: str = ""

    def form_fields(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class ApiErrorBody(ReportsApiModel):
    """FastAPI-style error body: ``detail`` is a message or a list of validation errors."""

    detail: str | list[object] | dict[str, object] | None = None

    def message(self) -> str | None:
        detail = self.detail
        if isinstance(detail, str):
            return detail.strip() or None
        if isinstance(detail, list):
            messages: list[str] = []
            for item in detail:
                if isinstance(item, Mapping):
                    msg = cast(Mapping[str, object], item).get("msg")
                    if isinstance(msg, str):
                        messages.append(msg)
                elif isinstance(item, str):
                    messages.append(item)
            return "; ".join(messages) or None
        if isinstance(detail, dict):
            msg = detail.get("message") or detail.get("error")
            return msg if isinstance(msg, str) else None
        return None
