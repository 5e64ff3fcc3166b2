"""Public interface for the reports API adapter."""

from __future__ import annotations

from .client import ReportResourceClient, TaskStatusClient
from .schema import AnalysisRequest, ApiErrorBody, FeedbackRequest

__all__ = [
    "AnalysisRequest",
    "ApiErrorBody",
    "FeedbackRequest",
    "ReportResourceClient",
    "TaskStatusClient",
]
