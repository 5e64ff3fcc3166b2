"""Domain port definitions for adapters."""

from __future__ import annotations

from .reports import FeedbackSender, ReportFetcher, TaskStatusFetcher

__all__ = ["FeedbackSender", "ReportFetcher", "TaskStatusFetcher"]
