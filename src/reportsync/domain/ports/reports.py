"""Ports for reading reports and task status from the reports backend."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from reportsync.domain.model import Report, ReportId, TaskStatus


@runtime_checkable
class ReportFetcher(Protocol):
    """Read the persisted report record by identifier."""

    async def fetch_report(self, report_id: ReportId) -> Report:
        ...


@runtime_checkable
class TaskStatusFetcher(Protocol):
    """Read the current status of the background job behind a report."""

    async def fetch_task_status(self, task_id: str) -> TaskStatus:
        ...


@runtime_checkable
class FeedbackSender(Protocol):
    """Send a rating for a finished report."""

    async def submit_feedback(self, report_id: ReportId, *, rating: int, comment: str) -> None:
        ...


__all__ = ["FeedbackSender", "ReportFetcher", "TaskStatusFetcher"]
