"""Exceptions raised while following a report job."""

from __future__ import annotations


class ReportSyncError(RuntimeError):
    """Base class for reportsync errors."""


class TransportError(ReportSyncError):
    """Raised when the reports API cannot be reached or answers with an error.

    ``detail`` holds the server-supplied explanation when the error body carried one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class MalformedResultError(ReportSyncError, ValueError):
    """Raised when a completed report carries results that do not match the success shape."""
