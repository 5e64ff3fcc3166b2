"""Engine phases and the snapshot handed to hosts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reportsync.domain.model import Report, ReportId, TaskStatus


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    JOB_FAILURE = "job_failure"


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    kind: ErrorKind
    message: str
    details: str | None = None

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


@dataclass(frozen=True, slots=True)
class Loading:
    pass


@dataclass(frozen=True, slots=True)
class Polling:
    """The job is outstanding.

    ``task_id`` is ``None`` when the backend reported a running report without a task
    to follow; the engine then waits without a timer.
    """

    task_id: str | None


@dataclass(frozen=True, slots=True)
class Settled:
    pass


@dataclass(frozen=True, slots=True)
class Completed(Settled):
    pass


@dataclass(frozen=True, slots=True)
class Failed(Settled):
    error: ErrorInfo


type Phase = Loading | Polling | Completed | Failed


@dataclass(frozen=True, slots=True)
class EngineSnapshot:
    report_id: ReportId | None
    report: Report | None
    task_status: TaskStatus | None
    phase: Phase
    last_error: ErrorInfo | None

    @property
    def settled(self) -> bool:
        return isinstance(self.phase, Settled)
