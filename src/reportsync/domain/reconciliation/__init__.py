"""Report/task reconciliation: the engine, its phases and its timer."""

from __future__ import annotations

from .engine import (
    FEEDBACK_FAILED,
    FEEDBACK_NOT_AVAILABLE,
    GENERIC_JOB_FAILURE,
    GENERIC_LOAD_FAILURE,
    FeedbackResult,
    ReportReconciliationEngine,
)
from .phases import (
    Completed,
    EngineSnapshot,
    ErrorInfo,
    ErrorKind,
    Failed,
    Loading,
    Phase,
    Polling,
    Settled,
)
from .timer import PollingTimer

__all__ = [
    "FEEDBACK_FAILED",
    "FEEDBACK_NOT_AVAILABLE",
    "GENERIC_JOB_FAILURE",
    "GENERIC_LOAD_FAILURE",
    "Completed",
    "EngineSnapshot",
    "ErrorInfo",
    "ErrorKind",
    "Failed",
    "FeedbackResult",
    "Loading",
    "Phase",
    "Polling",
    "PollingTimer",
    "ReportReconciliationEngine",
    "Settled",
]
