"""Reconcile a report's task status feed with the report resource.

The engine follows exactly one report at a time. It reads the report, and while the
job is outstanding polls the task status on a fixed interval. A terminal task status
does not carry the result: it only tells the engine to read the report again, which
remains the single source of truth for the outcome.

Every asynchronous step remembers the generation it started in. ``open`` and
``close`` bump the generation, so responses that arrive for an earlier binding are
dropped instead of overwriting the current view. Report reads are also numbered:
a read that returns after a later read was applied is dropped, so a slow ``open``
cannot undo the outcome of a terminal tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING

from reportsync.config.reports import DEFAULT_POLL_INTERVAL_SECONDS
from reportsync.domain.errors import TransportError
from reportsync.domain.model import ReportStatus, same_report

from .phases import (
    Completed,
    EngineSnapshot,
    ErrorInfo,
    ErrorKind,
    Failed,
    Loading,
    Polling,
    Settled,
)
from .timer import PollingTimer

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from reportsync.domain.model import Report, ReportId, TaskStatus
    from reportsync.domain.ports import FeedbackSender, ReportFetcher, TaskStatusFetcher

    from .phases import Phase

    SnapshotListener = Callable[[EngineSnapshot], None]

log = getLogger(__name__)

GENERIC_LOAD_FAILURE = "Failed to load the report."
GENERIC_JOB_FAILURE = "Report generation failed."
FEEDBACK_NOT_AVAILABLE = "Feedback can only be left for a completed report."
FEEDBACK_FAILED = "Could not send feedback, please try again later."


@dataclass(frozen=True, slots=True)
class FeedbackResult:
    accepted: bool
    notice: str | None = None


class ReportReconciliationEngine:
    """Converge on the latest state of one report and poll only while needed."""

    def __init__(
        self,
        *,
        reports: ReportFetcher,
        tasks: TaskStatusFetcher,
        feedback: FeedbackSender,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {poll_interval}")
        self._reports = reports
        self._tasks = tasks
        self._feedback = feedback
        self.poll_interval = poll_interval

        self._report_id: ReportId | None = None
        self._report: Report | None = None
        self._task_status: TaskStatus | None = None
        self._phase: Phase = Loading()
        self._last_error: ErrorInfo | None = None

        self._timer: PollingTimer | None = None
        self._timer_task_id: str | None = None
        self._generation = 0
        self._reads_issued = 0
        self._newest_read_applied = 0
        self._poll_in_flight = False
        self._listeners: list[SnapshotListener] = []

    @property
    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            report_id=self._report_id,
            report=self._report,
            task_status=self._task_status,
            phase=self._phase,
            last_error=self._last_error,
        )

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and self._timer.armed

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        self._listeners.remove(listener)

    async def __aenter__(self) -> ReportReconciliationEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    async def open(self, report_id: ReportId) -> EngineSnapshot:
        """Bind the engine to ``report_id`` and read the report immediately."""

        if isinstance(report_id, str) and not report_id.strip():
            raise ValueError("Report id must not be blank")
        if self._report_id is not None and not same_report(self._report_id, report_id):
            log.info(f"Switching from report {self._report_id} to report {report_id}")
            self.close()
            self._report = None
            self._task_status = None

        self._report_id = report_id
        self._generation += 1
        self._last_error = None
        self._set_phase(Loading())
        await self._refresh_report(self._generation)
        return self.snapshot

    async def poll_once(self, task_id: str) -> None:
        """Read the task status once and re-read the report when the task has finished."""

        if self._poll_in_flight:
            log.debug(f"Skipping status poll for task {task_id}: previous poll still running")
            return
        if self._report_id is None or isinstance(self._phase, Settled):
            log.debug(f"Ignoring status poll for task {task_id}: nothing to follow")
            return

        generation = self._generation
        self._poll_in_flight = True
        try:
            try:
                status = await self._tasks.fetch_task_status(task_id)
            except TransportError as exc:
                log.warning(f"Status poll for task {task_id} failed, will retry: {exc}")
                return

            if self._is_stale(generation):
                log.debug(f"Discarding status of task {task_id} for a closed binding")
                return

            self._task_status = status
            if not status.status.is_terminal:
                self._notify()
                return

            log.info(
                f"Task {task_id} finished with {status.status}, "
                f"re-reading report {self._report_id}"
            )
            self._stop_timer()
            try:
                self._set_phase(Loading())
            finally:
                # the re-read is issued even when a listener raises
                await self._refresh_report(generation)
        finally:
            self._poll_in_flight = False

    def close(self) -> None:
        """Release the polling timer and drop any response still in flight.

        Safe to call any number of times. The phase is left as it is.
        """

        self._generation += 1
        self._stop_timer()

    async def submit_feedback(
        self,
        report_id: ReportId,
        rating: int,
        comment: str = "",
    ) -> FeedbackResult:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError(f"Rating must be an integer between 1 and 5, got {rating!r}")
        if not isinstance(self._phase, Completed) or not same_report(report_id, self._report_id):
            log.warning(f"Not sending feedback for report {report_id}: report is not completed")
            return FeedbackResult(accepted=False, notice=FEEDBACK_NOT_AVAILABLE)

        try:
            await self._feedback.submit_feedback(report_id, rating=rating, comment=comment)
        except TransportError as exc:
            log.warning(f"Feedback for report {report_id} failed: {exc}")
            return FeedbackResult(accepted=False, notice=exc.detail or FEEDBACK_FAILED)

        log.info(f"Feedback for report {report_id} sent (rating={rating})")
        return FeedbackResult(accepted=True)

    async def _refresh_report(self, generation: int) -> None:
        report_id = self._report_id
        if report_id is None:
            return
        self._reads_issued += 1
        read = self._reads_issued
        try:
            report = await self._reports.fetch_report(report_id)
        except TransportError as exc:
            if self._is_stale(generation) or self._is_superseded(read):
                log.debug(f"Discarding failed read of report {report_id}: no longer current")
                return
            self._newest_read_applied = read
            log.error(f"Reading report {report_id} failed: {exc}")
            self._fail(ErrorInfo(ErrorKind.TRANSPORT, exc.detail or GENERIC_LOAD_FAILURE))
            return

        if self._is_stale(generation):
            log.debug(f"Discarding report {report_id} read for a closed binding")
            return
        if self._is_superseded(read):
            log.debug(f"Discarding report {report_id} read overtaken by a newer read")
            return
        self._newest_read_applied = read
        self._apply_report(report)

    def _apply_report(self, report: Report) -> None:
        self._report = report

        if report.status is ReportStatus.COMPLETED:
            self._stop_timer()
            self._task_status = None
            self._last_error = None
            log.info(f"Report {report.id} completed")
            self._set_phase(Completed())
            return

        if report.status is ReportStatus.FAILED:
            error = report.error_results()
            if error is not None:
                info = ErrorInfo(ErrorKind.JOB_FAILURE, error.error, error.details)
            else:
                info = ErrorInfo(ErrorKind.JOB_FAILURE, GENERIC_JOB_FAILURE)
            self._fail(info)
            return

        task_id = report.task_id
        if task_id is not None and self._timer_task_id not in (None, task_id):
            log.info(f"Report {report.id} moved from task {self._timer_task_id} to {task_id}")
            self._stop_timer()
        if task_id is not None and not self.timer_armed:
            self._arm_timer(task_id)
        elif task_id is None and not self.timer_armed:
            log.warning(
                f"Report {report.id} is {report.status} without a task to follow; "
                "waiting for a new open"
            )
        self._set_phase(Polling(task_id or self._timer_task_id))

    def _fail(self, error: ErrorInfo) -> None:
        self._stop_timer()
        self._last_error = error
        log.info(f"Report {self._report_id} failed: {error}")
        self._set_phase(Failed(error))

    def _arm_timer(self, task_id: str) -> None:
        self._timer = PollingTimer(
            self.poll_interval,
            partial(self.poll_once, task_id),
            name=f"report-{self._report_id}-task-{task_id}",
        )
        self._timer_task_id = task_id
        self._timer.start()
        log.debug(f"Polling task {task_id} every {self.poll_interval}s")

    def _stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        self._timer_task_id = None
        if timer is not None:
            timer.cancel()

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _is_superseded(self, read: int) -> bool:
        return read < self._newest_read_applied

    def _set_phase(self, phase: Phase) -> None:
        self._phase = phase
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot
        for listener in tuple(self._listeners):
            listener(snapshot)
