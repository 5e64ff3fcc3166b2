from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from reportsync.domain.reconciliation import (
    FEEDBACK_FAILED,
    FEEDBACK_NOT_AVAILABLE,
    GENERIC_JOB_FAILURE,
    GENERIC_LOAD_FAILURE,
    Completed,
    ErrorInfo,
    ErrorKind,
    Failed,
    Loading,
    Polling,
    ReportReconciliationEngine,
)
from tests.support.reports import (
    SUCCESS_RESULTS,
    FakeFeedbackSender,
    FakeReportFetcher,
    FakeTaskStatusFetcher,
    make_report,
    make_task_status,
    transport_error,
)

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from reportsync.domain.reconciliation import EngineSnapshot


def _run[T](coro: Coroutine[object, object, T]) -> T:
    return asyncio.run(coro)


def _engine(
    reports: FakeReportFetcher,
    tasks: FakeTaskStatusFetcher | None = None,
    *,
    feedback: FakeFeedbackSender | None = None,
    interval: float = 60.0,
) -> ReportReconciliationEngine:
    return ReportReconciliationEngine(
        reports=reports,
        tasks=tasks or FakeTaskStatusFetcher(make_task_status()),
        feedback=feedback or FakeFeedbackSender(),
        poll_interval=interval,
    )


def _timer_tasks() -> list[asyncio.Task[object]]:
    return [
        task
        for task in asyncio.all_tasks()
        if task.get_name().startswith("report-") and not task.done()
    ]


async def _drain() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def test_running_report_polls_until_report_completes() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "COMPLETED", results=SUCCESS_RESULTS),
    )
    tasks = FakeTaskStatusFetcher(
        make_task_status("STARTED", progress=40, stage="analysis"),
        make_task_status("SUCCESS", progress=100),
    )
    engine = _engine(reports, tasks)
    phases: list[object] = []
    engine.add_listener(lambda snapshot: phases.append(snapshot.phase))

    async def scenario() -> None:
        await engine.open(42)
        assert engine.snapshot.phase == Polling("t1")
        assert engine.timer_armed

        await engine.poll_once("t1")
        snapshot = engine.snapshot
        assert snapshot.task_status is not None
        assert snapshot.task_status.progress_percentage == 40
        assert snapshot.task_status.stage == "analysis"
        assert snapshot.phase == Polling("t1")
        assert engine.timer_armed

        await engine.poll_once("t1")
        snapshot = engine.snapshot
        assert snapshot.phase == Completed()
        assert snapshot.task_status is None
        assert snapshot.last_error is None
        assert not engine.timer_armed
        await _drain()
        assert _timer_tasks() == []

    _run(scenario())

    assert reports.calls == [42, 42]
    assert tasks.calls == ["t1", "t1"]
    assert phases == [
        Loading(),
        Polling("t1"),
        Polling("t1"),
        Loading(),
        Completed(),
    ]


def test_failed_report_surfaces_structured_error() -> None:
    reports = FakeReportFetcher(make_report(7, "FAILED", results={"error": "db unreachable"}))
    engine = _engine(reports)

    snapshot = _run(engine.open(7))

    assert isinstance(snapshot.phase, Failed)
    assert snapshot.last_error is not None
    assert snapshot.last_error.message == "db unreachable"
    assert snapshot.last_error.kind is ErrorKind.JOB_FAILURE
    assert not engine.timer_armed


def test_failed_report_keeps_error_details() -> None:
    reports = FakeReportFetcher(
        make_report(
            7,
            "FAILED",
            results={"error": "db unreachable", "details": "timeout after 30s"},
        )
    )
    engine = _engine(reports)

    snapshot = _run(engine.open(7))

    assert snapshot.phase == Failed(
        ErrorInfo(ErrorKind.JOB_FAILURE, "db unreachable", "timeout after 30s")
    )


def test_failed_report_without_error_payload_uses_generic_message() -> None:
    engine = _engine(FakeReportFetcher(make_report(7, "FAILED")))

    snapshot = _run(engine.open(7))

    assert snapshot.last_error == ErrorInfo(ErrorKind.JOB_FAILURE, GENERIC_JOB_FAILURE)


def test_transport_failure_on_open_settles_failed_without_timer() -> None:
    engine = _engine(FakeReportFetcher(transport_error()))

    snapshot = _run(engine.open(9))

    assert snapshot.phase == Failed(ErrorInfo(ErrorKind.TRANSPORT, GENERIC_LOAD_FAILURE))
    assert snapshot.last_error is not None
    assert snapshot.last_error.message == GENERIC_LOAD_FAILURE
    assert not engine.timer_armed


def test_transport_failure_prefers_server_detail() -> None:
    engine = _engine(FakeReportFetcher(transport_error("Report not found", status_code=404)))

    snapshot = _run(engine.open(9))

    assert snapshot.last_error == ErrorInfo(ErrorKind.TRANSPORT, "Report not found")


def test_failed_status_tick_keeps_polling() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    tasks = FakeTaskStatusFetcher(transport_error())
    engine = _engine(reports, tasks)

    async def scenario() -> EngineSnapshot:
        await engine.open(42)
        await engine.poll_once("t1")
        assert engine.timer_armed
        snapshot = engine.snapshot
        engine.close()
        return snapshot

    snapshot = _run(scenario())

    assert snapshot.phase == Polling("t1")
    assert snapshot.last_error is None
    assert reports.calls == [42]


def test_feedback_is_rejected_while_polling() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    feedback = FakeFeedbackSender()
    engine = _engine(reports, feedback=feedback)

    async def scenario() -> None:
        await engine.open(42)
        before = engine.snapshot
        result = await engine.submit_feedback(42, 5, "great")
        assert not result.accepted
        assert result.notice == FEEDBACK_NOT_AVAILABLE
        assert engine.snapshot == before
        engine.close()

    _run(scenario())

    assert feedback.sent == []


def test_feedback_is_sent_once_completed() -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS))
    feedback = FakeFeedbackSender()
    engine = _engine(reports, feedback=feedback)

    async def scenario() -> None:
        await engine.open(42)
        first = await engine.submit_feedback(42, 4, "useful")
        second = await engine.submit_feedback(42, 2)
        assert first.accepted
        assert second.accepted

    _run(scenario())

    # no deduplication: every call is a separate entry
    assert feedback.sent == [(42, 4, "useful"), (42, 2, "")]


def test_feedback_failure_reports_notice_without_touching_state() -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS))
    feedback = FakeFeedbackSender(error=transport_error())
    engine = _engine(reports, feedback=feedback)

    async def scenario() -> None:
        await engine.open(42)
        before = engine.snapshot
        result = await engine.submit_feedback(42, 5)
        assert not result.accepted
        assert result.notice == FEEDBACK_FAILED
        assert engine.snapshot == before

    _run(scenario())


def test_feedback_for_another_report_is_rejected() -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS))
    feedback = FakeFeedbackSender()
    engine = _engine(reports, feedback=feedback)

    async def scenario() -> None:
        await engine.open(42)
        result = await engine.submit_feedback(43, 5)
        assert not result.accepted

    _run(scenario())

    assert feedback.sent == []


@pytest.mark.parametrize("rating", [0, 6, True, 3.5])
def test_feedback_rating_must_be_between_one_and_five(rating: object) -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS))
    engine = _engine(reports)

    async def scenario() -> None:
        await engine.open(42)
        await engine.submit_feedback(42, rating, "")  # type: ignore[arg-type]

    with pytest.raises(ValueError, match="Rating"):
        _run(scenario())


def test_reopening_the_same_report_does_not_arm_a_second_timer() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    engine = _engine(reports)

    async def scenario() -> int:
        await engine.open(42)
        await engine.open(42)
        await _drain()
        count = len(_timer_tasks())
        engine.close()
        return count

    assert _run(scenario()) == 1


def test_close_is_idempotent_and_releases_the_timer() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    engine = _engine(reports)

    async def scenario() -> None:
        engine.close()
        await engine.open(42)
        assert engine.timer_armed
        engine.close()
        engine.close()
        assert not engine.timer_armed
        await _drain()
        assert _timer_tasks() == []
        assert engine.snapshot.phase == Polling("t1")

    _run(scenario())


def test_close_without_running_loop_is_safe() -> None:
    engine = _engine(FakeReportFetcher(make_report(42, "RUNNING", task_id="t1")))
    _run(engine.open(42))

    engine.close()
    engine.close()

    assert not engine.timer_armed


def test_completed_report_never_arms_a_timer() -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS, task_id="t1"))
    engine = _engine(reports)

    async def scenario() -> None:
        await engine.open(42)
        assert not engine.timer_armed
        assert _timer_tasks() == []

    _run(scenario())

    assert engine.snapshot.phase == Completed()


def test_repeated_non_terminal_ticks_only_update_progress() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    tasks = FakeTaskStatusFetcher(
        make_task_status("STARTED", progress=10),
        make_task_status("STARTED", progress=10),
        make_task_status("STARTED", progress=25, current_question="Top customers?"),
    )
    engine = _engine(reports, tasks)

    async def scenario() -> list[EngineSnapshot]:
        await engine.open(42)
        seen = []
        for _ in range(3):
            await engine.poll_once("t1")
            seen.append(engine.snapshot)
        engine.close()
        return seen

    snapshots = _run(scenario())

    assert {snapshot.phase for snapshot in snapshots} == {Polling("t1")}
    assert snapshots[-1].task_status is not None
    assert snapshots[-1].task_status.progress_percentage == 25
    assert snapshots[-1].task_status.current_question == "Top customers?"
    assert reports.calls == [42]


def test_failed_re_read_after_terminal_tick_settles_failed() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"), transport_error())
    tasks = FakeTaskStatusFetcher(make_task_status("FAILURE"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        await engine.poll_once("t1")

    _run(scenario())

    assert engine.snapshot.phase == Failed(ErrorInfo(ErrorKind.TRANSPORT, GENERIC_LOAD_FAILURE))
    assert not engine.timer_armed


def test_failure_tick_trusts_the_report_resource() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "FAILED", results={"error": "query planner crashed"}),
    )
    tasks = FakeTaskStatusFetcher(make_task_status("FAILURE", progress=60, stage="sql"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        await engine.poll_once("t1")

    _run(scenario())

    snapshot = engine.snapshot
    assert snapshot.phase == Failed(ErrorInfo(ErrorKind.JOB_FAILURE, "query planner crashed"))
    # progress of the failed job stays visible
    assert snapshot.task_status is not None
    assert snapshot.task_status.stage == "sql"


def test_non_terminal_report_after_terminal_tick_resumes_polling() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "RUNNING", task_id="t1"),
    )
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        await engine.poll_once("t1")
        assert engine.snapshot.phase == Polling("t1")
        assert engine.timer_armed
        await _drain()
        assert len(_timer_tasks()) == 1
        engine.close()

    _run(scenario())


def test_non_terminal_report_without_task_stalls() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "PENDING"),
    )
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        await engine.poll_once("t1")

    _run(scenario())

    assert engine.snapshot.phase == Polling(None)
    assert not engine.timer_armed


def test_new_task_id_replaces_the_timer() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "RUNNING", task_id="t2"),
    )
    engine = _engine(reports)

    async def scenario() -> list[str]:
        await engine.open(42)
        await engine.open(42)
        await _drain()
        names = [task.get_name() for task in _timer_tasks()]
        engine.close()
        return names

    assert _run(scenario()) == ["report-42-task-t2"]
    assert engine.snapshot.phase == Polling("t2")


def test_settled_engine_ignores_status_polls() -> None:
    reports = FakeReportFetcher(make_report(42, "COMPLETED", results=SUCCESS_RESULTS))
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        await engine.poll_once("t1")

    _run(scenario())

    assert tasks.calls == []
    assert reports.calls == [42]
    assert engine.snapshot.phase == Completed()


def test_overlapping_poll_is_skipped() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    tasks = FakeTaskStatusFetcher(make_task_status("STARTED", progress=5))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        gate = tasks.hold()
        first = asyncio.create_task(engine.poll_once("t1"))
        await asyncio.sleep(0)
        await engine.poll_once("t1")
        assert tasks.calls == ["t1"]
        gate.set()
        await first
        engine.close()

    _run(scenario())

    assert engine.snapshot.task_status is not None
    assert engine.snapshot.task_status.progress_percentage == 5


def test_report_read_after_close_is_discarded() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    engine = _engine(reports)

    async def scenario() -> None:
        gate = reports.hold()
        opening = asyncio.create_task(engine.open(42))
        await asyncio.sleep(0)
        engine.close()
        gate.set()
        await opening

    _run(scenario())

    snapshot = engine.snapshot
    assert snapshot.phase == Loading()
    assert snapshot.report is None
    assert not engine.timer_armed


def test_status_read_after_close_is_discarded() -> None:
    reports = FakeReportFetcher(make_report(42, "RUNNING", task_id="t1"))
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        gate = tasks.hold()
        polling = asyncio.create_task(engine.poll_once("t1"))
        await asyncio.sleep(0)
        engine.close()
        gate.set()
        await polling

    _run(scenario())

    assert engine.snapshot.task_status is None
    assert engine.snapshot.phase == Polling("t1")
    assert reports.calls == [42]


def test_switching_reports_discards_the_earlier_read() -> None:
    reports = FakeReportFetcher(
        make_report(1, "RUNNING", task_id="t1"),
        make_report(2, "COMPLETED", results=SUCCESS_RESULTS),
    )
    engine = _engine(reports)

    async def scenario() -> None:
        gate = reports.hold()
        first = asyncio.create_task(engine.open(1))
        await asyncio.sleep(0)
        second = asyncio.create_task(engine.open(2))
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(first, second)
        await _drain()
        assert _timer_tasks() == []

    _run(scenario())

    snapshot = engine.snapshot
    assert snapshot.report_id == 2
    assert snapshot.phase == Completed()
    assert not engine.timer_armed


def test_slow_open_read_does_not_undo_a_terminal_tick() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "COMPLETED", results=SUCCESS_RESULTS),
    )
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    async def scenario() -> None:
        await engine.open(42)
        gate = reports.hold_next()
        reopening = asyncio.create_task(engine.open(42))
        await asyncio.sleep(0)
        await engine.poll_once("t1")
        assert engine.snapshot.phase == Completed()
        gate.set()
        await reopening
        await _drain()
        assert _timer_tasks() == []

    _run(scenario())

    assert engine.snapshot.phase == Completed()
    assert engine.snapshot.report is not None
    assert engine.snapshot.report.status == "COMPLETED"
    assert not engine.timer_armed
    assert reports.calls == [42, 42, 42]


def test_failing_listener_does_not_block_the_re_read() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "COMPLETED", results=SUCCESS_RESULTS),
    )
    tasks = FakeTaskStatusFetcher(make_task_status("SUCCESS"))
    engine = _engine(reports, tasks)

    def fragile(snapshot: EngineSnapshot) -> None:
        if isinstance(snapshot.phase, Loading):
            raise RuntimeError("listener broke")

    async def scenario() -> None:
        await engine.open(42)
        engine.add_listener(fragile)
        with pytest.raises(RuntimeError, match="listener broke"):
            await engine.poll_once("t1")

    _run(scenario())

    assert engine.snapshot.phase == Completed()
    assert not engine.timer_armed
    assert reports.calls == [42, 42]


def test_switching_reports_releases_the_previous_timer() -> None:
    reports = FakeReportFetcher(
        make_report(1, "RUNNING", task_id="t1"),
        make_report(2, "RUNNING", task_id="t9"),
    )
    engine = _engine(reports)

    async def scenario() -> list[str]:
        await engine.open(1)
        await engine.open(2)
        await _drain()
        names = [task.get_name() for task in _timer_tasks()]
        engine.close()
        return names

    assert _run(scenario()) == ["report-2-task-t9"]


def test_timer_drives_the_engine_to_completion() -> None:
    reports = FakeReportFetcher(
        make_report(42, "RUNNING", task_id="t1"),
        make_report(42, "COMPLETED", results=SUCCESS_RESULTS),
    )
    tasks = FakeTaskStatusFetcher(
        make_task_status("PENDING"),
        make_task_status("STARTED", progress=50),
        make_task_status("SUCCESS", progress=100),
    )
    engine = _engine(reports, tasks, interval=0.01)

    async def scenario() -> None:
        settled = asyncio.Event()
        engine.add_listener(lambda snapshot: settled.set() if snapshot.settled else None)
        async with engine:
            await engine.open(42)
            await asyncio.wait_for(settled.wait(), timeout=2)
        await _drain()
        assert _timer_tasks() == []

    _run(scenario())

    assert engine.snapshot.phase == Completed()
    assert tasks.calls == ["t1", "t1", "t1"]
    assert reports.calls == [42, 42]


def test_blank_report_id_is_rejected() -> None:
    engine = _engine(FakeReportFetcher(make_report()))

    with pytest.raises(ValueError, match="blank"):
        _run(engine.open("  "))


def test_poll_interval_must_be_positive() -> None:
    with pytest.raises(ValueError, match="positive"):
        _engine(FakeReportFetcher(make_report()), interval=0)
