"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from logging import getLogger
from typing import TYPE_CHECKING

from reportsync.adapters.reports import ReportResourceClient, TaskStatusClient
from reportsync.config import get_reports_api_config
from reportsync.domain.reconciliation import (
    FeedbackResult,
    Polling,
    ReportReconciliationEngine,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from reportsync.config import ReportsApiConfig
    from reportsync.domain.model import AnalysisStarted, DatabaseType, Report, ReportId
    from reportsync.domain.ports import ReportFetcher, TaskStatusFetcher
    from reportsync.domain.reconciliation import EngineSnapshot

    SnapshotListener = Callable[[EngineSnapshot], None]


log = getLogger(__name__)


def _is_resting(engine: ReportReconciliationEngine) -> bool:
    snapshot = engine.snapshot
    if snapshot.settled:
        return True
    # running report without a task to follow: nothing will move without a new open
    return isinstance(snapshot.phase, Polling) and not engine.timer_armed


async def follow_report(
    engine: ReportReconciliationEngine,
    report_id: ReportId,
    *,
    timeout: float | None = None,
) -> EngineSnapshot:
    """Open ``report_id`` on ``engine`` and wait until it settles or stalls.

    The engine is closed on every exit path, including timeouts and cancellation.
    """

    resting = asyncio.Event()

    def _on_change(_snapshot: EngineSnapshot) -> None:
        if _is_resting(engine):
            resting.set()

    engine.add_listener(_on_change)
    try:
        async with asyncio.timeout(timeout):
            await engine.open(report_id)
            if not _is_resting(engine):
                await resting.wait()
    finally:
        engine.close()
        engine.remove_listener(_on_change)
    return engine.snapshot


async def _watch_report_async(
    report_id: ReportId,
    *,
    config: ReportsApiConfig,
    reports: ReportFetcher | None,
    tasks: TaskStatusFetcher | None,
    on_change: SnapshotListener | None,
    timeout: float | None,
) -> EngineSnapshot:
    async with AsyncExitStack() as stack:
        report_client = await stack.enter_async_context(ReportResourceClient(config=config))
        task_client = await stack.enter_async_context(TaskStatusClient(config=config))
        engine = ReportReconciliationEngine(
            reports=reports or report_client,
            tasks=tasks or task_client,
            feedback=report_client,
            poll_interval=config.poll_interval_seconds,
        )
        if on_change is not None:
            engine.add_listener(on_change)
        return await follow_report(engine, report_id, timeout=timeout)


def watch_report(
    report_id: ReportId,
    *,
    config: ReportsApiConfig | None = None,
    reports: ReportFetcher | None = None,
    tasks: TaskStatusFetcher | None = None,
    on_change: SnapshotListener | None = None,
    timeout: float | None = None,
) -> EngineSnapshot:
    """Follow a report until it completes, fails or stalls."""

    effective_config = config or get_reports_api_config()
    log.info(
        f"Watching report {report_id} at {effective_config.base_url} "
        f"(every {effective_config.poll_interval_seconds}s)"
    )
    snapshot = asyncio.run(
        _watch_report_async(
            report_id,
            config=effective_config,
            reports=reports,
            tasks=tasks,
            on_change=on_change,
            timeout=timeout,
        )
    )
    log.info(f"Finished watching report {report_id}: phase={snapshot.phase}")
    return snapshot


async def _leave_feedback_async(
    report_id: ReportId,
    *,
    rating: int,
    comment: str,
    config: ReportsApiConfig,
) -> FeedbackResult:
    async with (
        ReportResourceClient(config=config) as report_client,
        TaskStatusClient(config=config) as task_client,
    ):
        engine = ReportReconciliationEngine(
            reports=report_client,
            tasks=task_client,
            feedback=report_client,
            poll_interval=config.poll_interval_seconds,
        )
        async with engine:
            await engine.open(report_id)
            return await engine.submit_feedback(report_id, rating, comment)


def leave_feedback(
    report_id: ReportId,
    *,
    rating: int,
    comment: str = "",
    config: ReportsApiConfig | None = None,
) -> FeedbackResult:
    """Rate a completed report. Reports that are not completed are left untouched."""

    return asyncio.run(
        _leave_feedback_async(
            report_id,
            rating=rating,
            comment=comment,
            config=config or get_reports_api_config(),
        )
    )


async def _start_analysis_async(
    *,
    connection_string: str,
    db_type: DatabaseType,
    alias: str,
    config: ReportsApiConfig,
) -> AnalysisStarted:
    async with ReportResourceClient(config=config) as client:
        return await client.start_analysis(
            connection_string=connection_string,
            db_type=db_type,
            alias=alias,
        )


def start_analysis(
    *,
    connection_string: str,
    db_type: DatabaseType,
    alias: str = "",
    config: ReportsApiConfig | None = None,
) -> AnalysisStarted:
    """Queue a database analysis job on the backend."""

    return asyncio.run(
        _start_analysis_async(
            connection_string=connection_string,
            db_type=db_type,
            alias=alias,
            config=config or get_reports_api_config(),
        )
    )


async def _list_reports_async(config: ReportsApiConfig) -> list[Report]:
    async with ReportResourceClient(config=config) as client:
        return await client.list_reports()


def list_reports(*, config: ReportsApiConfig | None = None) -> list[Report]:
    return asyncio.run(_list_reports_async(config or get_reports_api_config()))
