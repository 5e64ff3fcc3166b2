from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from reportsync.app import leave_feedback, list_reports, start_analysis, watch_report
from reportsync.config import (
    ConfigurationError,
    ReportsApiConfig,
    configure_logging,
    get_reports_api_config,
)
from reportsync.domain.errors import MalformedResultError
from reportsync.domain.reconciliation import Completed, Failed, Loading, Polling

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

    from reportsync.domain.model import ReportId
    from reportsync.domain.reconciliation import EngineSnapshot

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow report generation jobs")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every request and discarded response",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Poll a report until it settles")
    watch.add_argument("report_id", type=str, help="Identifier of the report to follow")
    _add_watch_options(watch)

    start = subparsers.add_parser("start", help="Start a database analysis job")
    start.add_argument(
        "--connection-string",
        type=str,
        required=True,
        help="Connection string of the database to analyse",
    )
    start.add_argument(
        "--db-type",
        choices=("postgres", "sqlserver"),
        required=True,
        help="Database flavour",
    )
    start.add_argument(
        "--alias",
        type=str,
        default="",
        help="Name under which the connection is saved",
    )
    start.add_argument(
        "--watch",
        action="store_true",
        help="Follow the new report until it settles",
    )
    _add_watch_options(start)

    subparsers.add_parser("list", help="List your reports")

    feedback = subparsers.add_parser("feedback", help="Rate a completed report")
    feedback.add_argument("report_id", type=str, help="Identifier of the report to rate")
    feedback.add_argument(
        "--rating",
        type=int,
        choices=range(1, 6),
        required=True,
        help="Rating from 1 to 5",
    )
    feedback.add_argument(
        "--comment",
        type=str,
        default="",
        help="Optional free-text comment",
    )

    return parser.parse_args(list(argv))


def _add_watch_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between status polls (defaults to config)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Give up after this many seconds",
    )


def _parse_report_id(value: str) -> ReportId:
    stripped = value.strip()
    if not stripped:
        raise ValueError("Report id must not be blank")
    return int(stripped) if stripped.isdigit() else stripped


def _build_config(args: argparse.Namespace) -> ReportsApiConfig:
    config = get_reports_api_config()
    interval = getattr(args, "interval", None)
    if interval is not None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        config = dataclasses.replace(config, poll_interval_seconds=interval)
    timeout = getattr(args, "timeout", None)
    if timeout is not None and timeout <= 0:
        raise ValueError("Timeout must be positive")
    return config


def describe_snapshot(snapshot: EngineSnapshot) -> str:
    phase = snapshot.phase
    if isinstance(phase, Loading):
        return f"Report {snapshot.report_id}: loading"
    if isinstance(phase, Completed):
        return f"Report {snapshot.report_id}: completed"
    if isinstance(phase, Failed):
        return f"Report {snapshot.report_id}: failed: {phase.error}"
    if isinstance(phase, Polling) and phase.task_id is None:
        return f"Report {snapshot.report_id}: running, no task to follow"

    status = snapshot.task_status
    if status is None:
        return f"Report {snapshot.report_id}: waiting for task status"
    parts = [f"Report {snapshot.report_id}: {status.status} {status.progress_percentage:.0f}%"]
    if status.stage:
        parts.append(status.stage)
    if status.diversity_report is not None:
        coverage = status.diversity_report
        parts.append(f"tables {coverage.analyzed_tables}/{coverage.total_tables}")
    if status.current_question:
        parts.append(f"question: {status.current_question}")
    return " | ".join(parts)


def _progress_logger() -> Callable[[EngineSnapshot], None]:
    last: list[str] = []

    def _log(snapshot: EngineSnapshot) -> None:
        line = describe_snapshot(snapshot)
        if last and last[-1] == line:
            return
        last.append(line)
        log.info(line)

    return _log


def _log_outcome(snapshot: EngineSnapshot) -> int:
    phase = snapshot.phase
    if isinstance(phase, Completed):
        report = snapshot.report
        if report is not None:
            try:
                results = report.success_results()
            except MalformedResultError as exc:
                log.warning(f"Report completed but its results cannot be shown: {exc}")
            else:
                if results.executive_summary:
                    log.info(f"Summary: {results.executive_summary}")
                for finding in results.detailed_findings:
                    log.info(f"- {finding.question}: {finding.summary}")
                for recommendation in results.recommendations:
                    log.info(f"* {recommendation}")
                for table, insight in results.insights.items():
                    log.info(f"[{table}] {insight}")
        return 0
    if isinstance(phase, Failed):
        log.error(f"Report {snapshot.report_id} failed: {phase.error}")
        return 1
    log.error(f"Stopped without a result: {describe_snapshot(snapshot)}")
    return 1


def _watch(report_id: ReportId, args: argparse.Namespace, config: ReportsApiConfig) -> int:
    snapshot = watch_report(
        report_id,
        config=config,
        on_change=_progress_logger(),
        timeout=args.timeout,
    )
    return _log_outcome(snapshot)


def _run(args: argparse.Namespace, config: ReportsApiConfig) -> int:
    if args.command == "watch":
        return _watch(_parse_report_id(args.report_id), args, config)

    if args.command == "start":
        started = start_analysis(
            connection_string=args.connection_string,
            db_type=args.db_type,
            alias=args.alias,
            config=config,
        )
        log.info(f"Report {started.report_id} queued (task {started.task_id or 'unknown'})")
        if args.watch:
            return _watch(started.report_id, args, config)
        return 0

    if args.command == "list":
        reports = list_reports(config=config)
        if not reports:
            log.info("No reports yet")
        for report in reports:
            created = report.created_at.isoformat() if report.created_at else "-"
            alias = f" [{report.connection_alias}]" if report.connection_alias else ""
            log.info(f"#{report.id} {report.status:<9} {created}{alias}")
        return 0

    if args.command == "feedback":
        result = leave_feedback(
            _parse_report_id(args.report_id),
            rating=args.rating,
            comment=args.comment,
            config=config,
        )
        if not result.accepted:
            log.error(result.notice or "Feedback was not accepted")
            return 1
        log.info("Thanks for the feedback")
        return 0

    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        if parsed_args.verbose:
            configure_logging(level=logging.DEBUG, force=True)
        config = _build_config(parsed_args)
        if hasattr(parsed_args, "report_id"):
            _parse_report_id(parsed_args.report_id)
    except (ValueError, ConfigurationError):
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        exit_code = _run(parsed_args, config)
    except TimeoutError:
        log.error("Gave up waiting for the report")  # noqa: TRY400
        sys.exit(1)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def entrypoint() -> None:
    """Console script: load `.env`, install the SIGINT handler and run ``main``."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    entrypoint()
