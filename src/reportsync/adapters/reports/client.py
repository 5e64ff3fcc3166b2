"""HTTP clients for the report resource and the task status feed."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, cast
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from reportsync.adapters.http_resilience import ResilienceConfig, ResilientClient
from reportsync.config.reports import ReportsApiConfig, get_reports_api_config
from reportsync.domain.errors import TransportError
from reportsync.domain.model import AnalysisStarted, Report, ReportStatus, TaskStatus
from reportsync.domain.ports import FeedbackSender, ReportFetcher, TaskStatusFetcher

from .schema import AnalysisRequest, ApiErrorBody, FeedbackRequest

if TYPE_CHECKING:
    from types import TracebackType

    from reportsync.domain.model import DatabaseType, ReportId

log = getLogger(__name__)

ClientFactory = Callable[[ResilienceConfig], ResilientClient]


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def _is_settled_payload(payload: object) -> bool:
    """Admit only reports that can no longer change into the response cache."""

    if not isinstance(payload, Mapping):
        return False
    status = cast(Mapping[str, object], payload).get("status")
    if not isinstance(status, str):
        return False
    return status.strip().upper() in {ReportStatus.COMPLETED, ReportStatus.FAILED}


def _report_path(report_id: ReportId) -> str:
    return f"/reports/{quote(str(report_id), safe='')}"


def _error_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, Mapping):
        return None
    try:
        return ApiErrorBody.model_validate(payload).message()
    except ValidationError:
        return None


async def _request_json(
    client: ResilientClient,
    method: str,
    url: str,
    **kwargs: object,
) -> object:
    try:
        response = await client.request(method, url, **kwargs)  # type: ignore[arg-type]
    except httpx.HTTPError as exc:
        raise TransportError(f"{method} {url} failed: {exc}") from exc

    if response.is_error:
        detail = _error_detail(response)
        log.debug(f"{method} {url} answered {response.status_code}: {detail}")
        raise TransportError(
            f"{method} {url} returned HTTP {response.status_code}",
            status_code=response.status_code,
            detail=detail,
        )

    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(
            f"{method} {url} returned a non-JSON body",
            status_code=response.status_code,
        ) from exc


@dataclass(slots=True)
class _ApiClient:
    config: ReportsApiConfig = field(default_factory=get_reports_api_config)
    client_factory: ClientFactory = field(default=_default_client_factory)
    _http: ResilientClient | None = field(default=None, init=False, repr=False)

    def _resilience(self) -> ResilienceConfig:
        raise NotImplementedError

    def _client(self) -> ResilientClient:
        if self._http is None:
            self._http = self.client_factory(self._resilience())
        return self._http

    async def aclose(self) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()


class ReportResourceClient(_ApiClient):
    """Read and act on ``/reports`` resources."""

    __slots__ = ()

    def _resilience(self) -> ResilienceConfig:
        return self.config.report_resilience(should_cache=_is_settled_payload)

    async def __aenter__(self) -> ReportResourceClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def fetch_report(self, report_id: ReportId) -> Report:
        path = _report_path(report_id)
        payload = await _request_json(self._client(), "GET", path)
        try:
            return Report.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"Unexpected report payload from GET {path}: {exc}") from exc

    async def list_reports(self) -> list[Report]:
        payload = await _request_json(self._client(), "GET", "/reports")
        if isinstance(payload, Mapping):
            payload = cast(Mapping[str, object], payload).get("reports")
        if not isinstance(payload, list):
            raise TransportError("Unexpected report list payload from GET /reports")
        try:
            return [Report.model_validate(item) for item in cast(list[object], payload)]
        except ValidationError as exc:
            raise TransportError(f"Unexpected report in GET /reports: {exc}") from exc

    async def submit_feedback(self, report_id: ReportId, *, rating: int, comment: str) -> None:
        body = FeedbackRequest(rating=rating, comment=comment)
        await _request_json(
            self._client(),
            "POST",
            f"{_report_path(report_id)}/feedback",
            json=body.model_dump(),
        )

    async def start_analysis(
        self,
        *,
        connection_string: str,
        db_type: DatabaseType,
        alias: str = "",
    ) -> AnalysisStarted:
        """Queue a new analysis job and return the report it will fill."""

        request = AnalysisRequest(connection_string=connection_string, db_type=db_type, alias=alias)
        payload = await _request_json(
            self._client(),
            "POST",
            "/analyze",
            data=request.form_fields(),
        )
        try:
            started = AnalysisStarted.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"Unexpected payload from POST /analyze: {exc}") from exc
        log.info(f"Started analysis for {alias or db_type}: report {started.report_id}")
        return started


class TaskStatusClient(_ApiClient):
    """Read ``/tasks/{task_id}/status``."""

    __slots__ = ()

    def _resilience(self) -> ResilienceConfig:
        return self.config.task_resilience()

    async def __aenter__(self) -> TaskStatusClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def fetch_task_status(self, task_id: str) -> TaskStatus:
        path = f"/tasks/{quote(task_id, safe='')}/status"
        payload = await _request_json(self._client(), "GET", path)
        try:
            status = TaskStatus.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"Unexpected task status payload from GET {path}: {exc}") from exc
        if status.task_id is None:
            status = status.model_copy(update={"task_id": task_id})
        return status


if TYPE_CHECKING:
    _report_check: ReportFetcher = ReportResourceClient()
    _feedback_check: FeedbackSender = ReportResourceClient()
    _task_check: TaskStatusFetcher = TaskStatusClient()
