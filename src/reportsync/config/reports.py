"""Reports API configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, cast

from .env import non_negative_int_env_var, optional_env_var, positive_float_env_var
from .errors import ConfigurationError
from .http_resilience import (
    CacheConfig,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
    ShouldCacheHook,
)
from .storage import get_storage_config

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 0

CacheMode = Literal["memory", "sqlite", "off"]
_CACHE_MODES: frozenset[str] = frozenset({"memory", "sqlite", "off"})


@dataclass(frozen=True, slots=True)
class ReportsApiConfig:
    """Connection settings for the report and task status endpoints."""

    base_url: str = DEFAULT_API_URL
    api_token: str | None = None
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    cache_mode: CacheMode = "memory"
    ratelimit: RateLimit | None = None

    def default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def report_resilience(self, *, should_cache: ShouldCacheHook | None = None) -> ResilienceConfig:
        """Resilience settings for ``/reports`` calls.

        Only payloads accepted by ``should_cache`` are stored, so callers pass a predicate
        that admits reports which can no longer change.
        """

        return ResilienceConfig(
            name="reports",
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
            retry=RetryPolicy(total=self.retries),
            ratelimit=self.ratelimit,
            cache=self._cache_config(should_cache),
            default_headers=self.default_headers(),
        )

    def task_resilience(self) -> ResilienceConfig:
        # Task status changes on every tick; never cache it.
        return ResilienceConfig(
            name="tasks",
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
            retry=RetryPolicy(total=self.retries),
            ratelimit=self.ratelimit,
            cache=None,
            default_headers=self.default_headers(),
        )

    def _cache_config(self, should_cache: ShouldCacheHook | None) -> CacheConfig | None:
        if self.cache_mode == "off" or should_cache is None:
            return None
        if self.cache_mode == "sqlite":
            path = get_storage_config().http_cache_path()
            return CacheConfig(backend="sqlite", sqlite_path=str(path), should_cache=should_cache)
        return CacheConfig(backend="memory", should_cache=should_cache)


def get_reports_api_config() -> ReportsApiConfig:
    base_url = optional_env_var("REPORTS_API_URL") or DEFAULT_API_URL
    if not base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"REPORTS_API_URL must be an http(s) URL, got {base_url!r}")

    cache_mode = (optional_env_var("REPORTS_HTTP_CACHE") or "memory").lower()
    if cache_mode not in _CACHE_MODES:
        modes = ", ".join(sorted(_CACHE_MODES))
        raise ConfigurationError(f"REPORTS_HTTP_CACHE must be one of {modes}, got {cache_mode!r}")

    return ReportsApiConfig(
        base_url=base_url.rstrip("/"),
        api_token=optional_env_var("REPORTS_API_TOKEN"),
        poll_interval_seconds=positive_float_env_var(
            "REPORTS_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS
        ),
        timeout_seconds=positive_float_env_var(
            "REPORTS_HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
        ),
        retries=non_negative_int_env_var("REPORTS_HTTP_RETRIES", DEFAULT_RETRIES),
        cache_mode=cast(CacheMode, cache_mode),
        ratelimit=RateLimit(max_calls=4, per_seconds=1.0),
    )
