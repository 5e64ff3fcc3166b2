"""Application configuration helpers."""

from __future__ import annotations

from .env import (
    non_negative_int_env_var,
    optional_env_var,
    positive_float_env_var,
)
from .errors import ConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .reports import (
    DEFAULT_API_URL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    ReportsApiConfig,
    get_reports_api_config,
)
from .storage import StorageConfig, get_storage_config

__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "CacheConfig",
    "ConfigurationError",
    "RateLimit",
    "ReportsApiConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_reports_api_config",
    "get_storage_config",
    "non_negative_int_env_var",
    "optional_env_var",
    "positive_float_env_var",
]
