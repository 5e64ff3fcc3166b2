from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

_REPORTS_ENV_VARS = (
    "REPORTS_API_URL",
    "REPORTS_API_TOKEN",
    "REPORTS_POLL_INTERVAL_SECONDS",
    "REPORTS_HTTP_TIMEOUT_SECONDS",
    "REPORTS_HTTP_RETRIES",
    "REPORTS_HTTP_CACHE",
)


@pytest.fixture(autouse=True)
def isolated_reports_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer `.env` settings and the real data directory out of tests."""

    for name in _REPORTS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REPORTSYNC_DATA_DIR", str(tmp_path / "data"))
