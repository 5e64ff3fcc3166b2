"""Follow long-running report jobs until the report settles."""

from __future__ import annotations

__version__ = "0.1.0"
