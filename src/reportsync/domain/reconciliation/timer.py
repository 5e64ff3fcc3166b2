"""Recurring asyncio timer with a synchronous, idempotent cancel."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = getLogger(__name__)


def _current_task() -> asyncio.Task[object] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # no running loop, e.g. teardown after ``asyncio.run`` returned
        return None


class PollingTimer:
    """Run ``callback`` every ``interval`` seconds on the running event loop.

    Ticks never overlap: the loop awaits each callback before sleeping again. The
    first tick happens one interval after ``start``. ``cancel`` called from inside a
    tick only detaches the loop, so the tick itself runs to completion and no further
    tick is scheduled.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        *,
        name: str = "polling-timer",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"{self.name} is already armed")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is _current_task():
            return
        task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                await self._callback()
            except Exception:
                log.exception("%s tick failed", self.name)
