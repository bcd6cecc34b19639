"""Fixed-interval, single-flight polling tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Poller:
    """Runs `fn` every `interval` seconds.

    A tick that lands while the previous run is still in flight is skipped,
    not queued. A failing run is logged and the next tick runs normally.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], Awaitable[None]],
        *,
        enabled: Callable[[], bool] | None = None,
    ):
        self.name = name
        self.interval = float(interval)
        self.fn = fn
        self.enabled = enabled
        self.runs = 0
        self.skipped = 0
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        self._running = False
        for task in (self._loop_task, self._run_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._run_task = None

    async def _tick_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> bool:
        if self.busy:
            self.skipped += 1
            logger.debug("%s still running, tick skipped", self.name)
            return False
        if self.enabled is not None and not self.enabled():
            return False
        self._run_task = asyncio.create_task(self._run())
        return True

    async def _run(self) -> None:
        try:
            await self.fn()
            self.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed", self.name)
