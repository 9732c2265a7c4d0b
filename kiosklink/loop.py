"""Fixed-interval background loop shared by the health and sensor monitors."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from time import monotonic
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from kiosklink.metrics import MetricsLogger

logger = logging.getLogger(__name__)


class PollingLoop:
    """Run :meth:`tick` every ``interval`` seconds until stopped.

    Ticks never overlap. When a tick overruns one or more slots the missed
    slots are dropped and the loop resumes on the next future slot, so slow
    device commands never build up a backlog. :meth:`stop` may be called any
    number of times. Metric rows written from a tick carry ``loop=<name>``.
    """

    def __init__(
        self,
        interval: float,
        *,
        name: Optional[str] = None,
        metrics: Optional["MetricsLogger"] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name or type(self).__name__
        self.metrics = metrics
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        raise NotImplementedError

    async def on_start(self) -> None:
        """Hook run once before the first tick."""

    async def run(self) -> None:
        """Run ticks until :meth:`stop` is called or the task is cancelled."""
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        logger.debug("%s started (interval=%.2fs)", self.name, self.interval)
        scope = self.metrics.scope(loop=self.name) if self.metrics else contextlib.nullcontext()
        try:
            with scope:
                await self._run_ticks(stop_event)
        finally:
            stop_event.set()
            logger.debug("%s stopped", self.name)

    async def _run_ticks(self, stop_event: asyncio.Event) -> None:
        await self.on_start()
        next_at = monotonic() + self.interval
        while not stop_event.is_set():
            await self._sleep_until(next_at, stop_event)
            if stop_event.is_set():
                break
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s tick failed", self.name)
            next_at = self._next_slot(next_at)

    def start(self) -> asyncio.Task[None]:
        """Schedule :meth:`run` on the running event loop; reuse a live task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run(), name=self.name)
        return self._task

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_stopped(self) -> None:
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _next_slot(self, previous: float) -> float:
        now = monotonic()
        next_at = previous + self.interval
        if next_at <= now:
            skipped = int((now - previous) // self.interval)
            next_at = previous + (skipped + 1) * self.interval
            logger.debug("%s skipped %d tick(s) after a slow tick", self.name, skipped)
        return next_at

    @staticmethod
    async def _sleep_until(deadline: float, stop_event: asyncio.Event) -> None:
        delay = deadline - monotonic()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


__all__ = ["PollingLoop"]
