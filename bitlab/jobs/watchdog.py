"""Stall detection for running jobs."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StallWatchdog:
    """Flags a job whose progress has not moved for ``timeout`` seconds.

    The owner calls :meth:`report_progress` on every progress update.  A
    background task polls every ``check_interval`` seconds and calls
    ``on_stall(last_progress, stalled_for)`` once per stall, then
    ``on_recovery()`` when progress moves again.  While ``is_suspended()``
    returns true (a paused job) the stall clock is held at zero.
    """

    def __init__(
        self,
        timeout: float,
        check_interval: float,
        on_stall: Callable[[float, float], None],
        on_recovery: Callable[[], None],
        is_suspended: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.timeout = timeout
        self.check_interval = check_interval
        self._on_stall = on_stall
        self._on_recovery = on_recovery
        self._is_suspended = is_suspended or (lambda: False)
        self._last_progress = 0.0
        self._last_change = time.monotonic()
        self._stalled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_stalled(self) -> bool:
        return self._stalled

    @property
    def stalled_for(self) -> float:
        """Seconds since progress last moved, or 0.0 when not stalled."""
        if not self._stalled:
            return 0.0
        return time.monotonic() - self._last_change

    def start(self) -> None:
        self._last_progress = 0.0
        self._last_change = time.monotonic()
        self._stalled = False
        if self.timeout > 0 and self._task is None:
            self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._stalled = False
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def report_progress(self, progress: float) -> None:
        if progress == self._last_progress:
            return
        self._last_progress = progress
        self._last_change = time.monotonic()
        if self._stalled:
            self._stalled = False
            self._on_recovery()

    def check(self) -> bool:
        """Evaluate the stall condition now.  Returns whether the job is stalled."""
        now = time.monotonic()
        if self._is_suspended():
            self._last_change = now
            return self._stalled
        stalled_for = now - self._last_change
        if not self._stalled and stalled_for > self.timeout:
            self._stalled = True
            self._on_stall(self._last_progress, stalled_for)
        return self._stalled

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            try:
                self.check()
            except Exception:
                logger.exception("Stall check failed")
