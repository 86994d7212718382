"""Cooperative cancellation for engine runs."""
from __future__ import annotations

import asyncio

from ..errors import AbortedByUser


class CancellationToken:
    """Cooperative cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "Execution aborted by user"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def request_cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedByUser(self.reason)

    async def wait(self) -> None:
        await self._event.wait()
