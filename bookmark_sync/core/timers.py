"""Cancellable delays for retry backoff and rate-limit waits.

Every sleep goes through a ``DelayScheduler`` so pending timers are
tracked in one place. Nothing cancels them during normal operation;
``cancel_all`` exists for shutdown paths.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


def _wake(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class DelayScheduler:
    """Schedules awaitable delays on the running event loop."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Future[None]] = set()

    @property
    def pending(self) -> int:
        """Number of sleeps currently waiting on a timer."""
        return len(self._pending)

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds`` without blocking the loop.

        Raises:
            asyncio.CancelledError: If ``cancel_all`` fires while waiting.
        """
        if seconds <= 0:
            await asyncio.sleep(0)
            return

        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        handle = loop.call_later(seconds, _wake, future)
        self._pending.add(future)
        try:
            await future
        finally:
            handle.cancel()
            self._pending.discard(future)

    def cancel_all(self) -> int:
        """Cancel every pending sleep and return how many were cancelled."""
        cancelled = 0
        for future in list(self._pending):
            if not future.done():
                future.cancel()
                cancelled += 1
        if cancelled:
            logger.info("delay_scheduler_cancelled", extra={"cancelled": cancelled})
        return cancelled
