"""Interruptible timer for cooperative cancellation.

Every suspension point in the capture pipeline (backend readiness polling,
the pre-capture wait, the pause between recording frames) sleeps through an
``InterruptibleTimer``.  Setting its cancel event wakes any pending sleep
immediately; the caller then decides whether to abort or keep what it has.
"""

from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class InterruptibleTimer:
    """Monotonic clock plus sleeps that end early on cancellation.

    Args:
        cancel_event: Event that signals cancellation. A private one is
            created when omitted; ``cancel()`` sets it.
    """

    def __init__(self, cancel_event: asyncio.Event | None = None) -> None:
        self._cancel_event = cancel_event if cancel_event is not None else asyncio.Event()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; wakes every pending ``sleep``."""
        if not self._cancel_event.is_set():
            logger.debug("Cancellation requested")
        self._cancel_event.set()

    def now(self) -> float:
        """Seconds on a monotonic clock."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for *seconds* unless cancelled first.

        Returns:
            ``True`` if the full duration elapsed, ``False`` if cancellation
            interrupted the sleep (or was already requested).
        """
        if self.cancelled:
            return False
        if seconds <= 0:
            # Still yield so other tasks (e.g. a signal handler) can run
            await asyncio.sleep(0)
            return not self.cancelled
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
