"""Debounced flushing for high-frequency UI updates.

Token deltas and tool progress pings arrive far faster than a terminal or
browser should repaint. A Debouncer collects them behind a single timer:
the first update in a quiet period arms the timer, later updates ride along,
and when the timer fires the owner's flush callback publishes everything
buffered so far.

State machine:

    idle ──schedule()──▶ pending ──timer fires──▶ flushed
      ▲                    │                         │
      └─────cancel()───────┘◀──────schedule()────────┘

There is never more than one timer handle per Debouncer. Everything runs on
the event loop thread, so arming and clearing the handle need no lock.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class FlushState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHED = "flushed"


class Debouncer:
    """Single-timer debounce around a flush callback.

    Attributes:
        delay: Coalescing window in seconds.
        state: Current FlushState.
    """

    def __init__(self, delay: float, flush: Callable[[], None]) -> None:
        self.delay = delay
        self.state = FlushState.IDLE
        self._flush = flush
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        """Arm the timer unless one is already pending."""
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)
        self.state = FlushState.PENDING

    def cancel(self) -> None:
        """Drop the pending timer, if any, without flushing."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.state = FlushState.IDLE

    def flush_now(self) -> None:
        """Cancel the pending timer and run the flush immediately."""
        self.cancel()
        self._flush()
        self.state = FlushState.FLUSHED

    def _fire(self) -> None:
        self._handle = None
        self.state = FlushState.FLUSHED
        try:
            self._flush()
        except Exception as exc:
            logger.error("Debounced flush failed: %s", exc)
