"""
Restartable, cancelable debounce on the asyncio event loop.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Collapse bursts of `schedule()` calls into a single callback.

    Each `schedule()` restarts the delay instead of queueing another run.
    Without a running event loop (plain sync callers) the callback runs
    immediately.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[], None]):
        self.delay_seconds = delay_seconds
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._callback()
            return
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def flush(self) -> bool:
        """Run a pending callback now. Returns True if one was pending."""
        if self._handle is None:
            return False
        self.cancel()
        self._callback()
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()
