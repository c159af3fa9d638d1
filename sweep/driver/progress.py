"""Progress reporting helpers for aggregation sessions.

Pages can complete many times per second, so sessions wrap the caller's
progress callback in a ThrottledCallback. The total record count is unknown
until the source is exhausted; estimate_total supplies a running guess.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOTHING = object()


class ThrottledCallback(Generic[T]):
    """Invoke a callback at most once per ``interval`` seconds.

    The first call goes through immediately. Calls inside the window replace
    a single pending value, which a trailing timer on the running event loop
    delivers when the window closes. ``flush()`` delivers the pending value
    right away; sessions call it before returning so the final state is
    always reported.

    Example::

        throttled = ThrottledCallback(print, interval=0.3)
        for i in range(100):
            throttled(i)   # prints 0, then at most one value per 0.3 s
        throttled.flush()  # prints 99 if it was still pending
    """

    def __init__(
        self,
        callback: Callable[[T], None],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.callback = callback
        self.interval = interval
        self._clock = clock
        self._last_call: float | None = None
        self._pending: object = _NOTHING
        self._timer: asyncio.TimerHandle | None = None
        self.calls = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not _NOTHING

    def __call__(self, value: T) -> None:
        now = self._clock()
        if self._last_call is None or now - self._last_call >= self.interval:
            self._cancel_timer()
            self._pending = _NOTHING
            self._deliver(value, now)
            return

        self._pending = value
        if self._timer is None:
            delay = self.interval - (now - self._last_call)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop: the value waits for flush()
                return
            self._timer = loop.call_later(delay, self._on_timer)

    def flush(self) -> None:
        """Deliver the pending value, if any, immediately."""
        self._cancel_timer()
        if self._pending is not _NOTHING:
            value = self._pending
            self._pending = _NOTHING
            self._deliver(value, self._clock())  # type: ignore[arg-type]

    def cancel(self) -> None:
        """Drop the pending value without delivering it."""
        self._cancel_timer()
        self._pending = _NOTHING

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _deliver(self, value: T, now: float) -> None:
        self._last_call = now
        self.calls += 1
        self.callback(value)


def estimate_total(
    first_page_count: int,
    loaded: int,
    multiplier: int = 10,
    headroom: int = 50,
) -> int:
    """Guess the final record count while pages are still arriving.

    The guess starts at ``first_page_count * multiplier`` and is never below
    ``loaded + headroom``, so a progress bar keeps moving without reaching
    the end before the source is exhausted.

    Args:
        first_page_count: Records on page 1.
        loaded: Records loaded so far, page 1 included.
        multiplier: Pages assumed before any evidence.
        headroom: Minimum records assumed still to come.

    Returns:
        The estimated total.
    """
    return max(first_page_count * multiplier, loaded + headroom)
