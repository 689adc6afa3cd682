"""Interval limiter for high-frequency outbound updates."""

import time
from collections.abc import Callable


class IntervalLimiter:
    """Allow at most one action per fixed interval.

    Checks a monotonic "last allowed" timestamp on each call instead of
    running a timer, so callers can sample input at any rate and only the
    permitted calls go out.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval = interval
        self._clock = clock
        self._last_allowed: float | None = None

    def allow(self) -> bool:
        """Return True and record the time if the interval has elapsed."""
        now = self._clock()
        if self._last_allowed is not None and now - self._last_allowed < self._interval:
            return False
        self._last_allowed = now
        return True

    def reset(self) -> None:
        self._last_allowed = None
