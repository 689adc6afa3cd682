"""Tests for the outbound interval limiter."""

from transport.rate_limit import IntervalLimiter


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestIntervalLimiter:
    def test_first_call_allowed(self):
        limiter = IntervalLimiter(0.1, clock=_Clock())
        assert limiter.allow() is True

    def test_calls_within_interval_rejected(self):
        clock = _Clock()
        limiter = IntervalLimiter(0.1, clock=clock)
        limiter.allow()

        clock.now += 0.05
        assert limiter.allow() is False

    def test_allowed_again_after_interval(self):
        clock = _Clock()
        limiter = IntervalLimiter(0.1, clock=clock)
        limiter.allow()

        clock.now += 0.1
        assert limiter.allow() is True

    def test_rejected_calls_do_not_extend_window(self):
        clock = _Clock()
        limiter = IntervalLimiter(0.1, clock=clock)
        limiter.allow()

        clock.now += 0.06
        assert limiter.allow() is False
        clock.now += 0.04
        assert limiter.allow() is True

    def test_bounded_under_high_frequency_input(self):
        """Sampling every millisecond for one second yields at most one send per interval."""
        clock = _Clock()
        limiter = IntervalLimiter(0.1, clock=clock)
        allowed = 0
        for _ in range(1000):
            if limiter.allow():
                allowed += 1
            clock.now += 0.001
        assert allowed <= 10

    def test_reset_allows_immediately(self):
        clock = _Clock()
        limiter = IntervalLimiter(0.1, clock=clock)
        limiter.allow()

        limiter.reset()
        assert limiter.allow() is True
