"""
Tests for the sliding-window limiter.
"""
from oidc_provider.rate_limit import SlidingWindowLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_limit_and_retry_after():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(window_seconds=60, clock=clock)
    assert limiter.hit("1.2.3.4", 2) is None
    clock.now += 10
    assert limiter.hit("1.2.3.4", 2) is None
    clock.now += 5
    assert limiter.hit("1.2.3.4", 2) == 45
    # Other keys are independent
    assert limiter.hit("5.6.7.8", 2) is None


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(window_seconds=60, clock=clock)
    limiter.hit("k", 1)
    clock.now += 60
    assert limiter.hit("k", 1) is None


def test_zero_limit_disables():
    limiter = SlidingWindowLimiter()
    assert all(limiter.hit("k", 0) is None for _ in range(100))


def test_reset():
    limiter = SlidingWindowLimiter()
    limiter.hit("k", 1)
    assert limiter.hit("k", 1) is not None
    limiter.reset()
    assert limiter.hit("k", 1) is None


def test_idle_callers_are_forgotten():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(window_seconds=60, clock=clock)
    for i in range(50):
        limiter.hit(f"10.0.0.{i}", 5)
    assert limiter.tracked_keys() == 50

    clock.now += 61
    limiter.hit("10.0.1.1", 5)
    assert limiter.tracked_keys() == 1
