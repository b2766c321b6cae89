from __future__ import annotations

from authstack.services.rate_limiter import RateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_fixed_window_limits_and_resets():
    clock = _Clock()
    limiter = RateLimiter(clock=clock)

    first = limiter.allow("sign-in:1.2.3.4", limit=2, window_s=60)
    assert first.allowed and first.remaining == 1
    assert limiter.allow("sign-in:1.2.3.4", limit=2, window_s=60).allowed
    blocked = limiter.allow("sign-in:1.2.3.4", limit=2, window_s=60)
    assert not blocked.allowed
    assert blocked.reset_after_s == 60

    # Other keys are independent.
    assert limiter.allow("sign-in:5.6.7.8", limit=2, window_s=60).allowed

    clock.now += 60
    assert limiter.allow("sign-in:1.2.3.4", limit=2, window_s=60).allowed


def test_reset_clears_counters():
    limiter = RateLimiter(clock=_Clock())
    limiter.allow("k", limit=1)
    assert not limiter.allow("k", limit=1).allowed
    limiter.reset()
    assert limiter.allow("k", limit=1).allowed


def test_expired_windows_are_swept():
    clock = _Clock()
    limiter = RateLimiter(clock=clock, sweep_interval_s=60)
    for i in range(10_000):
        limiter.allow(f"sign-up:10.0.{i // 256}.{i % 256}", limit=5, window_s=60)
    assert len(limiter) == 10_000

    clock.now += 3600
    assert limiter.allow("sign-in:1.2.3.4", limit=5, window_s=60).allowed
    assert len(limiter) == 1


def test_sweep_keeps_live_windows():
    clock = _Clock()
    limiter = RateLimiter(clock=clock, sweep_interval_s=10)
    limiter.allow("short", limit=1, window_s=5)
    limiter.allow("long", limit=1, window_s=120)

    clock.now += 30
    limiter.allow("other", limit=1, window_s=60)
    assert len(limiter) == 2
    # The long window is still closed.
    assert not limiter.allow("long", limit=1, window_s=120).allowed
