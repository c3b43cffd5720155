import pytest

from clinic_booking.errors import RateLimitError
from clinic_booking.services.rate_limit import InMemoryRateLimitStore, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_in_memory_store_counts_per_key():
    store = InMemoryRateLimitStore(clock=FakeClock())
    assert store.hit("a", 60) == (1, 60)
    assert store.hit("a", 60)[0] == 2
    assert store.hit("b", 60)[0] == 1

def test_window_resets():
    clock = FakeClock()
    store = InMemoryRateLimitStore(clock=clock)
    store.hit("a", 60)
    store.hit("a", 60)
    clock.now += 61
    assert store.hit("a", 60)[0] == 1

def test_limiter_blocks_after_limit():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryRateLimitStore(clock=clock), limit=2, window_seconds=60)
    limiter.check("user:1")
    limiter.check("user:1")
    with pytest.raises(RateLimitError) as exc:
        limiter.check("user:1")
    assert exc.value.status_code == 429
    assert exc.value.details["limit"] == 2

    limiter.check("user:2")
    clock.now += 60
    limiter.check("user:1")
