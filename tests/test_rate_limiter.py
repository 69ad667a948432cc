import pytest
from conftest import FakeClock

from stablepay.cache import TTLCache
from stablepay.rate_limiter import SlidingWindowRateLimiter


def make_limiter(clock: FakeClock, max_calls: int = 3, window: float = 10.0) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_calls=max_calls, window_seconds=window, clock=clock, sleep=clock.sleep)


def test_calls_under_the_cap_do_not_wait():
    clock = FakeClock()
    limiter = make_limiter(clock)
    assert [limiter.execute(lambda i=i: i) for i in range(3)] == [0, 1, 2]
    assert clock.sleeps == []
    assert limiter.in_flight == 3


def test_full_window_waits_until_oldest_call_leaves():
    clock = FakeClock()
    limiter = make_limiter(clock)
    limiter.execute(lambda: None)  # t=0
    clock.advance(4)
    limiter.execute(lambda: None)  # t=4
    clock.advance(2)
    limiter.execute(lambda: None)  # t=6

    limiter.execute(lambda: None)
    assert clock.sleeps == [4.0]
    assert clock.now == 10.0
    # the t=0 call left the window
    assert limiter.in_flight == 3


def test_default_limit_is_45_calls_per_second():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock=clock, sleep=clock.sleep)
    for _ in range(46):
        limiter.execute(lambda: None)
    assert clock.sleeps == [1.0]


def test_exceptions_propagate_and_are_not_retried():
    clock = FakeClock()
    limiter = make_limiter(clock)
    calls = []

    def boom():
        calls.append(1)
        raise ValueError("rpc error")

    with pytest.raises(ValueError, match="rpc error"):
        limiter.execute(boom)
    assert calls == [1]
    # the failed call still took a slot
    assert limiter.in_flight == 1


def test_execute_passes_arguments():
    limiter = make_limiter(FakeClock())
    assert limiter.execute(lambda a, b=0: a + b, 2, b=3) == 5


def test_execute_batch_preserves_order_and_delays_between_batches():
    clock = FakeClock()
    limiter = make_limiter(clock, max_calls=100, window=1.0)
    seen = []
    fns = [lambda i=i: i * i for i in range(25)]

    results = limiter.execute_batch(fns, batch_size=10, batch_delay_seconds=0.1, on_result=seen.append)

    assert results == [i * i for i in range(25)]
    assert seen == results
    # three batches, two pauses, none after the last
    assert clock.sleeps == [0.1, 0.1]


def test_execute_batch_single_batch_never_sleeps():
    clock = FakeClock()
    limiter = make_limiter(clock, max_calls=100)
    assert limiter.execute_batch([lambda: 1, lambda: 2], batch_size=10) == [1, 2]
    assert clock.sleeps == []


def test_execute_batch_without_per_call_limiting():
    clock = FakeClock()
    limiter = make_limiter(clock, max_calls=1)
    assert limiter.execute_batch([lambda: 1, lambda: 2, lambda: 3], batch_size=5, limit_each=False) == [1, 2, 3]
    assert limiter.in_flight == 0


def test_execute_batch_stops_at_first_exception():
    clock = FakeClock()
    limiter = make_limiter(clock, max_calls=100)
    calls = []

    def ok(i):
        calls.append(i)
        return i

    def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        limiter.execute_batch([lambda: ok(0), fail, lambda: ok(2)], batch_size=10)
    assert calls == [0]


@pytest.mark.parametrize("batch_size", [0, -1])
def test_execute_batch_rejects_non_positive_batch_size(batch_size):
    with pytest.raises(ValueError):
        make_limiter(FakeClock()).execute_batch([lambda: 1], batch_size=batch_size)


def test_limiter_rejects_bad_configuration():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_calls=0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window_seconds=0)


def test_ttl_cache_expires_on_the_injected_clock():
    clock = FakeClock(100.0)
    cache = TTLCache(30, clock)
    cache.set("a", {"balance": 1})
    clock.advance(29.9)
    assert cache.get("a") == {"balance": 1}
    assert "a" in cache
    assert cache.age("a") == pytest.approx(29.9)
    clock.advance(0.2)
    assert cache.get("a") is None
    assert "a" not in cache
    assert cache.age("a") is None


def test_ttl_cache_invalidate_and_purge():
    clock = FakeClock()
    cache = TTLCache(30, clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert len(cache) == 1

    clock.advance(10)
    cache.set("c", 3)
    clock.advance(25)
    assert cache.purge_expired() == 1
    assert cache.get("c") == 3

    cache.invalidate()
    assert len(cache) == 0


def test_ttl_cache_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        TTLCache(0)
