import pytest

from mascot_chat.core_app.services.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_allows_limit_then_rejects(clock):
    limiter = FixedWindowRateLimiter(limit=5, window=60, clock=clock)

    results = [limiter.hit("1.2.3.4") for _ in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    clock.now += 10
    rejected = limiter.hit("1.2.3.4")
    assert not rejected.allowed
    assert rejected.retry_after == 50
    assert 0 < rejected.retry_after <= 60


def test_window_resets_after_elapsing(clock):
    limiter = FixedWindowRateLimiter(limit=2, window=60, clock=clock)
    limiter.hit("a")
    limiter.hit("a")
    assert not limiter.hit("a").allowed

    clock.now += 60
    result = limiter.hit("a")
    assert result.allowed
    assert result.remaining == 1


def test_retry_after_rounds_up(clock):
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=clock)
    limiter.hit("a")

    clock.now += 59.5
    assert limiter.hit("a").retry_after == 1


def test_keys_are_independent(clock):
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=clock)

    assert limiter.hit("a").allowed
    assert not limiter.hit("a").allowed
    assert limiter.hit("b").allowed


def test_reset_clears_state(clock):
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=clock)
    limiter.hit("a")

    limiter.reset()
    assert limiter.hit("a").allowed


@pytest.mark.parametrize("limit, window", [(0, 60), (5, 0)])
def test_rejects_bad_configuration(limit, window):
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(limit=limit, window=window)
