import pytest

from turnstile import RateLimiter


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_sixth_attempt_in_window_forces_logout():
    clock = Clock()
    limiter = RateLimiter(max_attempts=5, window=60.0, clock=clock)
    for _ in range(5):
        limiter.record_attempt()
        assert not limiter.should_force_logout()
        clock.now += 1.0

    limiter.record_attempt()
    assert limiter.should_force_logout()
    # counter starts clean after a forced logout
    assert limiter.attempts == 0


def test_window_elapsing_resets_counter():
    clock = Clock()
    limiter = RateLimiter(max_attempts=5, window=60.0, clock=clock)
    for _ in range(5):
        limiter.record_attempt()

    clock.now += 60.0
    limiter.record_attempt()
    assert limiter.attempts == 1
    assert not limiter.should_force_logout()


def test_reset():
    limiter = RateLimiter(max_attempts=1, clock=Clock())
    limiter.record_attempt()
    limiter.reset()
    limiter.record_attempt()
    assert not limiter.should_force_logout()


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"window": 0}])
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
