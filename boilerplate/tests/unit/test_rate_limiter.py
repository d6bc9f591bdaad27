import threading

import pytest

from boilerplate.middleware.rate_limit import RateLimiter, _parse_rate


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("20/s", (20, 1)),
        ("100 / m", (100, 60)),
        ("5/H", (5, 3600)),
        ("1/d", (1, 86400)),
        ("garbage", (20, 1)),
        ("", (20, 1)),
    ],
)
def test_parse_rate(raw, expected):
    assert _parse_rate(raw) == expected


def test_limit_is_enforced_within_a_window():
    limiter = RateLimiter(2, 1, clock=FakeClock())
    assert limiter.allow("10.0.0.1")
    assert limiter.allow("10.0.0.1")
    assert not limiter.allow("10.0.0.1")


def test_keys_are_independent():
    limiter = RateLimiter(1, 1, clock=FakeClock())
    assert limiter.allow("10.0.0.1")
    assert limiter.allow("10.0.0.2")
    assert not limiter.allow("10.0.0.1")


def test_window_rolls_per_key():
    clock = FakeClock()
    limiter = RateLimiter(1, 1, clock=clock)
    assert limiter.allow("a")
    clock.advance(0.5)
    assert limiter.allow("b")
    assert not limiter.allow("a")

    clock.advance(0.6)  # a's window is over, b's is not
    assert limiter.allow("a")
    assert not limiter.allow("b")


def test_stale_keys_are_pruned():
    clock = FakeClock()
    limiter = RateLimiter(5, 1, clock=clock)
    for ip in ("a", "b", "c"):
        limiter.allow(ip)
    assert len(limiter) == 3

    clock.advance(2)
    limiter.allow("d")
    assert len(limiter) == 1


def test_concurrent_callers_never_exceed_the_limit():
    limiter = RateLimiter(50, 60)
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            ok = limiter.allow("same-client")
            with lock:
                results.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 200
    assert results.count(True) == 50


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter(0, 1)
    with pytest.raises(ValueError):
        RateLimiter(1, 0)
