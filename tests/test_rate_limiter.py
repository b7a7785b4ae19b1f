import threading

import pytest

from config import Settings
from rate_limiter import RateLimiter

WINDOW_MS = 10 * 60 * 1000


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(max_requests=5, window_ms=WINDOW_MS, clock=clock)


class TestCheckAndRecord:
    """Admission decisions under the sliding window."""

    def test_admits_up_to_limit(self, limiter: RateLimiter) -> None:
        """Each admitted request reports the count after recording it."""
        results = [limiter.check_and_record("10.0.0.1") for _ in range(5)]

        assert all(r.allowed for r in results)
        assert [r.used for r in results] == [1, 2, 3, 4, 5]
        assert all(r.limit == 5 and r.retry_after_seconds == 0 for r in results)

    def test_rejects_sixth_request(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.check_and_record("10.0.0.1")

        result = limiter.check_and_record("10.0.0.1")

        assert result.allowed is False
        assert result.used == 5
        assert result.limit == 5
        assert result.retry_after_seconds == 600

    def test_rejection_does_not_consume_quota(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.check_and_record("10.0.0.1")
        for _ in range(3):
            limiter.check_and_record("10.0.0.1")

        assert limiter.snapshot()[0].used == 5

    def test_clients_are_independent(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.check_and_record("10.0.0.1")

        assert limiter.check_and_record("10.0.0.2").allowed is True

    def test_waiting_retry_after_admits_next_request(self, limiter: RateLimiter, clock) -> None:
        """Waiting exactly retryAfterSeconds lets the oldest timestamp expire."""
        limiter.check_and_record("10.0.0.1")
        clock.advance(1000)
        for _ in range(4):
            limiter.check_and_record("10.0.0.1")

        rejected = limiter.check_and_record("10.0.0.1")
        assert rejected.retry_after_seconds == 599

        clock.advance(rejected.retry_after_seconds * 1000)
        result = limiter.check_and_record("10.0.0.1")

        assert result.allowed is True
        assert result.used == 5

    def test_retry_after_rounds_up(self, limiter: RateLimiter, clock) -> None:
        for _ in range(5):
            limiter.check_and_record("10.0.0.1")
        clock.advance(WINDOW_MS - 1)

        result = limiter.check_and_record("10.0.0.1")

        assert result.allowed is False
        assert result.retry_after_seconds == 1

    def test_never_exceeds_limit_in_any_window(self, limiter: RateLimiter, clock) -> None:
        admitted = []
        for _ in range(600):
            if limiter.check_and_record("10.0.0.1").allowed:
                admitted.append(clock.now)
            clock.advance(7_000)

        for t in admitted:
            in_window = [a for a in admitted if t - WINDOW_MS < a <= t]
            assert len(in_window) <= 5

    def test_concurrent_requests_admit_exactly_limit(self, limiter: RateLimiter) -> None:
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(20)

        def hit():
            barrier.wait()
            result = limiter.check_and_record("10.0.0.9")
            with lock:
                results.append(result)

        threads = [threading.Thread(target=hit) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r.allowed) == 5


class TestToggle:
    """Enabling and disabling the limiter at runtime."""

    def test_disabled_admits_without_bookkeeping(self, clock) -> None:
        limiter = RateLimiter(max_requests=5, window_ms=WINDOW_MS, enabled=False, clock=clock)

        results = [limiter.check_and_record("10.0.0.1") for _ in range(10)]

        assert all(r.allowed and r.used == 0 and r.limit == 5 for r in results)
        assert limiter.snapshot() == []

    def test_reenabling_honours_earlier_timestamps(self, limiter: RateLimiter) -> None:
        for _ in range(5):
            limiter.check_and_record("10.0.0.1")

        limiter.set_enabled(False)
        assert limiter.check_and_record("10.0.0.1").allowed is True
        assert limiter.is_enabled() is False

        limiter.set_enabled(True)
        result = limiter.check_and_record("10.0.0.1")
        assert result.allowed is False
        assert result.used == 5


class TestSnapshot:
    """Quota view and lazy cleanup."""

    def test_lists_active_clients(self, limiter: RateLimiter) -> None:
        limiter.check_and_record("10.0.0.1")
        limiter.check_and_record("10.0.0.1")
        limiter.check_and_record("10.0.0.2")

        quotas = {q.ip: q for q in limiter.snapshot()}

        assert quotas["10.0.0.1"].used == 2
        assert quotas["10.0.0.2"].used == 1
        assert quotas["10.0.0.2"].limit == 5

    def test_forgets_expired_clients(self, limiter: RateLimiter, clock) -> None:
        limiter.check_and_record("10.0.0.1")
        clock.advance(WINDOW_MS // 2)
        limiter.check_and_record("10.0.0.2")
        clock.advance(WINDOW_MS // 2)

        quotas = limiter.snapshot()

        assert [q.ip for q in quotas] == ["10.0.0.2"]
        assert "10.0.0.1" not in limiter._request_log

    def test_to_dict_shape(self, limiter: RateLimiter) -> None:
        limiter.check_and_record("10.0.0.1")

        assert limiter.to_dict() == {
            "quotas": [{"ip": "10.0.0.1", "used": 1, "limit": 5}],
            "maxRequests": 5,
            "windowMinutes": 10,
        }


class TestListeners:
    def test_notified_on_admission_only(self, limiter: RateLimiter) -> None:
        calls = []
        limiter.add_change_listener(lambda: calls.append(1))

        for _ in range(7):
            limiter.check_and_record("10.0.0.1")

        assert len(calls) == 5

    def test_removed_listener_not_called(self, limiter: RateLimiter) -> None:
        calls = []

        def listener():
            calls.append(1)

        limiter.add_change_listener(listener)
        limiter.remove_change_listener(listener)
        limiter.check_and_record("10.0.0.1")

        assert calls == []

    def test_listener_may_read_limiter(self, limiter: RateLimiter) -> None:
        seen = []
        limiter.add_change_listener(lambda: seen.append(limiter.snapshot()[0].used))

        limiter.check_and_record("10.0.0.1")

        assert seen == [1]


def test_from_settings(clock) -> None:
    settings = Settings(rate_limit_max_requests=3, rate_limit_window_minutes=2, rate_limit_enabled=False)

    limiter = RateLimiter.from_settings(settings, clock=clock)

    assert limiter.max_requests == 3
    assert limiter.window_ms == 120_000
    assert limiter.window_minutes == 2
    assert limiter.is_enabled() is False
