# tests/test_rate_limiter.py - Sliding window rate limiter tests
import pytest
import threading
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.rate_limiter import RateLimiter


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        max_requests=1,
        window_seconds=3,
        sweep_interval_seconds=60,
        idle_expiry_seconds=300,
        clock=clock,
    )


class TestConstruction:
    """Tests for limiter configuration."""

    def test_rejects_zero_requests(self):
        with pytest.raises(ValueError):
            RateLimiter(max_requests=0)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            RateLimiter(window_seconds=0)

    def test_rejects_non_positive_sweep_interval(self):
        with pytest.raises(ValueError):
            RateLimiter(sweep_interval_seconds=-1)

    def test_rejects_non_positive_idle_expiry(self):
        with pytest.raises(ValueError):
            RateLimiter(idle_expiry_seconds=0)

    def test_starts_empty(self, limiter):
        assert len(limiter) == 0


class TestWindowEnforcement:
    """Admission and denial inside one window."""

    def test_session_scenario(self, limiter, clock):
        assert limiter.check_rate_limit("s1").allowed is True

        clock.now = 1
        denied = limiter.check_rate_limit("s1")
        assert denied.allowed is False
        assert denied.retry_after == 2

        # Another session is unaffected by s1's denial
        assert limiter.check_rate_limit("s2").allowed is True

        clock.now = 3
        assert limiter.check_rate_limit("s1").allowed is True

    def test_first_k_allowed_then_denied(self, clock):
        limiter = RateLimiter(max_requests=3, window_seconds=10, clock=clock)
        results = [limiter.check_rate_limit("a", now=t) for t in (0, 1, 2)]
        assert all(r.allowed for r in results)
        assert all(r.retry_after is None for r in results)

        denied = limiter.check_rate_limit("a", now=3)
        assert denied.allowed is False
        assert denied.retry_after >= 1

    def test_denied_attempt_is_not_recorded(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("a", now=1)
        limiter.check_rate_limit("a", now=2)
        assert limiter.get_rate_limit_status("a", now=2).count == 1

    def test_recovers_after_window(self, limiter):
        assert limiter.check_rate_limit("a", now=0).allowed
        assert not limiter.check_rate_limit("a", now=2.999).allowed
        assert limiter.check_rate_limit("a", now=3).allowed

    def test_recovers_long_after_window(self, limiter):
        limiter.check_rate_limit("a", now=0)
        assert limiter.check_rate_limit("a", now=45).allowed

    def test_sliding_window_uses_oldest_admission(self, clock):
        limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("a", now=6)
        assert not limiter.check_rate_limit("a", now=9).allowed
        # Only the admission at t=0 has left the window
        assert limiter.check_rate_limit("a", now=10).allowed
        assert not limiter.check_rate_limit("a", now=11).allowed

    def test_uses_clock_when_now_omitted(self, limiter, clock):
        clock.now = 100
        limiter.check_rate_limit("a")
        status = limiter.get_rate_limit_status("a")
        assert status.count == 1
        assert status.next_allowed_at == 103


class TestRetryAfter:
    """Accuracy of the retry hint."""

    def test_retry_after_counts_from_oldest(self, clock):
        limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("a", now=4)
        assert limiter.check_rate_limit("a", now=6).retry_after == 4

    def test_retry_after_rounds_up(self, limiter):
        limiter.check_rate_limit("a", now=0)
        assert limiter.check_rate_limit("a", now=0.5).retry_after == 3

    def test_retry_after_is_at_least_one_second(self, limiter):
        limiter.check_rate_limit("a", now=0)
        assert limiter.check_rate_limit("a", now=2.9).retry_after == 1

    def test_retry_after_immediately_after_admission(self, limiter):
        limiter.check_rate_limit("a", now=10)
        assert limiter.check_rate_limit("a", now=10).retry_after == 3


class TestIndependence:
    """Identifiers never influence each other."""

    def test_interleaved_identifiers(self, limiter):
        assert limiter.check_rate_limit("a", now=0).allowed
        assert limiter.check_rate_limit("b", now=0).allowed
        assert not limiter.check_rate_limit("a", now=1).allowed
        assert not limiter.check_rate_limit("b", now=1).allowed
        assert limiter.check_rate_limit("c", now=1).allowed

    def test_reset_of_one_identifier_keeps_others(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("b", now=0)
        limiter.reset_rate_limit("a")
        assert limiter.check_rate_limit("a", now=1).allowed
        assert not limiter.check_rate_limit("b", now=1).allowed


class TestStatus:
    """Read-only status reporting."""

    def test_unknown_identifier(self, limiter):
        status = limiter.get_rate_limit_status("nobody", now=0)
        assert status.count == 0
        assert status.next_allowed_at is None

    def test_unknown_identifier_is_not_created(self, limiter):
        limiter.get_rate_limit_status("nobody", now=0)
        assert "nobody" not in limiter
        assert len(limiter) == 0

    def test_at_capacity_reports_next_allowed_at(self, limiter):
        limiter.check_rate_limit("a", now=5)
        status = limiter.get_rate_limit_status("a", now=6)
        assert status.count == 1
        assert status.next_allowed_at == 8

    def test_below_capacity_has_no_next_allowed_at(self, clock):
        limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.check_rate_limit("a", now=0)
        status = limiter.get_rate_limit_status("a", now=1)
        assert status.count == 1
        assert status.next_allowed_at is None

    def test_expired_admissions_not_counted(self, limiter):
        limiter.check_rate_limit("a", now=0)
        assert limiter.get_rate_limit_status("a", now=3).count == 0

    def test_status_does_not_consume_quota(self, limiter):
        limiter.check_rate_limit("a", now=0)
        for t in (0.5, 1, 2, 2.5):
            limiter.get_rate_limit_status("a", now=t)
        assert limiter.check_rate_limit("a", now=3).allowed

    def test_status_does_not_affect_denial(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.get_rate_limit_status("a", now=1)
        result = limiter.check_rate_limit("a", now=1)
        assert result.allowed is False
        assert result.retry_after == 2

    def test_status_does_not_refresh_idle_clock(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.get_rate_limit_status("a", now=290)
        limiter.check_rate_limit("b", now=301)
        assert "a" not in limiter


class TestReset:
    """Explicit record removal."""

    def test_reset_behaves_like_fresh_identifier(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.reset_rate_limit("a")
        assert "a" not in limiter
        assert limiter.check_rate_limit("a", now=0).allowed

    def test_reset_unknown_identifier_is_noop(self, limiter):
        limiter.reset_rate_limit("never-seen")
        limiter.reset_rate_limit("never-seen")
        assert len(limiter) == 0


class TestSweep:
    """Idle eviction piggybacked on admission checks."""

    def test_idle_identifier_evicted(self, limiter):
        limiter.check_rate_limit("idle", now=0)
        limiter.check_rate_limit("active", now=301)
        assert "idle" not in limiter
        assert "active" in limiter
        assert len(limiter) == 1

    def test_not_evicted_before_expiry(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("b", now=300)
        assert "a" in limiter

    def test_sweep_waits_for_interval(self, clock):
        limiter = RateLimiter(
            max_requests=1,
            window_seconds=3,
            sweep_interval_seconds=60,
            idle_expiry_seconds=10,
            clock=clock,
        )
        limiter.check_rate_limit("a", now=0)
        # Idle long enough, but no sweep is due yet
        limiter.check_rate_limit("b", now=30)
        assert "a" in limiter
        limiter.check_rate_limit("b", now=60)
        assert "a" not in limiter

    def test_sweep_runs_at_most_once_per_interval(self, clock):
        limiter = RateLimiter(
            max_requests=1,
            window_seconds=3,
            sweep_interval_seconds=60,
            idle_expiry_seconds=10,
            clock=clock,
        )
        limiter.check_rate_limit("b", now=60)   # sweep runs, marker moves to 60
        limiter.check_rate_limit("a", now=61)
        limiter.check_rate_limit("b", now=100)  # a idle 39s, but next sweep not before 120
        assert "a" in limiter
        limiter.check_rate_limit("b", now=120)
        assert "a" not in limiter

    def test_denied_polling_keeps_record_alive(self, clock):
        limiter = RateLimiter(
            max_requests=1,
            window_seconds=1000,
            sweep_interval_seconds=60,
            idle_expiry_seconds=300,
            clock=clock,
        )
        limiter.check_rate_limit("a", now=0)
        assert not limiter.check_rate_limit("a", now=200).allowed
        limiter.check_rate_limit("b", now=400)
        assert "a" in limiter

    def test_evicted_identifier_starts_fresh(self, limiter):
        limiter.check_rate_limit("a", now=0)
        limiter.check_rate_limit("b", now=301)
        assert limiter.check_rate_limit("a", now=301).allowed

    def test_survivors_are_compacted(self, clock):
        limiter = RateLimiter(
            max_requests=5,
            window_seconds=3,
            sweep_interval_seconds=60,
            idle_expiry_seconds=300,
            clock=clock,
        )
        limiter.check_rate_limit("a", now=1)
        limiter.check_rate_limit("a", now=2)
        assert limiter.get_rate_limit_status("a", now=2.5).count == 2
        limiter.check_rate_limit("b", now=100)
        # Looking back at t=2.5 shows the sweep dropped a's stale admissions
        assert "a" in limiter
        assert limiter.get_rate_limit_status("a", now=2.5).count == 0

    def test_sweep_on_empty_registry(self, limiter):
        assert limiter.check_rate_limit("a", now=1000).allowed
        assert len(limiter) == 1

    def test_sweep_failure_does_not_block_admission(self, clock):
        class FailingSweepLimiter(RateLimiter):
            def _is_idle(self, record, now):
                raise RuntimeError("sweep blew up")

        limiter = FailingSweepLimiter(max_requests=1, window_seconds=3, clock=clock)
        limiter.check_rate_limit("a", now=0)
        result = limiter.check_rate_limit("b", now=120)
        assert result.allowed is True
        assert "a" in limiter
        assert "b" in limiter
        assert not limiter.check_rate_limit("b", now=121).allowed


class TestConcurrency:
    """Linearizable admission under parallel callers."""

    def test_same_identifier_admitted_once(self, limiter):
        workers = 32
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            result = limiter.check_rate_limit("shared", now=0)
            with results_lock:
                results.append(result.allowed)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == workers - 1

    def test_distinct_identifiers_all_admitted(self, limiter):
        workers = 32
        barrier = threading.Barrier(workers)
        results = {}

        def worker(i):
            barrier.wait()
            results[i] = limiter.check_rate_limit(f"session-{i}", now=0).allowed

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(results.values())
        assert len(limiter) == workers
