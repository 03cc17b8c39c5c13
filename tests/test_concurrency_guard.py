"""Tests for per-user rate limiting and the conversation cap."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from fuelintel.core.config import RateLimitConfig
from fuelintel.resilience.concurrency import ConcurrencyGuard


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestRateLimit:
    """Fixed-window counting."""

    def test_admits_up_to_limit(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=3, window_seconds=60, clock=clock)

        decisions = [guard.try_acquire("telegram:1") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[0].remaining == 2
        assert decisions[3].remaining == 0

    def test_retry_after_counts_down(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=1, window_seconds=60, clock=clock)
        guard.try_acquire("telegram:1")

        clock.now = 45
        decision = guard.try_acquire("telegram:1")
        assert not decision.allowed
        assert decision.retry_after == pytest.approx(15)

    def test_window_resets(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=1, window_seconds=60, clock=clock)
        assert guard.try_acquire("telegram:1").allowed
        assert not guard.try_acquire("telegram:1").allowed

        clock.now = 60
        assert guard.try_acquire("telegram:1").allowed

    def test_users_are_independent(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=1, clock=clock)
        assert guard.try_acquire("telegram:1").allowed
        assert guard.try_acquire("telegram:2").allowed

    def test_limit_override(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=10, clock=clock)
        decisions = [guard.try_acquire("telegram:1", limit=2) for _ in range(3)]

        assert [d.allowed for d in decisions] == [True, True, False]
        assert decisions[0].limit == 2

    def test_reset(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_requests=1, clock=clock)
        guard.try_acquire("telegram:1")
        guard.reset("telegram:1")
        assert guard.try_acquire("telegram:1").allowed

    def test_concurrent_checks_never_exceed_limit(self):
        guard = ConcurrencyGuard(max_requests=25, window_seconds=3600)

        with ThreadPoolExecutor(max_workers=16) as pool:
            decisions = list(pool.map(lambda _: guard.try_acquire("telegram:1"), range(200)))

        assert sum(d.allowed for d in decisions) == 25
        assert guard.stats()["rate_limited"] == 175


class TestConversations:
    """In-flight conversation counting and load."""

    def test_cap(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_concurrent_conversations=2, clock=clock)

        assert guard.enter_conversation("telegram:1")
        assert guard.enter_conversation("telegram:2")
        assert not guard.enter_conversation("telegram:3")

        guard.leave_conversation("telegram:1")
        assert guard.enter_conversation("telegram:3")

    def test_load_ratio_and_backpressure(self, clock: FakeClock):
        guard = ConcurrencyGuard(max_concurrent_conversations=5, backpressure_ratio=0.8, clock=clock)
        for i in range(4):
            guard.enter_conversation(f"telegram:{i}")

        assert guard.active_conversations == 4
        assert guard.load_ratio() == pytest.approx(0.8)
        assert guard.is_under_backpressure()

    def test_same_user_counts_each_turn(self, clock: FakeClock):
        guard = ConcurrencyGuard(clock=clock)
        guard.enter_conversation("telegram:1")
        guard.enter_conversation("telegram:1")
        guard.leave_conversation("telegram:1")

        assert guard.active_conversations == 1

    def test_from_config(self, clock: FakeClock):
        config = RateLimitConfig(max_requests=30, window_seconds=10, max_concurrent_conversations=7)
        guard = ConcurrencyGuard.from_config(config, clock=clock)

        assert guard.max_requests == 30
        assert guard.window_seconds == 10
        assert guard.max_concurrent_conversations == 7
