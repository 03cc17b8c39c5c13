"""Per-user rate limiting and a cap on in-flight conversations."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from fuelintel.core.config import RateLimitConfig

logger = logging.getLogger(__name__)

# Stale windows are pruned at most this often
PRUNE_INTERVAL_SECONDS = 60.0


@dataclass
class RateLimitWindow:
    """Fixed-window counter for one user."""

    window_start: float
    count: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Limit that was applied.
        remaining: Requests left in the current window.
        retry_after: Seconds until the window resets (0 when allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after: float = 0.0


class ConcurrencyGuard:
    """Fixed-window per-user rate limiter plus an active-conversation counter.

    All state is guarded by one threading.Lock, so N concurrent checks for the
    same user never admit more than the limit within one window.

    Args:
        max_requests: Requests allowed per user per window.
        window_seconds: Window length.
        max_concurrent_conversations: Cap on conversations in flight.
        backpressure_ratio: Load ratio at which the guard reports backpressure.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        max_concurrent_conversations: int = 100,
        backpressure_ratio: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_concurrent_conversations = max_concurrent_conversations
        self.backpressure_ratio = backpressure_ratio
        self._clock = clock

        self._lock = Lock()
        self._windows: dict[str, RateLimitWindow] = {}
        self._active: dict[str, int] = {}
        self._last_prune = clock()
        self._rejected = 0

    @classmethod
    def from_config(cls, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic) -> "ConcurrencyGuard":
        return cls(
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
            max_concurrent_conversations=config.max_concurrent_conversations,
            backpressure_ratio=config.backpressure_ratio,
            clock=clock,
        )

    def _prune(self, now: float) -> None:
        if now - self._last_prune < PRUNE_INTERVAL_SECONDS:
            return
        stale = [key for key, w in self._windows.items() if now - w.window_start >= self.window_seconds]
        for key in stale:
            del self._windows[key]
        self._last_prune = now

    def try_acquire(self, user_key: str, limit: int | None = None) -> RateLimitDecision:
        """Count one request for a user and decide whether it may proceed.

        Args:
            user_key: User identity.
            limit: Override for max_requests (e.g., reduced in slow mode).

        Returns:
            RateLimitDecision for this request.
        """
        limit = self.max_requests if limit is None else max(1, limit)
        with self._lock:
            now = self._clock()
            self._prune(now)

            window = self._windows.get(user_key)
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateLimitWindow(window_start=now)
                self._windows[user_key] = window

            if window.count >= limit:
                self._rejected += 1
                retry_after = max(0.0, self.window_seconds - (now - window.window_start))
                return RateLimitDecision(allowed=False, limit=limit, remaining=0, retry_after=retry_after)

            window.count += 1
            return RateLimitDecision(allowed=True, limit=limit, remaining=limit - window.count)

    def reset(self, user_key: str) -> None:
        with self._lock:
            self._windows.pop(user_key, None)

    def enter_conversation(self, user_key: str) -> bool:
        """Register an in-flight conversation turn.

        Returns:
            False if the cap is reached; the caller must not call
            leave_conversation in that case.
        """
        with self._lock:
            total = sum(self._active.values())
            if total >= self.max_concurrent_conversations:
                return False
            self._active[user_key] = self._active.get(user_key, 0) + 1
            return True

    def leave_conversation(self, user_key: str) -> None:
        with self._lock:
            count = self._active.get(user_key, 0)
            if count <= 1:
                self._active.pop(user_key, None)
            else:
                self._active[user_key] = count - 1

    @property
    def active_conversations(self) -> int:
        with self._lock:
            return sum(self._active.values())

    def load_ratio(self) -> float:
        """Active conversations as a fraction of the cap."""
        if self.max_concurrent_conversations <= 0:
            return 1.0
        return self.active_conversations / self.max_concurrent_conversations

    def is_under_backpressure(self) -> bool:
        return self.load_ratio() >= self.backpressure_ratio

    def stats(self) -> dict[str, Any]:
        with self._lock:
            active = sum(self._active.values())
            tracked = len(self._windows)
            rejected = self._rejected
        return {
            "active_conversations": active,
            "max_concurrent_conversations": self.max_concurrent_conversations,
            "load_ratio": active / self.max_concurrent_conversations if self.max_concurrent_conversations else 1.0,
            "tracked_users": tracked,
            "rate_limited": rejected,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }
