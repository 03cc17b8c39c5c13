"""Circuit breaker guarding calls to one external dependency.

Consecutive failures open the breaker; while open, calls are rejected without
running. After a cool-down a limited number of trial calls decide whether
the breaker closes again or re-opens.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from threading import Lock
from typing import Any, TypeVar

from fuelintel.core.config import CircuitBreakerConfig
from fuelintel.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    """Breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


StateListener = Callable[[str, CircuitState, CircuitState], None]

_HEALTH = {
    CircuitState.CLOSED: "healthy",
    CircuitState.HALF_OPEN: "degraded",
    CircuitState.OPEN: "unhealthy",
}


class CircuitBreaker:
    """Three-state circuit breaker for async operations.

    State transitions happen under a threading.Lock; the guarded operation
    runs outside it. Listeners are notified after the lock is released.

    Args:
        name: Dependency name, used in errors and logs.
        failure_threshold: Consecutive failures that open the breaker.
        cooldown_seconds: Time spent open before trial calls are admitted.
        half_open_max_calls: Trial calls admitted concurrently while half-open.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be at least 1")

        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: float | None = None
        self._last_transition_time: float = clock()
        self._half_open_in_flight = 0
        self._listeners: list[StateListener] = []

    @classmethod
    def from_config(
        cls, name: str, config: CircuitBreakerConfig, clock: Callable[[], float] = time.monotonic
    ) -> "CircuitBreaker":
        return cls(
            name,
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
            half_open_max_calls=config.half_open_max_calls,
            clock=clock,
        )

    def add_listener(self, callback: StateListener) -> None:
        """Register a callback invoked as ``callback(name, old, new)`` on transitions."""
        self._listeners.append(callback)

    # Internal state handling; callers hold self._lock

    def _transition(self, new_state: CircuitState, transitions: list) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._last_transition_time = self._clock()
        if new_state != CircuitState.HALF_OPEN:
            self._half_open_in_flight = 0
        transitions.append((old_state, new_state))

    def _refresh(self, transitions: list) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._last_transition_time >= self.cooldown_seconds
        ):
            self._transition(CircuitState.HALF_OPEN, transitions)

    def _retry_after(self) -> float:
        elapsed = self._clock() - self._last_transition_time
        return max(0.0, self.cooldown_seconds - elapsed)

    def _notify(self, transitions: list) -> None:
        for old_state, new_state in transitions:
            if new_state == CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker '{self.name}' opened after {self._failures} failure(s); "
                    f"cooling down for {self.cooldown_seconds}s"
                )
            elif new_state == CircuitState.CLOSED:
                logger.info(f"Circuit breaker '{self.name}' closed")
            else:
                logger.info(f"Circuit breaker '{self.name}' half-open, admitting trial call")

            for listener in self._listeners:
                try:
                    listener(self.name, old_state, new_state)
                except Exception as e:
                    logger.error(f"Circuit breaker listener failed for '{self.name}': {e}", exc_info=True)

    # Public API

    @property
    def state(self) -> CircuitState:
        """Current state. Reports HALF_OPEN once the cool-down has elapsed."""
        transitions: list = []
        with self._lock:
            self._refresh(transitions)
            state = self._state
        self._notify(transitions)
        return state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def can_attempt(self) -> bool:
        """Whether a call made now would be admitted."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            with self._lock:
                return self._half_open_in_flight < self.half_open_max_calls
        return False

    def _before_call(self) -> bool:
        """Admit or reject a call. Returns True if the call is a trial call."""
        transitions: list = []
        try:
            with self._lock:
                self._refresh(transitions)
                if self._state == CircuitState.OPEN:
                    raise CircuitOpenError(self.name, self._retry_after())
                if self._state == CircuitState.HALF_OPEN:
                    if self._half_open_in_flight >= self.half_open_max_calls:
                        raise CircuitOpenError(self.name, 0.0)
                    self._half_open_in_flight += 1
                    return True
                return False
        finally:
            self._notify(transitions)

    def _on_success(self, probe: bool) -> None:
        transitions: list = []
        with self._lock:
            self._successes += 1
            if probe and self._state == CircuitState.HALF_OPEN:
                self._failures = 0
                self._transition(CircuitState.CLOSED, transitions)
            elif self._state == CircuitState.CLOSED:
                self._failures = 0
        self._notify(transitions)

    def _on_failure(self, probe: bool) -> None:
        transitions: list = []
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()
            if probe and self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, transitions)
            elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._transition(CircuitState.OPEN, transitions)
        self._notify(transitions)

    def _release_probe(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation through the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: If the breaker rejects the call without running it.
            Exception: Whatever the operation raised; it is counted as a failure.
        """
        probe = self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            # Cancellation says nothing about the dependency's health
            if probe:
                self._release_probe()
            raise
        except Exception:
            self._on_failure(probe)
            raise
        self._on_success(probe)
        return result

    def reset(self) -> None:
        """Return to CLOSED and clear all counters."""
        transitions: list = []
        with self._lock:
            self._failures = 0
            self._successes = 0
            self._last_failure_time = None
            self._transition(CircuitState.CLOSED, transitions)
        self._notify(transitions)

    def force_open(self) -> None:
        """Open the breaker now, starting a fresh cool-down."""
        transitions: list = []
        with self._lock:
            self._transition(CircuitState.OPEN, transitions)
            self._last_transition_time = self._clock()
        self._notify(transitions)

    def force_closed(self) -> None:
        """Close the breaker now and clear the failure count."""
        transitions: list = []
        with self._lock:
            self._failures = 0
            self._transition(CircuitState.CLOSED, transitions)
        self._notify(transitions)

    def health_status(self) -> str:
        """Map state to ``healthy``, ``degraded`` or ``unhealthy``."""
        return _HEALTH[self.state]

    def stats(self) -> dict[str, Any]:
        state = self.state
        with self._lock:
            return {
                "name": self.name,
                "state": state.value,
                "failures": self._failures,
                "successes": self._successes,
                "last_failure_time": self._last_failure_time,
                "last_transition_time": self._last_transition_time,
                "retry_after": self._retry_after() if state == CircuitState.OPEN else 0.0,
                "failure_threshold": self.failure_threshold,
                "cooldown_seconds": self.cooldown_seconds,
                "half_open_max_calls": self.half_open_max_calls,
            }
