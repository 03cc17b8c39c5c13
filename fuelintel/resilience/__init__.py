"""Resilience primitives: circuit breaker, rate limiting and degradation."""

from fuelintel.resilience.circuit_breaker import CircuitBreaker, CircuitState
from fuelintel.resilience.concurrency import ConcurrencyGuard, RateLimitDecision, RateLimitWindow
from fuelintel.resilience.degradation import DegradationController, DegradationLevel, FeatureFlags

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ConcurrencyGuard",
    "DegradationController",
    "DegradationLevel",
    "FeatureFlags",
    "RateLimitDecision",
    "RateLimitWindow",
]
