"""Process-wide degradation level derived from health signals.

Three signals feed the level: open circuit breakers, conversation load and
p95 latency of classifier calls. One active signal degrades the service, two
at once (or load at the hard cap) drop it to minimal. Each level maps to a
set of feature flags consulted on every dispatch.
"""

import logging
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from threading import Lock
from typing import Any

from fuelintel import messages
from fuelintel.core.config import DegradationConfig, LevelFlagsConfig
from fuelintel.resilience.circuit_breaker import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)


class DegradationLevel(StrEnum):
    """Service levels, from fully featured to read-only."""

    NORMAL = "normal"
    DEGRADED = "degraded"
    MINIMAL = "minimal"


_SEVERITY = {DegradationLevel.NORMAL: 0, DegradationLevel.DEGRADED: 1, DegradationLevel.MINIMAL: 2}


@dataclass(frozen=True)
class FeatureFlags:
    """Features available at a degradation level."""

    nlp_enabled: bool = True
    analytics_enabled: bool = True
    slow_mode_enabled: bool = False
    read_only: bool = False

    @classmethod
    def from_config(cls, config: LevelFlagsConfig) -> "FeatureFlags":
        return cls(**config.model_dump())


DEFAULT_LEVEL_FLAGS = {
    DegradationLevel.NORMAL: FeatureFlags(),
    DegradationLevel.DEGRADED: FeatureFlags(nlp_enabled=False, analytics_enabled=False, slow_mode_enabled=True),
    DegradationLevel.MINIMAL: FeatureFlags(
        nlp_enabled=False, analytics_enabled=False, slow_mode_enabled=True, read_only=True
    ),
}

# Canned answers per degraded service, matched by keyword against the query
FALLBACK_RESPONSES: dict[str, dict[str, str]] = {
    "classifier": {
        "precio": messages.FALLBACK_CLASSIFIER_PRICE,
        "gasolina": messages.FALLBACK_CLASSIFIER_FUEL,
        "default": messages.FALLBACK_CLASSIFIER,
    },
    "prices": {
        "precios": messages.FALLBACK_PRICES_CACHED,
        "default": messages.FALLBACK_PRICES,
    },
    "analytics": {
        "tendencia": messages.FALLBACK_ANALYTICS_TRENDS,
        "analisis": messages.FALLBACK_ANALYTICS_ANALYSIS,
        "default": messages.FALLBACK_ANALYTICS,
    },
}


class DegradationController:
    """Holds the current degradation level and its feature flags.

    The level is re-derived from the latest signals whenever it is read, so it
    recovers on its own once signals clear. Breakers are read live: an open
    breaker whose cool-down has elapsed reports half-open, stops counting as a
    signal, and lets the trial call through. Latency samples older than
    ``latency_sample_ttl`` are ignored for the same reason.

    A forced level overrides derivation until clear_override() is called.
    Signals keep being recorded meanwhile.

    Args:
        levels: Feature flags per level (defaults to DEFAULT_LEVEL_FLAGS).
        backpressure_ratio: Load ratio that counts as a degradation signal.
        latency_threshold_ms: p95 latency above which latency is a signal.
        latency_window: Number of latency samples kept.
        latency_sample_ttl: Seconds after which a latency sample is ignored.
        latency_source: Breaker of the dependency whose calls are timed. While
            it is open, slow calls and the open breaker are one signal.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        levels: dict[DegradationLevel, FeatureFlags] | None = None,
        backpressure_ratio: float = 0.8,
        latency_threshold_ms: float = 1500.0,
        latency_window: int = 50,
        latency_sample_ttl: float = 300.0,
        latency_source: str | None = "classifier",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._levels = {**DEFAULT_LEVEL_FLAGS, **(levels or {})}
        self.backpressure_ratio = backpressure_ratio
        self.latency_threshold_ms = latency_threshold_ms
        self.latency_sample_ttl = latency_sample_ttl
        self.latency_source = latency_source
        self._clock = clock

        self._lock = Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._load = 0.0
        self._latencies: deque[tuple[float, float]] = deque(maxlen=latency_window)
        self._override: DegradationLevel | None = None
        self._level = DegradationLevel.NORMAL

    @classmethod
    def from_config(
        cls,
        config: DegradationConfig,
        backpressure_ratio: float = 0.8,
        latency_source: str | None = "classifier",
        clock: Callable[[], float] = time.monotonic,
    ) -> "DegradationController":
        levels = {}
        for name, flags in config.levels.items():
            try:
                levels[DegradationLevel(name)] = FeatureFlags.from_config(flags)
            except ValueError:
                logger.warning(f"Ignoring flags for unknown degradation level '{name}'")
        return cls(
            levels=levels,
            backpressure_ratio=backpressure_ratio,
            latency_threshold_ms=config.latency_threshold_ms,
            latency_window=config.latency_window,
            latency_sample_ttl=config.latency_sample_ttl_seconds,
            latency_source=latency_source,
            clock=clock,
        )

    # Signals

    def watch(self, breaker: CircuitBreaker) -> None:
        """Treat an open breaker as a degradation signal."""
        with self._lock:
            self._breakers[breaker.name] = breaker
        breaker.add_listener(self._on_breaker_change)

    def _on_breaker_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        logger.debug(f"Breaker '{name}' changed {old} -> {new}, re-evaluating level")
        self._evaluate()

    def record_load(self, ratio: float) -> None:
        with self._lock:
            self._load = max(0.0, ratio)
        self._evaluate()

    def record_latency(self, ms: float) -> None:
        with self._lock:
            self._latencies.append((self._clock(), ms))
        self._evaluate()

    def p95_latency(self) -> float | None:
        """95th percentile of recent latency samples, None without samples."""
        with self._lock:
            return self._p95_locked()

    def _p95_locked(self) -> float | None:
        cutoff = self._clock() - self.latency_sample_ttl
        samples = sorted(ms for ts, ms in self._latencies if ts >= cutoff)
        if not samples:
            return None
        index = max(0, math.ceil(0.95 * len(samples)) - 1)
        return samples[index]

    def _open_breakers(self) -> list[str]:
        # Reads breaker locks; never called while holding self._lock
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.name for b in breakers if b.state == CircuitState.OPEN]

    def active_signals(self) -> list[str]:
        """Names of the signals currently pushing the level down."""
        open_breakers = self._open_breakers()
        signals = [f"breaker:{name}" for name in open_breakers]
        with self._lock:
            if self._load >= self.backpressure_ratio:
                signals.append("load")
            p95 = self._p95_locked()
            if p95 is not None and p95 > self.latency_threshold_ms and self.latency_source not in open_breakers:
                signals.append("latency")
        return signals

    def _derive(self) -> DegradationLevel:
        signals = self.active_signals()
        with self._lock:
            saturated = self._load >= 1.0
        if saturated or len(signals) >= 2:
            return DegradationLevel.MINIMAL
        if signals:
            return DegradationLevel.DEGRADED
        return DegradationLevel.NORMAL

    def _evaluate(self) -> DegradationLevel:
        derived = self._derive()
        with self._lock:
            effective = self._override or derived
            previous = self._level
            self._level = effective
        if effective != previous:
            self._log_change(previous, effective)
        return effective

    def _log_change(self, old: DegradationLevel, new: DegradationLevel) -> None:
        if _SEVERITY[new] > _SEVERITY[old]:
            logger.warning(f"Degradation level changed {old} -> {new}")
        else:
            logger.info(f"Degradation level recovered {old} -> {new}")

    # Reads

    @property
    def level(self) -> DegradationLevel:
        return self._evaluate()

    @property
    def flags(self) -> FeatureFlags:
        return self._levels[self.level]

    def is_feature_enabled(self, name: str) -> bool:
        """Check a feature by name: ``nlp``, ``analytics`` or ``writes``.

        Unknown feature names are always enabled.
        """
        flags = self.flags
        if name == "nlp":
            return flags.nlp_enabled
        if name == "analytics":
            return flags.analytics_enabled
        if name == "writes":
            return not flags.read_only
        return True

    def is_slow_mode_enabled(self) -> bool:
        return self.flags.slow_mode_enabled

    # Operational control

    def force_level(self, level: DegradationLevel | str) -> DegradationLevel:
        """Pin the level until clear_override() is called.

        Raises:
            ValueError: If the level name is unknown.
        """
        level = DegradationLevel(level)
        with self._lock:
            self._override = level
        logger.warning(f"Degradation level forced to {level}")
        return self._evaluate()

    def clear_override(self) -> DegradationLevel:
        with self._lock:
            had_override = self._override is not None
            self._override = None
        if had_override:
            logger.info("Degradation override cleared")
        return self._evaluate()

    @property
    def override(self) -> DegradationLevel | None:
        with self._lock:
            return self._override

    def fallback_response(self, service: str, query: str | None = None) -> str:
        """Canned answer for a degraded service.

        The first keyword found in the query selects the answer; otherwise the
        service default is used. Unknown services get the generic message.
        """
        responses = FALLBACK_RESPONSES.get(service)
        if responses is None:
            return messages.SERVICE_UNAVAILABLE
        if query:
            lowered = query.lower()
            for keyword, response in responses.items():
                if keyword != "default" and keyword in lowered:
                    return response
        return responses["default"]

    def status_report(self) -> dict[str, Any]:
        level = self.level
        with self._lock:
            breakers = list(self._breakers.values())
            load = self._load
            p95 = self._p95_locked()
            override = self._override
        return {
            "level": level.value,
            "override": override.value if override else None,
            "flags": asdict(self._levels[level]),
            "breakers": {b.name: b.state.value for b in breakers},
            "load": round(load, 3),
            "p95_latency_ms": p95,
            "latency_threshold_ms": self.latency_threshold_ms,
        }
