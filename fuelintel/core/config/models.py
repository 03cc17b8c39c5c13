"""Pydantic configuration models for FuelIntel.

This module defines all configuration models used throughout FuelIntel.
For loading and merging logic, see loader.py.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class LoggingConfig(BaseModel):
    """Configuration for logging system."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    directory: str = Field(default="logs", description="Directory for log files")
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB before rotation")
    backup_count: int = Field(default=5, description="Number of backup log files to keep")


class TelegramConfig(BaseModel):
    """Telegram bot binding."""

    token: str | None = Field(default=None, description="Bot token (falls back to TELEGRAM_BOT_TOKEN)")
    allowed_users: list[int] = Field(default_factory=list, description="Allowed user IDs")
    allow_all: bool = Field(default=True, description="Allow every user; the bot is public by default")
    admin_users: list[int] = Field(default_factory=list, description="User IDs allowed to run admin commands")

    model_config = {"extra": "allow"}


class SessionConfig(BaseModel):
    """Conversation session persistence."""

    ttl_seconds: int = Field(default=1800, description="Sliding expiry for stored sessions")
    context_ttl_seconds: int = Field(default=300, description="Lifetime of conversational context")
    history_size: int = Field(default=5, description="Query/response pairs kept per session")
    compression: bool = Field(default=True, description="zlib-compress stored session payloads")
    key_prefix: str = Field(default="fuelintel:session", description="Key prefix in the key-value store")
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for session storage (in-memory store when unset)",
    )


class WizardConfig(BaseModel):
    """Multi-step dialog behaviour."""

    ttl_seconds: int = Field(default=300, description="Seconds before an idle wizard is abandoned")


class RateLimitConfig(BaseModel):
    """Per-user rate limiting and conversation concurrency."""

    max_requests: int = Field(default=60, description="Requests allowed per user per window")
    window_seconds: int = Field(default=60, description="Fixed window length in seconds")
    slow_mode_rate_factor: float = Field(
        default=0.5, description="Multiplier applied to max_requests while slow mode is on"
    )
    max_concurrent_conversations: int = Field(default=100, description="Cap on in-flight conversations")
    backpressure_ratio: float = Field(default=0.8, description="Load ratio considered backpressure")

    @field_validator("slow_mode_rate_factor")
    @classmethod
    def validate_factor(cls, v: float) -> float:
        """Factor must scale the limit down, never to zero."""
        if not 0 < v <= 1:
            raise ValueError("slow_mode_rate_factor must be in (0, 1]")
        return v


class CircuitBreakerConfig(BaseModel):
    """Settings for one circuit breaker."""

    failure_threshold: int = Field(default=5, description="Consecutive failures before opening")
    cooldown_seconds: float = Field(default=60.0, description="Seconds the breaker stays open")
    half_open_max_calls: int = Field(default=1, description="Trial calls admitted while half-open")


class NlpConfig(BaseModel):
    """External intent classifier and gateway behaviour."""

    api_url: str | None = Field(default=None, description="OpenAI-compatible API base URL")
    api_key: str | None = Field(default=None, description="API key for the classifier")
    model: str = Field(default="deepseek-chat", description="Classifier model identifier")
    timeout_seconds: float = Field(default=2.0, description="Hard timeout for one classifier call")
    confidence_threshold: float = Field(default=0.7, description="Below this a result is low confidence")
    context_window: int = Field(default=3, description="Prior history queries sent with each request")
    temperature: float = Field(default=0.1, description="Sampling temperature")
    max_tokens: int = Field(default=300, description="Completion token cap")


class LevelFlagsConfig(BaseModel):
    """Feature flags for one degradation level."""

    nlp_enabled: bool = True
    analytics_enabled: bool = True
    slow_mode_enabled: bool = False
    read_only: bool = False


def _default_levels() -> dict[str, LevelFlagsConfig]:
    return {
        "normal": LevelFlagsConfig(),
        "degraded": LevelFlagsConfig(
            nlp_enabled=False, analytics_enabled=False, slow_mode_enabled=True
        ),
        "minimal": LevelFlagsConfig(
            nlp_enabled=False, analytics_enabled=False, slow_mode_enabled=True, read_only=True
        ),
    }


class DegradationConfig(BaseModel):
    """Health thresholds and per-level feature flags."""

    latency_threshold_ms: float = Field(default=1500.0, description="p95 latency that triggers degradation")
    latency_window: int = Field(default=50, description="Latency samples kept for p95")
    latency_sample_ttl_seconds: float = Field(
        default=300.0, description="Latency samples older than this are ignored"
    )
    levels: dict[str, LevelFlagsConfig] = Field(default_factory=_default_levels)


class PricesConfig(BaseModel):
    """Development price repository."""

    seed_file: Path | None = Field(default=None, description="YAML file with stations, prices and users")


class Config(BaseModel):
    """Root configuration for FuelIntel."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    wizard: WizardConfig = Field(default_factory=WizardConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    circuit_breakers: dict[str, CircuitBreakerConfig] = Field(
        default_factory=lambda: {"classifier": CircuitBreakerConfig()},
        description="Breaker settings keyed by protected dependency",
    )
    nlp: NlpConfig = Field(default_factory=NlpConfig)
    degradation: DegradationConfig = Field(default_factory=DegradationConfig)
    prices: PricesConfig = Field(default_factory=PricesConfig)

    model_config = {"extra": "allow"}

    def breaker(self, name: str) -> CircuitBreakerConfig:
        """Breaker settings for a dependency, defaults when not configured."""
        return self.circuit_breakers.get(name) or CircuitBreakerConfig()
