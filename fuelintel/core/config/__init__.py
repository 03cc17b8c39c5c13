"""Configuration package for FuelIntel.

Pydantic configuration models and loading utilities, re-exported at the
package level.
"""

from fuelintel.core.config.loader import check_unexpanded_vars, expand_env_vars, load_config
from fuelintel.core.config.models import (
    CircuitBreakerConfig,
    Config,
    DegradationConfig,
    LevelFlagsConfig,
    LoggingConfig,
    NlpConfig,
    PricesConfig,
    RateLimitConfig,
    SessionConfig,
    TelegramConfig,
    WizardConfig,
)

__all__ = [
    # Models
    "CircuitBreakerConfig",
    "Config",
    "DegradationConfig",
    "LevelFlagsConfig",
    "LoggingConfig",
    "NlpConfig",
    "PricesConfig",
    "RateLimitConfig",
    "SessionConfig",
    "TelegramConfig",
    "WizardConfig",
    # Loaders
    "check_unexpanded_vars",
    "expand_env_vars",
    "load_config",
]
