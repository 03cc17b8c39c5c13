"""Core functionality for FuelIntel: configuration, logging and errors."""

from fuelintel.core.config import Config, load_config
from fuelintel.core.logging import setup_logging

__all__ = [
    "Config",
    "load_config",
    "setup_logging",
]
