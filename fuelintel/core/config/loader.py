"""Configuration loading utilities.

Reads the YAML config file, expands ${VAR} references from the environment
and validates the result into the Config model.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from fuelintel.core.config.models import Config

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(value: Any) -> Any:
    """Recursively replace ${VAR} patterns with environment values.

    Unknown variables are left untouched so check_unexpanded_vars can report
    them.

    Examples:
        >>> os.environ['BOT_TOKEN'] = 'abc'
        >>> expand_env_vars({'telegram': {'token': '${BOT_TOKEN}'}})
        {'telegram': {'token': 'abc'}}
    """
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if isinstance(value, str):
        return _VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    return value


def check_unexpanded_vars(data: Any, source: str) -> None:
    """Fail loudly when ${VAR} references survived expansion.

    Raises:
        ValueError: If any ${VAR} patterns remain unresolved.
    """
    found: set[str] = set()

    def walk(obj: Any) -> None:
        if isinstance(obj, dict):
            for item in obj.values():
                walk(item)
        elif isinstance(obj, list):
            for item in obj:
                walk(item)
        elif isinstance(obj, str):
            found.update(f"${{{name}}}" for name in _VAR_PATTERN.findall(obj))

    walk(data)
    if found:
        raise ValueError(
            f"Unresolved environment variable(s) in {source}: {', '.join(sorted(found))}. "
            f"Set these variables or remove the ${{VAR}} references."
        )


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML file. None returns the built-in defaults.

    Returns:
        Validated Config.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is malformed.
        ValueError: If environment variables are unresolved.
    """
    if path is None:
        return Config()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open(encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    data = expand_env_vars(data)
    check_unexpanded_vars(data, source=str(config_path))

    return Config(**data)
