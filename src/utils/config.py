"""Configuration utility for mirrorbot.

This module provides centralized configuration management with:
- Environment variables as primary source (optionally seeded from a `.env` file)
- Type-safe access to configuration values
- Parsers for the repository and team mapping tables
"""

import os
from typing import Any


def parse_config_value(value: str) -> str | bool | int | None:
    if value.lower() == "true":
        return True
    elif value.lower() == "false":
        return False
    else:
        # Try to parse as a number
        try:
            return int(value)
        except ValueError:
            # Return as string
            return value


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value from environment variables.

    Args:
        key: Configuration key name (e.g., "GITLAB_URL")
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    env_value = os.environ.get(key)
    if env_value is not None:
        return parse_config_value(env_value)

    return default


def get_config_value_str(key: str, default: str | None = None) -> str | None:
    """
    Get a configuration value from environment variables. But sometimes you just want a string.
    Secrets and tokens must go through here so that numeric-looking values are not coerced.
    """
    return os.environ.get(key, default)


def require_config_value(key: str) -> str:
    value = os.environ.get(key)
    if value is None:
        raise ValueError(f"Environment variable {key} is required")
    return value


def get_bot_environment() -> str:
    """Get bot deployment environment from env var."""
    return get_config_value("BOT_ENVIRONMENT", "local")


def parse_pairs(raw: str | None, separator: str = "=") -> list[tuple[str, str]]:
    """Parse `key=value` pairs separated by commas or newlines.

    Example:
        "coq/coq=coq/coq, math-comp/math-comp=math-comp/math-comp"

    Raises:
        ValueError: If an entry does not contain the separator
    """
    if not raw:
        return []

    pairs: list[tuple[str, str]] = []
    for entry in raw.replace("\n", ",").split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, value = entry.partition(separator)
        if not sep or not key.strip() or not value.strip():
            raise ValueError(f"Malformed mapping entry: {entry!r}")
        pairs.append((key.strip(), value.strip()))
    return pairs
