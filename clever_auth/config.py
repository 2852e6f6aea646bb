"""Config discovery and loading for clever-auth."""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "https://api.clever-cloud.com"
DEFAULT_CONSOLE_HOST = "console.clever-cloud.com"
DEFAULT_CLIENT_VERSION = f"clever-auth-{__version__}"
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 60
DEFAULT_REQUEST_TIMEOUT = 30.0

CONFIG_FILE_NAME = "clever-auth.json"

# Directories to search for the config file, in priority order
CONFIG_SEARCH_DIRS = [
    Path("."),
    Path.home() / ".config" / "clever-auth",
]

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "clever-auth" / ".env",
]

# Environment variables that override config file values
ENV_OVERRIDES = {
    "consumer_key": "CLEVER_CONSUMER_KEY",
    "consumer_secret": "CLEVER_CONSUMER_SECRET",
    "api_token": "CLEVER_API_TOKEN",
    "api_host": "CLEVER_API_HOST",
    "console_host": "CLEVER_CONSOLE_HOST",
    "poll_interval": "CLEVER_POLL_INTERVAL",
    "max_poll_attempts": "CLEVER_POLL_MAX_ATTEMPTS",
    "request_timeout": "CLEVER_REQUEST_TIMEOUT",
}

KNOWN_KEYS = set(ENV_OVERRIDES) | {"client_version", "store_dir"}


class ConfigError(Exception):
    """Invalid configuration value."""

    pass


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Missing vars resolve to empty string.
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r'\$\{([^}]+)\}', value):
        env_var = match.group(1)
        env_value = os.environ.get(env_var, "")
        result = result.replace(match.group(0), env_value)
    return result


@dataclass
class Config:
    """Complete clever-auth configuration."""

    consumer_key: str = ""
    consumer_secret: str = ""
    api_token: str | None = None  # Legacy bearer token
    api_host: str = DEFAULT_API_HOST
    console_host: str = DEFAULT_CONSOLE_HOST
    client_version: str = DEFAULT_CLIENT_VERSION
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    store_dir: Path | None = None
    config_path: Path | None = None
    env_path: Path | None = None

    def has_consumer(self) -> bool:
        """Check that the application's consumer key and secret are set."""
        return bool(self.consumer_key) and bool(self.consumer_secret)


def find_config_file(explicit_path: Path | None = None) -> Path | None:
    """Find the config file, checking the current then the user directory.

    Raises:
        ConfigError: If an explicit path is given but does not exist
    """
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for search_dir in CONFIG_SEARCH_DIRS:
        candidate = search_dir / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _parse_number(name: str, value: Any, kind: type) -> Any:
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r} (expected {kind.__name__})") from e
    if number <= 0:
        raise ConfigError(f"Invalid value for {name}: {value!r} (must be positive)")
    return number


def parse_config(data: dict[str, Any]) -> Config:
    """Build a Config from a flat dictionary of settings."""
    unknown = set(data) - KNOWN_KEYS
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

    store_dir = data.get("store_dir")
    return Config(
        consumer_key=data.get("consumer_key") or "",
        consumer_secret=data.get("consumer_secret") or "",
        api_token=data.get("api_token") or None,
        api_host=data.get("api_host") or DEFAULT_API_HOST,
        console_host=data.get("console_host") or DEFAULT_CONSOLE_HOST,
        client_version=data.get("client_version") or DEFAULT_CLIENT_VERSION,
        poll_interval=_parse_number(
            "poll_interval", data.get("poll_interval", DEFAULT_POLL_INTERVAL), float
        ),
        max_poll_attempts=_parse_number(
            "max_poll_attempts", data.get("max_poll_attempts", DEFAULT_MAX_POLL_ATTEMPTS), int
        ),
        request_timeout=_parse_number(
            "request_timeout", data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT), float
        ),
        store_dir=Path(store_dir).expanduser() if store_dir else None,
    )


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> Config:
    """Load configuration from files and the environment.

    Sources, lowest priority first:
    1. Built-in defaults
    2. clever-auth.json (string values may use ${VAR} references)
    3. CLEVER_* environment variables (a .env file is loaded first)

    Args:
        config_path: Explicit path to config file (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        Config object

    Raises:
        ConfigError: If a value is invalid or an explicit config file is missing
        json.JSONDecodeError: If the config file is invalid JSON
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config_file = find_config_file(config_path)
    data: dict[str, Any] = {}
    if config_file:
        with open(config_file) as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {config_file} must contain a JSON object")
        data = {
            key: _resolve_env_vars(value) if isinstance(value, str) else value
            for key, value in loaded.items()
        }

    for key, env_var in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_var)
        if env_value:
            data[key] = env_value

    config = parse_config(data)
    config.config_path = config_file
    config.env_path = env_file
    return config
