"""
Global configuration management for the Twitch Channel Points Monitor.

This module handles loading and validation of environment variables,
the optional ``config.json`` file and the durable store that refreshed
tokens are written back to.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from dotenv import load_dotenv

from .constants import CONFIG_KEYS, DEFAULTS, TOKEN_REFRESH, TIMEOUTS
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Required field presets for the different entry points
REQUIRED_FIELDS: Dict[str, List[str]] = {
    'client': ['client_id', 'access_token', 'broadcaster_id'],
    'oauth': ['client_id', 'client_secret'],
    'minimal': ['client_id'],
}


def get_env_name(field: str) -> str:
    """Convert a config field name to its environment variable name."""
    return CONFIG_KEYS.get(field, field.upper())


@dataclass
class GlobalConfig:
    """Global configuration settings loaded from config.json and environment variables."""

    client_id: Optional[str]
    client_secret: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str]
    broadcaster_id: Optional[str]
    redirect_uri: str
    port: int
    config_path: str
    log_level: str = "INFO"
    log_format: str = "console"
    log_file: Optional[str] = None
    token_refresh_interval: int = TOKEN_REFRESH.INTERVAL
    http_timeout: int = TIMEOUTS.API_REQUEST
    allow_keepalive: bool = False

    @property
    def can_refresh(self) -> bool:
        """Automatic refresh needs a refresh token and the client secret."""
        return bool(self.refresh_token and self.client_secret)


class ConfigStore:
    """
    Durable JSON configuration store.

    The file uses the environment variable names as keys, e.g.
    ``{"TWITCH_CLIENT_ID": "...", "TWITCH_ACCESS_TOKEN": "..."}``.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        """
        Initialize ConfigStore.

        Args:
            path: Location of config.json (defaults to POINTS_MONITOR_CONFIG or ./config.json)
        """
        self.path = Path(path or os.getenv('POINTS_MONITOR_CONFIG', DEFAULTS.CONFIG_PATH))

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Dict[str, Any]:
        """
        Read the configuration file.

        Returns:
            Dict[str, Any]: File contents, empty when the file does not exist

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        if not self.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.path} must contain a JSON object")
        return data

    def apply_to_environment(self) -> bool:
        """
        Copy known keys from the file into the process environment.

        Returns:
            bool: True if the file was loaded, False if absent or unreadable
        """
        try:
            data = self.load()
        except ConfigurationError as e:
            logger.error(f"Error loading configuration file: {e}")
            return False

        if not data:
            return False

        for env_name in CONFIG_KEYS.values():
            if data.get(env_name) is not None:
                os.environ[env_name] = str(data[env_name])

        logger.debug(f"Configuration loaded from {self.path}")
        return True

    def get_credential(self) -> Dict[str, Optional[str]]:
        """Return the credential fields currently stored in the file."""
        data = self.load()
        return {
            field: data.get(CONFIG_KEYS[field])
            for field in ('client_id', 'client_secret', 'access_token', 'refresh_token')
        }

    def save_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """
        Persist a refreshed token pair.

        Args:
            access_token: New access token
            refresh_token: New refresh token (left unchanged when None)

        Raises:
            ConfigurationError: If the file is missing, unreadable or unwritable
        """
        if not self.exists():
            raise ConfigurationError(f"{self.path} not found")

        data = self.load()
        data[CONFIG_KEYS['access_token']] = access_token
        if refresh_token:
            data[CONFIG_KEYS['refresh_token']] = refresh_token
        self._write(data)

    def save(self, values: Dict[str, Any]) -> None:
        """Merge ``values`` (env-name keys) into the file, creating it if needed."""
        data = self.load()
        data.update({key: value for key, value in values.items() if value is not None})
        self._write(data)

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                f.write(json.dumps(data, indent=2) + "\n")
        except OSError as e:
            raise ConfigurationError(f"Failed to write to {self.path}: {e}") from e


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def load_global_config(required: Union[str, Sequence[str]] = 'client',
                       config_path: Union[str, Path, None] = None) -> GlobalConfig:
    """
    Load global configuration from config.json and environment variables.

    Args:
        required: Required field preset ('client', 'oauth', 'minimal') or list of field names
        config_path: Optional path to config.json

    Returns:
        GlobalConfig: Loaded configuration

    Raises:
        ConfigurationError: If required values are missing or malformed
    """
    # Load environment variables from .env file if present
    load_dotenv()

    store = ConfigStore(config_path)
    store.apply_to_environment()

    port = _parse_int('PORT', os.getenv('PORT'), DEFAULTS.PORT)

    config = GlobalConfig(
        client_id=os.getenv('TWITCH_CLIENT_ID'),
        client_secret=os.getenv('TWITCH_CLIENT_SECRET'),
        access_token=os.getenv('TWITCH_ACCESS_TOKEN'),
        refresh_token=os.getenv('TWITCH_REFRESH_TOKEN'),
        broadcaster_id=os.getenv('TWITCH_BROADCASTER_ID'),
        redirect_uri=os.getenv('REDIRECT_URI') or f"http://localhost:{port}/callback",
        port=port,
        config_path=str(store.path),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        log_format=os.getenv('LOG_FORMAT', 'console'),
        log_file=os.getenv('LOG_FILE') or None,
        token_refresh_interval=_parse_int(
            'TOKEN_REFRESH_INTERVAL', os.getenv('TOKEN_REFRESH_INTERVAL'), TOKEN_REFRESH.INTERVAL),
        http_timeout=_parse_int('HTTP_TIMEOUT', os.getenv('HTTP_TIMEOUT'), TIMEOUTS.API_REQUEST),
        allow_keepalive=_parse_bool(os.getenv('ALLOW_KEEPALIVE'), False),
    )

    if isinstance(required, str):
        required_fields = REQUIRED_FIELDS.get(required, REQUIRED_FIELDS['minimal'])
    else:
        required_fields = list(required)

    missing = [field for field in required_fields if not getattr(config, field, None)]
    if missing:
        lines = [
            "Missing required configuration",
            f"Please ensure the following are set in {store.path} or the environment:",
        ]
        lines.extend(f"  - {get_env_name(field)}" for field in missing)
        raise ConfigurationError("\n".join(lines), missing_fields=missing)

    return config


def validate_config(config: GlobalConfig) -> None:
    """
    Validate configuration values for consistency and correctness.

    Args:
        config: Configuration to validate

    Raises:
        ConfigurationError: If configuration is invalid
    """
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config.log_level not in valid_log_levels:
        raise ConfigurationError(f"Invalid log level: {config.log_level}")

    valid_log_formats = ['console', 'json']
    if config.log_format not in valid_log_formats:
        raise ConfigurationError(f"Invalid log format: {config.log_format}")

    if config.port <= 0 or config.port > 65535:
        raise ConfigurationError("PORT must be a valid number between 1 and 65535")

    if config.token_refresh_interval <= 0:
        raise ConfigurationError("TOKEN_REFRESH_INTERVAL must be positive")

    if config.http_timeout <= 0:
        raise ConfigurationError("HTTP_TIMEOUT must be positive")

    if config.refresh_token and not config.client_secret:
        logger.warning("TWITCH_REFRESH_TOKEN is set but TWITCH_CLIENT_SECRET is missing; "
                       "automatic token refresh is disabled")
