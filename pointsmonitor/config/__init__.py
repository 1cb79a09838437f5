"""Configuration loading, validation and the durable config store."""

from .settings import (
    GlobalConfig,
    ConfigStore,
    load_global_config,
    validate_config,
    get_env_name,
)

__all__ = [
    'GlobalConfig',
    'ConfigStore',
    'load_global_config',
    'validate_config',
    'get_env_name',
]
