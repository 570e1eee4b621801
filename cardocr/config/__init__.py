"""Configuration management package."""

from .defaults import DEFAULT_CONFIG
from .env_config import EnvironmentConfig, EnvironmentConfigError, load_environment_config
from .settings import Config, load_config, save_config

__all__ = [
    "DEFAULT_CONFIG", "Config", "load_config", "save_config",
    "EnvironmentConfig", "EnvironmentConfigError", "load_environment_config",
]
