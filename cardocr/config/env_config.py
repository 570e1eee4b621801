"""Environment variable overrides for the configuration.

Values come from the process environment, or from a ``.env`` file when one is
given. Process environment wins over the file.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..core.exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CARDOCR_"
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Immutable environment configuration object."""
    log_level: Optional[str] = None
    debug_logging: bool = False
    models_dir: Optional[str] = None
    detector_model: Optional[str] = None
    grid_model: Optional[str] = None
    digit_model: Optional[str] = None


class EnvironmentConfigError(ConfigError):
    """Invalid value in an environment variable."""
    pass


def load_env_file(env_path: Optional[str] = None) -> Dict[str, str]:
    """Load KEY=VALUE pairs from a .env file; a missing file yields an empty dict."""
    if env_path is None:
        env_path = ".env"

    env_vars: Dict[str, str] = {}
    env_file_path = Path(env_path)

    if not env_file_path.exists():
        logger.debug(f"Environment file {env_path} not found, using system environment only")
        return env_vars

    with open(env_file_path, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                logger.warning(f"Invalid line format in {env_path}:{line_num}: {line}")
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            env_vars[key] = value

    logger.info(f"Loaded {len(env_vars)} variables from {env_path}")
    return env_vars


def get_env_var(key: str, default: Optional[str] = None,
                env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Process environment first, then the loaded .env values, then ``default``."""
    value = os.getenv(key)
    if value is None and env_vars:
        value = env_vars.get(key)
    return default if value is None else value


def _parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ('true', '1', 'yes', 'on')


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Load and validate the ``CARDOCR_*`` overrides.

    Raises:
        EnvironmentConfigError: If a value is invalid
    """
    env_vars = load_env_file(env_file_path)

    log_level = get_env_var(f"{ENV_PREFIX}LOG_LEVEL", env_vars=env_vars)
    if log_level is not None:
        log_level = log_level.strip().upper()
        if log_level not in VALID_LOG_LEVELS:
            raise EnvironmentConfigError(f"Invalid log level: {log_level}")

    models_dir = get_env_var(f"{ENV_PREFIX}MODELS_DIR", env_vars=env_vars)
    if models_dir is not None and not models_dir.strip():
        raise EnvironmentConfigError(f"{ENV_PREFIX}MODELS_DIR cannot be empty")

    return EnvironmentConfig(
        log_level=log_level,
        debug_logging=_parse_bool(get_env_var(f"{ENV_PREFIX}DEBUG", env_vars=env_vars)),
        models_dir=os.path.normpath(models_dir) if models_dir else None,
        detector_model=get_env_var(f"{ENV_PREFIX}DETECTOR_MODEL", env_vars=env_vars),
        grid_model=get_env_var(f"{ENV_PREFIX}GRID_MODEL", env_vars=env_vars),
        digit_model=get_env_var(f"{ENV_PREFIX}DIGIT_MODEL", env_vars=env_vars),
    )
