"""Environment variable validation and management."""

import logging
import os
from typing import Dict

from engines.clock import resolve_timezone

logger = logging.getLogger(__name__)


class EnvironmentConfigError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate configuration variables and apply defaults.

    Raises EnvironmentConfigError if validation fails.
    """
    defaults = {
        "DB_PATH": "progress.db",
        "PROGRESS_TIMEZONE": "UTC",
        "STORE_MAX_RETRIES": "3",
        "CONTENT_GENERATOR_TIMEOUT": "30",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "CONTENT_GENERATOR_URL": "Daily quiz generator endpoint",
        "AD_CALLBACK_SECRET": "Shared secret for signed ad completion callbacks",
    }

    try:
        resolve_timezone(os.environ["PROGRESS_TIMEZONE"])
    except ValueError as exc:
        raise EnvironmentConfigError(str(exc)) from exc

    for var, minimum in (("STORE_MAX_RETRIES", 0), ("CONTENT_GENERATOR_TIMEOUT", 1)):
        raw = os.environ[var]
        try:
            value = int(raw)
        except ValueError as exc:
            raise EnvironmentConfigError(f"{var} must be an integer, got '{raw}'") from exc
        if value < minimum:
            raise EnvironmentConfigError(f"{var} must be >= {minimum}, got {value}")

    # Validate URLs
    for var in ("CONTENT_GENERATOR_URL",):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentConfigError(f"Invalid URL format for {var}: {value}")

    # Log optional variables status
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on bad input."""
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return default
