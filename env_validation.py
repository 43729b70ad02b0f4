"""Environment variable validation and management."""

import os
import logging
from typing import Dict

from engines.base import resolve_zone

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate process-level configuration.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "PROGRESSION_TIMEZONE": os.getenv("PROGRESSION_TIMEZONE") or "UTC",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "LRS_URL": "Learning Record Store URL",
        "LRS_AUTH": "Learning Record Store authentication",
        "APP_BASE_URL": "Base URL used as the xAPI actor home page",
    }

    zone = os.environ["PROGRESSION_TIMEZONE"]
    try:
        resolve_zone(zone)
    except ValueError:
        raise EnvironmentError(f"Invalid PROGRESSION_TIMEZONE: {zone}") from None

    # Validate URLs
    url_vars = {"LRS_URL", "APP_BASE_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    if os.getenv("LRS_AUTH") and not os.getenv("LRS_URL"):
        logger.warning("LRS_AUTH is set but LRS_URL is not; activity forwarding stays off")

    # Log optional variables status
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
