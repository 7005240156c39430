"""Central configuration for resilient_fetch."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_DEFAULT_API_URL = "https://htd-backend.onrender.com/api"


def _read_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or default)
    except Exception:
        logger.warning("Invalid %s, falling back to %s", name, default)
        return default


def _read_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except Exception:
        logger.warning("Invalid %s, falling back to %s", name, default)
        return default


def _read_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _default_probe_host(api_url: str) -> str:
    """Return the hostname the connectivity probe should dial.

    Example:
        >>> _default_probe_host("https://api.example.com/v1")
        'api.example.com'
    """
    return urlparse(api_url).hostname or "localhost"


@dataclass
class Settings:
    """Configuration settings for resilient_fetch.

    All settings are loaded from environment variables with sensible defaults.
    """

    API_URL: str
    API_TOKEN: str | None
    API_REFRESH_TOKEN: str | None
    API_TIMEOUT_S: float
    RETRY_BASE_DELAY_MS: int
    RETRY_CAP_DELAY_MS: int
    MAX_RETRIES: int
    RETRY_JITTER: float
    ABORT_IN_FLIGHT: bool
    CONNECTIVITY_PROBE_HOST: str
    CONNECTIVITY_PROBE_PORT: int
    CONNECTIVITY_PROBE_INTERVAL_S: float


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to defaults. Negative retry counts
        and delays are clamped to zero, jitter is clamped to [0, 1].
    """
    api_url = (os.environ.get("API_URL") or _DEFAULT_API_URL).rstrip("/")
    token = os.environ.get("API_TOKEN") or None
    refresh_token = os.environ.get("API_REFRESH_TOKEN") or None
    timeout = _read_float("API_TIMEOUT_S", 10.0)

    # Backoff policy
    base_delay = max(0, _read_int("RETRY_BASE_DELAY_MS", 1000))
    cap_delay = max(base_delay, _read_int("RETRY_CAP_DELAY_MS", 10000))
    max_retries = max(0, _read_int("MAX_RETRIES", 3))
    jitter = min(1.0, max(0.0, _read_float("RETRY_JITTER", 0.0)))
    abort_in_flight = _read_bool("ABORT_IN_FLIGHT", True)

    # Connectivity probe
    probe_host = os.environ.get("CONNECTIVITY_PROBE_HOST") or _default_probe_host(
        api_url
    )
    probe_port = _read_int("CONNECTIVITY_PROBE_PORT", 443)
    probe_interval = _read_float("CONNECTIVITY_PROBE_INTERVAL_S", 5.0)

    return Settings(
        API_URL=api_url,
        API_TOKEN=token,
        API_REFRESH_TOKEN=refresh_token,
        API_TIMEOUT_S=timeout,
        RETRY_BASE_DELAY_MS=base_delay,
        RETRY_CAP_DELAY_MS=cap_delay,
        MAX_RETRIES=max_retries,
        RETRY_JITTER=jitter,
        ABORT_IN_FLIGHT=abort_in_flight,
        CONNECTIVITY_PROBE_HOST=probe_host,
        CONNECTIVITY_PROBE_PORT=probe_port,
        CONNECTIVITY_PROBE_INTERVAL_S=probe_interval,
    )


settings = _read_settings()


def validate_settings() -> None:
    """Log warnings for configuration that will degrade behaviour."""
    if settings.API_TOKEN is None:
        logger.warning("API_TOKEN is not set; requests will be unauthenticated.")
    if settings.MAX_RETRIES == 0:
        logger.warning("MAX_RETRIES is 0; transient failures will not be retried.")
    if settings.CONNECTIVITY_PROBE_INTERVAL_S <= 0:
        logger.warning(
            "CONNECTIVITY_PROBE_INTERVAL_S must be positive; probe is disabled."
        )


# Exported constants
API_URL: str = settings.API_URL
API_TOKEN: str | None = settings.API_TOKEN
API_REFRESH_TOKEN: str | None = settings.API_REFRESH_TOKEN
API_TIMEOUT_S: float = settings.API_TIMEOUT_S
RETRY_BASE_DELAY_MS: int = settings.RETRY_BASE_DELAY_MS
RETRY_CAP_DELAY_MS: int = settings.RETRY_CAP_DELAY_MS
MAX_RETRIES: int = settings.MAX_RETRIES
RETRY_JITTER: float = settings.RETRY_JITTER
ABORT_IN_FLIGHT: bool = settings.ABORT_IN_FLIGHT
CONNECTIVITY_PROBE_HOST: str = settings.CONNECTIVITY_PROBE_HOST
CONNECTIVITY_PROBE_PORT: int = settings.CONNECTIVITY_PROBE_PORT
CONNECTIVITY_PROBE_INTERVAL_S: float = settings.CONNECTIVITY_PROBE_INTERVAL_S

validate_settings()
