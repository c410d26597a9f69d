"""Runtime configuration read from environment variables.

Every setting has a sensible default so the service starts against a local
SQLite file without any configuration.  Environment variables used:

* ``EMAIL_ANALYTICS_DB_URL`` (or ``NEON_URL``) – SQLAlchemy URL of the
  database; defaults to ``email_analytics/data/email_analytics.db``.
* ``WEBHOOK_SECRET`` – signing secret shared with the email provider.
* ``WEBHOOK_TOLERANCE_SECONDS`` – accepted clock skew for signed webhooks.
* ``ANALYTICS_API_TOKEN`` – bearer token required by the analytics API.
* ``STORAGE_TIMEOUT_SECONDS`` / ``STORAGE_MAX_ATTEMPTS`` /
  ``STORAGE_BACKOFF_MIN_SECONDS`` / ``STORAGE_BACKOFF_MAX_SECONDS`` – bounds
  on every storage call and its retries.
* ``CAMPAIGN_BATCH_SIZE`` – campaign ids per ``IN (...)`` query.
* ``ANALYTICS_MAX_RANGE_DAYS`` – longest accepted query range.
* ``BOUNCE_RATE_THRESHOLD`` / ``COMPLAINT_RATE_THRESHOLD`` – reputation
  alert levels, as fractions.
* ``ENABLE_DIAGNOSTICS`` – when truthy ("1", "true", "yes") the
  ``/api/debug`` endpoints are mounted.
* ``LOG_LEVEL`` – log level used by the HTTP server.
* ``SERVER_HOST`` / ``SERVER_PORT`` – address uvicorn binds to.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"
DEFAULT_DB_PATH = DATA_DIR / "email_analytics.db"

_TRUTHY = {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the service configuration."""

    database_url: str
    webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300
    api_token: Optional[str] = None
    storage_timeout_seconds: float = 5.0
    storage_max_attempts: int = 4
    storage_backoff_min_seconds: float = 0.05
    storage_backoff_max_seconds: float = 2.0
    campaign_batch_size: int = 500
    max_range_days: int = 366
    bounce_rate_threshold: float = 0.04
    complaint_rate_threshold: float = 0.0008
    enable_diagnostics: bool = False
    log_level: str = "INFO"
    server_host: str = "0.0.0.0"
    server_port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        url = (
            os.environ.get("EMAIL_ANALYTICS_DB_URL", "").strip()
            or os.environ.get("NEON_URL", "").strip()
            or f"sqlite:///{DEFAULT_DB_PATH}"
        )
        return cls(
            database_url=url,
            webhook_secret=os.environ.get("WEBHOOK_SECRET") or None,
            webhook_tolerance_seconds=_env_int("WEBHOOK_TOLERANCE_SECONDS", 300),
            api_token=os.environ.get("ANALYTICS_API_TOKEN") or None,
            storage_timeout_seconds=_env_float("STORAGE_TIMEOUT_SECONDS", 5.0),
            storage_max_attempts=max(1, _env_int("STORAGE_MAX_ATTEMPTS", 4)),
            storage_backoff_min_seconds=_env_float(
                "STORAGE_BACKOFF_MIN_SECONDS", 0.05
            ),
            storage_backoff_max_seconds=_env_float(
                "STORAGE_BACKOFF_MAX_SECONDS", 2.0
            ),
            campaign_batch_size=max(1, _env_int("CAMPAIGN_BATCH_SIZE", 500)),
            max_range_days=max(1, _env_int("ANALYTICS_MAX_RANGE_DAYS", 366)),
            bounce_rate_threshold=_env_float("BOUNCE_RATE_THRESHOLD", 0.04),
            complaint_rate_threshold=_env_float(
                "COMPLAINT_RATE_THRESHOLD", 0.0008
            ),
            enable_diagnostics=_env_flag("ENABLE_DIAGNOSTICS"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            server_host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            server_port=_env_int("SERVER_PORT", 8000),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings.from_env()


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings", "DATA_DIR"]
