"""Centralized application settings.

All runtime configuration is read once through :func:`load_settings` so the
scheduler components never call ``os.getenv`` directly. A ``.env`` file in
the working directory is honoured during development.
"""

from __future__ import annotations
from tracking import t

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

from dotenv import load_dotenv

from . import constants


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Normalize environment strings such as "true"/"1" into booleans."""
    t('infrastructure.settings._to_bool')

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: Optional[str], default: int) -> int:
    t('infrastructure.settings._to_int')

    if value is None or not str(value).strip():
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class AppSettings:
    """Immutable snapshot of high-level configuration values."""

    production_mode: bool
    timezone: str
    booking_window_days: int
    precise_horizon_minutes: int
    webhook_tolerance_minutes: int
    max_retries: int
    retry_delay_seconds: int
    attempt_timeout_seconds: int
    poll_interval_seconds: int
    max_log_entries: int
    data_directory: str
    redis_url: Optional[str]
    cronjob_api_key: Optional[str]
    webhook_url: Optional[str]
    ntfy_topic: Optional[str]
    tfc_username: Optional[str]
    tfc_password: Optional[str]
    headless: bool


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load configuration from the environment and fall back to defaults."""
    t('infrastructure.settings.load_settings')

    if env is None:
        load_dotenv(override=False)
        env = os.environ

    production_mode = _to_bool(env.get("PRODUCTION_MODE", "false"), default=False)
    timezone = env.get("VENUE_TIMEZONE", constants.VENUE_TIMEZONE)

    booking_window_days = _to_int(env.get("BOOKING_WINDOW_DAYS"), constants.BOOKING_WINDOW_DAYS)
    precise_horizon_minutes = _to_int(
        env.get("PRECISE_HORIZON_MINUTES"), constants.PRECISE_ARM_HORIZON_MINUTES
    )
    webhook_tolerance_minutes = _to_int(
        env.get("WEBHOOK_TOLERANCE_MINUTES"), constants.WEBHOOK_TOLERANCE_MINUTES
    )

    max_retries = _to_int(env.get("RESERVATION_MAX_RETRY_ATTEMPTS"), constants.DEFAULT_MAX_RETRIES)
    retry_delay_seconds = _to_int(env.get("RETRY_DELAY_SECONDS"), constants.RETRY_DELAY_SECONDS)
    attempt_timeout_seconds = _to_int(
        env.get("ATTEMPT_TIMEOUT_SECONDS"), constants.ATTEMPT_TIMEOUT_SECONDS
    )
    poll_interval_seconds = _to_int(
        env.get("RESERVATION_CHECK_INTERVAL"), constants.DEFAULT_POLL_INTERVAL_SECONDS
    )
    max_log_entries = _to_int(env.get("MAX_LOG_ENTRIES"), constants.MAX_LOG_ENTRIES)

    data_directory = env.get("DATA_DIRECTORY", "data")
    redis_url = env.get("REDIS_URL") or env.get("KV_URL") or None

    return AppSettings(
        production_mode=production_mode,
        timezone=timezone,
        booking_window_days=booking_window_days,
        precise_horizon_minutes=precise_horizon_minutes,
        webhook_tolerance_minutes=webhook_tolerance_minutes,
        max_retries=max_retries,
        retry_delay_seconds=retry_delay_seconds,
        attempt_timeout_seconds=attempt_timeout_seconds,
        poll_interval_seconds=poll_interval_seconds,
        max_log_entries=max_log_entries,
        data_directory=data_directory,
        redis_url=redis_url,
        cronjob_api_key=env.get("CRONJOB_API_KEY") or None,
        webhook_url=env.get("WEBHOOK_URL") or None,
        ntfy_topic=env.get("NTFY_TOPIC") or None,
        tfc_username=env.get("TFC_USERNAME") or None,
        tfc_password=env.get("TFC_PASSWORD") or None,
        headless=_to_bool(env.get("HEADLESS", "true"), default=True),
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached :class:`AppSettings` instance."""
    t('infrastructure.settings.get_settings')

    return load_settings()
