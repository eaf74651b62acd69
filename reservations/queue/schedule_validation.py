"""Validation helpers for booking requests arriving at the entry points."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional, Tuple

import pytz

from infrastructure import constants
from infrastructure.errors import InvalidInputError
from tracking import t

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def ensure_aware(value: Any, label: str = "datetime") -> datetime:
    """Raise ``InvalidInputError`` unless ``value`` is a timezone-aware datetime."""

    t('reservations.queue.schedule_validation.ensure_aware')
    if not isinstance(value, datetime):
        raise InvalidInputError(f"{label} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise InvalidInputError(f"{label} must be timezone-aware")
    return value


def parse_target(
    target_date: Optional[str],
    target_time: Optional[str],
    timezone: str = constants.VENUE_TIMEZONE,
) -> datetime:
    """Parse ``YYYY-MM-DD`` and ``HH:MM`` into an aware venue-local datetime."""

    t('reservations.queue.schedule_validation.parse_target')
    if not target_date or not target_time:
        raise InvalidInputError("Both a target date and a target time are required")
    date_text = str(target_date).strip()
    time_text = str(target_time).strip()
    if not _DATE_PATTERN.match(date_text):
        raise InvalidInputError(f"Invalid date {target_date!r}; expected YYYY-MM-DD")
    if not _TIME_PATTERN.match(time_text):
        raise InvalidInputError(f"Invalid time {target_time!r}; expected HH:MM")

    try:
        naive = datetime.strptime(
            f"{date_text} {time_text}",
            f"{constants.TARGET_DATE_FORMAT} {constants.TARGET_TIME_FORMAT}",
        )
    except ValueError as exc:
        raise InvalidInputError(f"Invalid date/time {date_text} {time_text}: {exc}") from exc

    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidInputError(f"Unknown timezone {timezone!r}") from exc
    return tz.normalize(tz.localize(naive))


def ensure_future_target(target: datetime, now: datetime) -> None:
    """Reject reservation targets that are not strictly in the future."""

    t('reservations.queue.schedule_validation.ensure_future_target')
    ensure_aware(target, "target")
    ensure_aware(now, "now")
    if target <= now:
        raise InvalidInputError(
            f"Target {target.isoformat()} is in the past"
        )


def format_target(target: datetime, timezone: str = constants.VENUE_TIMEZONE) -> Tuple[str, str]:
    """Return the ``(YYYY-MM-DD, HH:MM)`` venue-local fields of ``target``."""

    t('reservations.queue.schedule_validation.format_target')
    local = ensure_aware(target, "target").astimezone(pytz.timezone(timezone))
    return (
        local.strftime(constants.TARGET_DATE_FORMAT),
        local.strftime(constants.TARGET_TIME_FORMAT),
    )
