"""Booking-window arithmetic in the venue timezone."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytz

from infrastructure import constants
from reservations.queue.schedule_validation import ensure_aware
from tracking import t


def booking_opens_at(
    target: datetime,
    offset_days: int = constants.BOOKING_WINDOW_DAYS,
    timezone: str = constants.VENUE_TIMEZONE,
) -> datetime:
    """Return the instant the booking window for ``target`` opens.

    The window opens ``offset_days`` calendar days earlier at the same local
    wall-clock time. The subtraction happens on the venue-local fields and the
    result is localized again, so a DST change between the two days keeps the
    wall-clock time rather than shifting it by an hour.
    """

    t('reservations.queue.scheduler.timing.booking_opens_at')
    ensure_aware(target, "target")
    tz = pytz.timezone(timezone)
    local_target = target.astimezone(tz)
    wall_clock = local_target.replace(tzinfo=None) - timedelta(days=offset_days)
    return tz.normalize(tz.localize(wall_clock))


def is_window_open(now: datetime, opens_at: datetime) -> bool:
    """True once ``now`` has reached ``opens_at``, compared as instants."""

    t('reservations.queue.scheduler.timing.is_window_open')
    ensure_aware(now, "now")
    ensure_aware(opens_at, "opens_at")
    return now >= opens_at


def seconds_until(now: datetime, instant: datetime) -> float:
    t('reservations.queue.scheduler.timing.seconds_until')
    return (instant - now).total_seconds()
