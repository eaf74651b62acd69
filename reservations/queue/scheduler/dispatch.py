"""Choose how a booking request is dispatched given how far away its window is."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from infrastructure import constants
from reservations.queue.schedule_validation import ensure_aware
from tracking import t

from .timing import booking_opens_at, is_window_open


class DispatchMode(Enum):
    """Channel used to start the booking attempt."""

    RUN_NOW = "run_now"
    ARM_PRECISE = "arm_precise"
    ARM_DEFERRED = "arm_deferred"


@dataclass(frozen=True)
class DispatchDecision:
    """Selected dispatch mode with the instants it was derived from."""

    mode: DispatchMode
    opens_at: datetime
    run_at: Optional[datetime]


def select_dispatch(
    target: datetime,
    now: datetime,
    *,
    offset_days: int = constants.BOOKING_WINDOW_DAYS,
    precise_horizon: timedelta = timedelta(minutes=constants.PRECISE_ARM_HORIZON_MINUTES),
    timezone: str = constants.VENUE_TIMEZONE,
) -> DispatchDecision:
    """Return exactly one dispatch mode for ``target``.

    Boundaries are inclusive on the act side: a window opening exactly now
    runs now, and one opening exactly ``precise_horizon`` from now is armed
    in-process.
    """

    t('reservations.queue.scheduler.dispatch.select_dispatch')
    ensure_aware(now, "now")
    opens_at = booking_opens_at(target, offset_days, timezone)

    if is_window_open(now, opens_at):
        return DispatchDecision(DispatchMode.RUN_NOW, opens_at, None)
    if opens_at - now <= precise_horizon:
        return DispatchDecision(DispatchMode.ARM_PRECISE, opens_at, opens_at)
    return DispatchDecision(DispatchMode.ARM_DEFERRED, opens_at, opens_at)
