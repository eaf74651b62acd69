"""State transition helpers for the schedule record.

Every helper mutates the record it is given and performs no I/O, so the
durable read-modify-write cycle stays in :mod:`schedule_state`.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from automation.shared.booking_contracts import BookingOutcome
from reservations.models import LastRun, LogEntry, LogLevel, ScheduleRecord
from tracking import t


class RetryDecision(Enum):
    """What happened to the schedule after an outcome was recorded."""

    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"
    STALE = "stale"


def append_log_entry(record: ScheduleRecord, entry: LogEntry, capacity: int) -> ScheduleRecord:
    """Append ``entry`` and evict the oldest entries beyond ``capacity``."""

    t('reservations.queue.schedule_transitions.append_log_entry')
    record.logs.append(entry)
    if capacity <= 0:
        record.logs.clear()
    elif len(record.logs) > capacity:
        del record.logs[:-capacity]
    return record


def apply_schedule(
    record: ScheduleRecord,
    *,
    schedule_id: str,
    run_time: datetime,
    target_time: datetime,
    max_retries: int,
    now: datetime,
    source_trigger_id: Optional[str] = None,
) -> ScheduleRecord:
    """Replace whatever was scheduled with a fresh schedule."""

    t('reservations.queue.schedule_transitions.apply_schedule')
    record.id = schedule_id
    record.run_time = run_time
    record.target_reservation_time = target_time
    record.retry_count = 0
    record.max_retries = max_retries
    record.attempt_started_at = None
    record.attempt_owner = None
    record.source_trigger_id = source_trigger_id
    record.created_at = now
    return record


def clear_schedule(record: ScheduleRecord, *, reset_retries: bool = True) -> ScheduleRecord:
    """Empty the active schedule, keeping ``last_run`` and the log."""

    t('reservations.queue.schedule_transitions.clear_schedule')
    record.id = None
    record.run_time = None
    record.target_reservation_time = None
    record.attempt_started_at = None
    record.attempt_owner = None
    record.source_trigger_id = None
    record.created_at = None
    if reset_retries:
        record.retry_count = 0
    return record


def record_last_run(record: ScheduleRecord, *, now: datetime, success: bool, message: str) -> ScheduleRecord:
    t('reservations.queue.schedule_transitions.record_last_run')
    record.last_run = LastRun(time=now, success=success, message=message)
    return record


def apply_outcome(
    record: ScheduleRecord,
    outcome: BookingOutcome,
    *,
    now: datetime,
    retry_delay: timedelta,
) -> RetryDecision:
    """Advance the retry state machine for an outcome on the active schedule.

    Success and terminal failures clear the schedule. A transient failure
    either moves ``run_time`` forward by ``retry_delay`` (never past the
    target) or, once ``max_retries`` retries have been used, clears the
    schedule while leaving the final ``retry_count`` visible.
    """

    t('reservations.queue.schedule_transitions.apply_outcome')
    record.attempt_started_at = None
    record.attempt_owner = None

    if outcome.success:
        record_last_run(record, now=now, success=True, message=outcome.message)
        clear_schedule(record)
        return RetryDecision.COMPLETED

    if outcome.is_terminal:
        record_last_run(record, now=now, success=False, message=outcome.message)
        clear_schedule(record)
        return RetryDecision.COMPLETED

    if record.retry_count < record.max_retries:
        record.retry_count += 1
        next_run = now + retry_delay
        if record.target_reservation_time is not None and next_run > record.target_reservation_time:
            next_run = record.target_reservation_time
        record.run_time = next_run
        record_last_run(record, now=now, success=False, message=outcome.message)
        return RetryDecision.RETRY_SCHEDULED

    message = f"{outcome.message} (gave up after {record.retry_count} retries)"
    record_last_run(record, now=now, success=False, message=message)
    clear_schedule(record, reset_retries=False)
    return RetryDecision.EXHAUSTED


def outcome_log_level(outcome: BookingOutcome) -> LogLevel:
    t('reservations.queue.schedule_transitions.outcome_log_level')
    return LogLevel.SUCCESS if outcome.success else LogLevel.ERROR
