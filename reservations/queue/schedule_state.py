"""The single durable schedule record and its activity log.

Every public operation loads the latest record from the store, mutates the
whole record under an in-process lock and writes it back as one unit, so a
fresh process (or a second one sharing the store) always sees the result.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Optional

import pytz

from automation.shared.booking_contracts import BookingOutcome
from infrastructure import constants
from infrastructure.errors import InvalidInputError
from reservations.models import LogEntry, LogLevel, ScheduleRecord
from tracking import t

from .schedule_transitions import (
    RetryDecision,
    append_log_entry,
    apply_outcome,
    apply_schedule,
    clear_schedule,
    outcome_log_level,
    record_last_run,
)
from .schedule_validation import ensure_aware, ensure_future_target
from .state_repository import StateStore


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


class ScheduleState:
    """Owns the one active schedule: set, cancel, claim and record outcomes."""

    CLAIM_NAME = "attempt"

    def __init__(
        self,
        store: StateStore,
        *,
        max_retries: int = constants.DEFAULT_MAX_RETRIES,
        retry_delay_seconds: int = constants.RETRY_DELAY_SECONDS,
        max_log_entries: int = constants.MAX_LOG_ENTRIES,
        min_run_delay_seconds: int = constants.MIN_RUN_DELAY_SECONDS,
        lease_seconds: int = constants.ATTEMPT_LEASE_SECONDS,
        timezone: str = constants.VENUE_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
        logger: Any = None,
        notifier: Any = None,
    ) -> None:
        t('reservations.queue.schedule_state.ScheduleState.__init__')
        self._store = store
        self._lock = threading.RLock()
        self.max_retries = max_retries
        self.retry_delay = timedelta(seconds=retry_delay_seconds)
        self.max_log_entries = max_log_entries
        self.min_run_delay = timedelta(seconds=min_run_delay_seconds)
        self.lease_seconds = lease_seconds
        self.tz = pytz.timezone(timezone)
        self._clock = clock
        self.logger = logger or logging.getLogger('ScheduleState')
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Persistence plumbing
    # ------------------------------------------------------------------
    def _load(self) -> ScheduleRecord:
        t('reservations.queue.schedule_state.ScheduleState._load')
        payload = self._store.load_schedule()
        if not payload:
            return ScheduleRecord(max_retries=self.max_retries)
        try:
            return ScheduleRecord.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.error("Discarding unreadable schedule record: %s", exc)
            return ScheduleRecord(max_retries=self.max_retries)

    @contextmanager
    def _transaction(self) -> Iterator[ScheduleRecord]:
        with self._lock:
            record = self._load()
            yield record
            self._store.save_schedule(record.to_payload())

    def _format(self, value: Optional[datetime]) -> str:
        if value is None:
            return "-"
        return value.astimezone(self.tz).strftime('%Y-%m-%d %H:%M %Z')

    def _log(self, record: ScheduleRecord, message: str, level: LogLevel = LogLevel.INFO) -> None:
        append_log_entry(
            record,
            LogEntry(time=self._clock(), message=message, level=level),
            self.max_log_entries,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def set(
        self,
        run_time: datetime,
        target_time: datetime,
        *,
        source_trigger_id: Optional[str] = None,
    ) -> ScheduleRecord:
        """Replace any existing schedule and return a snapshot of the new one."""

        t('reservations.queue.schedule_state.ScheduleState.set')
        ensure_aware(run_time, "run_time")
        ensure_aware(target_time, "target_time")
        now = self._clock()
        ensure_future_target(target_time, now)
        if run_time > target_time:
            raise InvalidInputError(
                f"Run time {run_time.isoformat()} is after target {target_time.isoformat()}"
            )

        effective_run = run_time
        if effective_run < now:
            effective_run = min(now + self.min_run_delay, target_time)

        with self._transaction() as record:
            replaced = record.id if record.scheduled else None
            apply_schedule(
                record,
                schedule_id=uuid.uuid4().hex,
                run_time=effective_run,
                target_time=target_time,
                max_retries=self.max_retries,
                now=now,
                source_trigger_id=source_trigger_id,
            )
            self._log(
                record,
                f"Scheduled: Run at {self._format(effective_run)} to book {self._format(target_time)}",
            )
            snapshot = copy.deepcopy(record)

        self.logger.info(
            f"""SCHEDULE SET
            ID: {snapshot.id}
            Run at: {self._format(effective_run)}
            Target: {self._format(target_time)}
            Replaced: {replaced or '-'}
            Source trigger: {source_trigger_id or '-'}
            """
        )
        return snapshot

    def cancel(self) -> bool:
        """Clear the active schedule. Returns ``False`` when nothing was scheduled."""

        t('reservations.queue.schedule_state.ScheduleState.cancel')
        with self._lock:
            record = self._load()
            if not record.scheduled:
                return False
            cancelled_id = record.id
            clear_schedule(record)
            self._log(record, "Cancelled scheduled run")
            self._store.save_schedule(record.to_payload())
        self.logger.info("Cancelled schedule %s", cancelled_id)
        return True

    def append_log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        t('reservations.queue.schedule_state.ScheduleState.append_log')
        with self._transaction() as record:
            self._log(record, message, level)

    def snapshot(self) -> ScheduleRecord:
        """Return a deep copy of the current record."""

        t('reservations.queue.schedule_state.ScheduleState.snapshot')
        with self._lock:
            return copy.deepcopy(self._load())

    def is_active(self, schedule_id: Optional[str]) -> bool:
        t('reservations.queue.schedule_state.ScheduleState.is_active')
        if not schedule_id:
            return False
        record = self.snapshot()
        return record.scheduled and record.id == schedule_id

    def claim_due(
        self,
        now: datetime,
        *,
        schedule_id: Optional[str] = None,
    ) -> Optional[ScheduleRecord]:
        """Claim the schedule for an attempt if it is due.

        Passing ``schedule_id`` treats that schedule as due regardless of its
        run time, for callers that just set it to run immediately.

        Returns a snapshot of the claimed record, or ``None`` when nothing is
        due, the target has already passed (the schedule is expired as a
        failure), or another runner holds the claim.
        """

        t('reservations.queue.schedule_state.ScheduleState.claim_due')
        ensure_aware(now, "now")
        with self._lock:
            record = self._load()
            if not self._is_due(record, now, schedule_id):
                return None

            owner = uuid.uuid4().hex
            if not self._store.acquire(self.CLAIM_NAME, self.lease_seconds, owner=owner):
                self.logger.debug("Attempt claim held elsewhere; skipping")
                return None

            # Re-read after acquiring so a concurrent runner's outcome is seen.
            record = self._load()
            if not self._is_due(record, now, schedule_id):
                self._store.release(self.CLAIM_NAME, owner=owner)
                return None

            if record.target_reservation_time <= now:
                message = (
                    f"Target {self._format(record.target_reservation_time)} passed "
                    "before the booking could complete"
                )
                record_last_run(record, now=now, success=False, message=message)
                clear_schedule(record, reset_retries=False)
                self._log(record, message, LogLevel.ERROR)
                self._store.save_schedule(record.to_payload())
                self._store.release(self.CLAIM_NAME, owner=owner)
                self.logger.warning(message)
                if self.notifier is not None:
                    self.notifier.notify_failure(message)
                return None

            record.attempt_started_at = now
            record.attempt_owner = owner
            self._store.save_schedule(record.to_payload())
            return copy.deepcopy(record)

    @staticmethod
    def _is_due(record: ScheduleRecord, now: datetime, schedule_id: Optional[str]) -> bool:
        if not record.scheduled:
            return False
        if schedule_id is not None:
            return record.id == schedule_id
        return record.run_time <= now

    def release_claim(self, owner: Optional[str] = None) -> None:
        """Release the attempt claim, leaving it alone if another owner took it over."""

        t('reservations.queue.schedule_state.ScheduleState.release_claim')
        self._store.release(self.CLAIM_NAME, owner=owner)

    def record_outcome(
        self,
        outcome: BookingOutcome,
        *,
        schedule_id: Optional[str] = None,
    ) -> RetryDecision:
        """Apply ``outcome`` to the schedule and return what was decided."""

        t('reservations.queue.schedule_state.ScheduleState.record_outcome')
        now = self._clock()
        with self._transaction() as record:
            if schedule_id is not None and record.id != schedule_id:
                # Replaced or cancelled while the attempt was in flight.
                record_last_run(record, now=now, success=outcome.success, message=outcome.message)
                self._log(
                    record,
                    f"Attempt for a replaced schedule finished: {outcome.message}",
                    outcome_log_level(outcome),
                )
                decision = RetryDecision.STALE
            else:
                decision = apply_outcome(record, outcome, now=now, retry_delay=self.retry_delay)
                self._log(record, self._describe(decision, outcome, record), self._decision_level(decision, outcome))
            retry_count = record.retry_count
            max_retries = record.max_retries

        self.logger.info(
            "Outcome %s recorded as %s (retry %s/%s)",
            outcome.kind.value,
            decision.value,
            retry_count,
            max_retries,
        )
        return decision

    @staticmethod
    def _decision_level(decision: RetryDecision, outcome: BookingOutcome) -> LogLevel:
        if decision == RetryDecision.RETRY_SCHEDULED:
            return LogLevel.INFO
        return outcome_log_level(outcome)

    def _describe(self, decision: RetryDecision, outcome: BookingOutcome, record: ScheduleRecord) -> str:
        if outcome.success:
            return f"Success: {outcome.message}"
        if decision == RetryDecision.RETRY_SCHEDULED:
            return (
                f"Retry {record.retry_count}/{record.max_retries}: {outcome.message} "
                f"- next attempt at {self._format(record.run_time)}"
            )
        if decision == RetryDecision.EXHAUSTED:
            return f"Failed after {record.retry_count} retries: {outcome.message}"
        return f"Failed: {outcome.message}"
