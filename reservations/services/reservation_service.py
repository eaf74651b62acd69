"""Domain service wiring schedule state, triggers and the runner together."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import pytz

from automation.shared.booking_contracts import BookingAttempt, BookingOutcome
from infrastructure import constants
from infrastructure.errors import InvalidInputError, SchedulerIntegrationError, TooEarlyOrTooLate
from infrastructure.settings import AppSettings
from reservations.models import LogLevel, to_iso
from reservations.queue.reservation_scheduler import ScheduleRunner
from reservations.queue.schedule_state import ScheduleState, utc_now
from reservations.queue.schedule_validation import ensure_future_target, format_target, parse_target
from reservations.queue.scheduler import (
    DispatchMode,
    RetryController,
    WebhookGate,
    select_dispatch,
)
from reservations.queue.state_repository import StateStore, create_store
from reservations.queue.trigger_registry import TriggerRegistry
from reservations.services.cronjob_service import CronJobClient


def _outcome_payload(outcome: Optional[BookingOutcome]) -> Optional[Dict[str, Any]]:
    if outcome is None:
        return None
    return {
        "kind": outcome.kind.value,
        "success": outcome.success,
        "message": outcome.message,
        "court": outcome.court,
        "time": outcome.time,
    }


class BookingService:
    """High-level API behind every entry point (CLI, cron tick, webhook host)."""

    def __init__(
        self,
        settings: AppSettings,
        *,
        store: Optional[StateStore] = None,
        booker: Optional[BookingAttempt] = None,
        cron_client: Any = None,
        notifier: Any = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        t('reservations.services.reservation_service.BookingService.__init__')
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings
        self.tz = pytz.timezone(settings.timezone)
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

        if booker is None:
            from automation.executors import TfcCourtBooker

            booker = TfcCourtBooker.from_settings(settings)
        if notifier is None:
            from courtapp.notifications import NtfyNotifier

            notifier = NtfyNotifier(settings.ntfy_topic, timezone=settings.timezone)

        self.store = store or create_store(settings, logger=self.logger)
        self.notifier = notifier
        self.cron_client = cron_client or CronJobClient(
            settings.cronjob_api_key,
            timezone=settings.timezone,
        )
        self.state = ScheduleState(
            self.store,
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.retry_delay_seconds,
            max_log_entries=settings.max_log_entries,
            timezone=settings.timezone,
            clock=clock,
            notifier=notifier,
        )
        self.registry = TriggerRegistry(
            self.store,
            self.cron_client,
            webhook_url=settings.webhook_url,
            timezone=settings.timezone,
            clock=clock,
        )
        self.runner = ScheduleRunner(
            self.state,
            RetryController(booker, attempt_timeout=self._attempt_timeout(settings), clock=clock),
            registry=self.registry,
            notifier=notifier,
            clock=clock,
            sleep=sleep,
        )
        self.gate = WebhookGate(
            self.registry,
            self.state,
            self.runner,
            tolerance=timedelta(minutes=settings.webhook_tolerance_minutes),
            offset_days=settings.booking_window_days,
            timezone=settings.timezone,
            clock=clock,
            notifier=notifier,
        )
        self.runner.gate = self.gate

    @staticmethod
    def _attempt_timeout(settings: AppSettings) -> float:
        # an attempt must finish before its claim lease lapses
        configured = settings.attempt_timeout_seconds
        if configured <= 0:
            configured = constants.ATTEMPT_TIMEOUT_SECONDS
        return float(min(configured, constants.ATTEMPT_LEASE_SECONDS - 1))

    def _local(self, value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        return value.astimezone(self.tz).isoformat()

    def _track(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def trigger(
        self,
        target_date: Optional[str],
        target_time: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Book ``target_date`` at ``target_time`` through the right channel.

        Exactly one side effect happens per accepted request: an immediate
        attempt, an in-process precise wait, or a deferred trigger.
        """

        t('reservations.services.reservation_service.BookingService.trigger')
        now = now or self._clock()
        try:
            target = parse_target(target_date, target_time, self.settings.timezone)
            ensure_future_target(target, now)
        except InvalidInputError as exc:
            self.logger.warning("Rejected booking request %s %s: %s", target_date, target_time, exc)
            return {"accepted": False, "error": str(exc)}

        decision = select_dispatch(
            target,
            now,
            offset_days=self.settings.booking_window_days,
            precise_horizon=timedelta(minutes=self.settings.precise_horizon_minutes),
            timezone=self.settings.timezone,
        )
        self.logger.info(
            "Dispatching %s %s as %s (window opens %s)",
            target_date,
            target_time,
            decision.mode.value,
            decision.opens_at.isoformat(),
        )

        if decision.mode == DispatchMode.RUN_NOW:
            schedule = self.state.set(now, target)
            outcome = await self.runner.run_due(now, schedule_id=schedule.id)
            return {
                "accepted": True,
                "mode": "immediate",
                "id": schedule.id,
                "run_at": self._local(now),
                "message": outcome.message if outcome else f"Booking started for {target_date} at {target_time}",
                "outcome": _outcome_payload(outcome),
            }

        if decision.mode == DispatchMode.ARM_PRECISE:
            schedule = self.state.set(decision.run_at, target)
            self._track(self.runner.wait_and_run(decision.run_at))
            self.notifier.notify_scheduled(target, decision.run_at)
            return {
                "accepted": True,
                "mode": "immediate",
                "id": schedule.id,
                "run_at": self._local(decision.run_at),
                "message": f"Booking for {target_date} at {target_time} runs at {self._local(decision.run_at)}",
            }

        try:
            trigger = await self.registry.create(target_date, target_time, decision.run_at)
        except SchedulerIntegrationError as exc:
            self.state.append_log(f"Could not schedule {target_date} {target_time}: {exc}", LogLevel.ERROR)
            return {"accepted": False, "error": str(exc)}
        self.notifier.notify_scheduled(target, decision.run_at)
        return {
            "accepted": True,
            "mode": "deferred",
            "id": trigger.id,
            "run_at": self._local(decision.run_at),
            "message": (
                f"Scheduled for {target_date} at {target_time}. "
                f"Will book on {decision.run_at.astimezone(self.tz).strftime('%Y-%m-%d %H:%M')}."
            ),
        }

    async def cancel(self, identifier: Optional[str] = None) -> Dict[str, Any]:
        """Cancel the active schedule or a deferred trigger; idempotent."""

        t('reservations.services.reservation_service.BookingService.cancel')
        snapshot = self.state.snapshot()
        if identifier is None:
            return {"cancelled": self.state.cancel()}
        if snapshot.scheduled and identifier in (snapshot.id, snapshot.source_trigger_id):
            # a fired trigger lives on as the schedule it started
            return {"cancelled": self.state.cancel()}
        return {"cancelled": await self.registry.cancel(identifier)}

    def status(self) -> Dict[str, Any]:
        """Read-only view of the schedule record."""

        t('reservations.services.reservation_service.BookingService.status')
        snapshot = self.state.snapshot()
        payload = snapshot.to_payload()
        payload["scheduled"] = snapshot.scheduled
        return payload

    def list_triggers(self) -> List[Dict[str, Any]]:
        """Pending deferred triggers with their venue-local run date and time."""

        t('reservations.services.reservation_service.BookingService.list_triggers')
        listing = []
        for trigger in self.registry.list():
            run_date, run_time = format_target(trigger.trigger_at, self.settings.timezone)
            listing.append(
                {
                    "id": trigger.id,
                    "targetDate": trigger.target_date,
                    "targetTime": trigger.target_time,
                    "runDate": run_date,
                    "runTime": run_time,
                    "isTriggered": trigger.fired,
                    "createdAt": to_iso(trigger.created_at),
                }
            )
        return listing

    async def webhook(
        self,
        target_date: Optional[str],
        target_time: Optional[str],
        trigger_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        t('reservations.services.reservation_service.BookingService.webhook')
        try:
            result = await self.gate.handle(target_date, target_time, trigger_id, now=now)
        except TooEarlyOrTooLate as exc:
            return {
                "accepted": False,
                "fired": False,
                "message": str(exc),
                "scheduled_for": self._local(exc.scheduled_for),
            }
        except InvalidInputError as exc:
            self.logger.warning("Rejected webhook %s %s %s: %s", target_date, target_time, trigger_id, exc)
            return {"accepted": False, "fired": False, "error": str(exc)}
        return {
            "accepted": result.accepted,
            "fired": result.fired,
            "message": result.message,
            "scheduled_for": self._local(result.scheduled_for),
            "outcome": _outcome_payload(result.outcome),
        }

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        t('reservations.services.reservation_service.BookingService.tick')
        outcomes = await self.runner.tick(now)
        return {"attempts": len(outcomes), "outcomes": [_outcome_payload(outcome) for outcome in outcomes]}

    async def run_now(
        self,
        target_date: Optional[str] = None,
        target_time: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Attempt immediately, for a given target or the active schedule."""

        t('reservations.services.reservation_service.BookingService.run_now')
        now = now or self._clock()
        if target_date or target_time:
            try:
                target = parse_target(target_date, target_time, self.settings.timezone)
                schedule = self.state.set(now, target)
            except InvalidInputError as exc:
                return {"ran": False, "error": str(exc)}
            schedule_id = schedule.id
        else:
            snapshot = self.state.snapshot()
            if not snapshot.scheduled:
                return {"ran": False, "message": "Nothing scheduled"}
            schedule_id = snapshot.id

        outcome = await self.runner.run_due(now, schedule_id=schedule_id)
        if outcome is None:
            return {"ran": False, "message": "Booking attempt already in progress"}
        return {"ran": True, "message": outcome.message, "outcome": _outcome_payload(outcome)}

    async def drain(self) -> None:
        """Wait for precise waits and notifications started by this service."""

        t('reservations.services.reservation_service.BookingService.drain')
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        flush = getattr(self.notifier, "flush", None)
        if flush is not None:
            await flush()

    async def serve(self) -> None:
        t('reservations.services.reservation_service.BookingService.serve')
        await self.runner.run_forever(self.settings.poll_interval_seconds)

    def stop(self) -> None:
        t('reservations.services.reservation_service.BookingService.stop')
        self.runner.stop()

    def performance_report(self) -> str:
        t('reservations.services.reservation_service.BookingService.performance_report')
        return self.runner.stats.format_report()
