"""Gate for externally delivered trigger calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from automation.shared.booking_contracts import BookingOutcome
from infrastructure import constants
from infrastructure.errors import InvalidInputError, TooEarlyOrTooLate
from reservations.models import DeferredTrigger, LogLevel
from reservations.queue.schedule_state import ScheduleState, utc_now
from reservations.queue.schedule_validation import ensure_aware, parse_target
from reservations.queue.trigger_registry import TriggerRegistry
from tracking import t

from .timing import booking_opens_at


@dataclass(frozen=True)
class WebhookResult:
    """What the gate did with one delivery."""

    accepted: bool
    fired: bool
    message: str
    scheduled_for: Optional[datetime] = None
    outcome: Optional[BookingOutcome] = None


class WebhookGate:
    """Validate, deduplicate and fire deferred triggers.

    Both the inbound webhook and the periodic tick go through :meth:`fire`,
    so a trigger delivered by both sources results in a single attempt.
    """

    def __init__(
        self,
        registry: TriggerRegistry,
        state: ScheduleState,
        runner: Any,
        *,
        tolerance: timedelta = timedelta(minutes=constants.WEBHOOK_TOLERANCE_MINUTES),
        offset_days: int = constants.BOOKING_WINDOW_DAYS,
        timezone: str = constants.VENUE_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
        notifier: Any = None,
        logger: Any = None,
    ) -> None:
        t('reservations.queue.scheduler.webhook_gate.WebhookGate.__init__')
        self.registry = registry
        self.state = state
        self.runner = runner
        self.tolerance = tolerance
        self.offset_days = offset_days
        self.timezone = timezone
        self._clock = clock
        self.notifier = notifier
        self.logger = logger or logging.getLogger('WebhookGate')

    def check_tolerance(self, target: datetime, now: datetime) -> datetime:
        """Return the intended fire instant, or raise if ``now`` is too far from it."""

        t('reservations.queue.scheduler.webhook_gate.WebhookGate.check_tolerance')
        scheduled = booking_opens_at(target, self.offset_days, self.timezone)
        drift = (now - scheduled).total_seconds()
        if abs(drift) > self.tolerance.total_seconds():
            self.logger.warning(
                "Webhook outside tolerance: scheduled %s, now %s (drift %.0fs)",
                scheduled.isoformat(),
                now.isoformat(),
                drift,
            )
            raise TooEarlyOrTooLate(
                f"Not time yet: scheduled for {scheduled.isoformat()}",
                scheduled_for=scheduled,
                drift_seconds=drift,
            )
        return scheduled

    async def handle(
        self,
        target_date: Optional[str],
        target_time: Optional[str],
        trigger_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> WebhookResult:
        """Process one webhook delivery.

        Raises ``InvalidInputError`` for malformed input and
        ``TooEarlyOrTooLate`` outside tolerance, in both cases before any side
        effect.
        """

        t('reservations.queue.scheduler.webhook_gate.WebhookGate.handle')
        now = ensure_aware(now or self._clock(), "now")
        target = parse_target(target_date, target_time, self.timezone)
        if not trigger_id:
            raise InvalidInputError("A trigger id is required")
        scheduled = self.check_tolerance(target, now)

        trigger = self.registry.get(trigger_id)
        if trigger is None:
            self.logger.info("Webhook for unknown or cancelled trigger %s ignored", trigger_id)
            return WebhookResult(True, False, "Unknown or cancelled trigger", scheduled)
        if trigger.target_date != target_date or trigger.target_time != target_time:
            self.logger.warning(
                "Webhook for trigger %s carries %s %s but record has %s %s; ignored",
                trigger_id,
                target_date,
                target_time,
                trigger.target_date,
                trigger.target_time,
            )
            return WebhookResult(True, False, "Trigger does not match the requested slot", scheduled)

        result = await self.fire(trigger, now)
        return WebhookResult(result.accepted, result.fired, result.message, scheduled, result.outcome)

    async def fire(self, trigger: DeferredTrigger, now: datetime) -> WebhookResult:
        """Fire ``trigger`` once: mark it, disarm its job, schedule and run."""

        t('reservations.queue.scheduler.webhook_gate.WebhookGate.fire')
        if not self.registry.mark_fired(trigger.id):
            self.logger.info("Trigger %s already fired; no attempt", trigger.id)
            return WebhookResult(True, False, "Already fired")

        await self.registry.disarm(trigger)

        target = parse_target(trigger.target_date, trigger.target_time, self.timezone)
        if target <= now:
            message = f"Trigger {trigger.id} fired after its target {target.isoformat()} passed"
            self.logger.error(message)
            self.state.append_log(message, LogLevel.ERROR)
            if self.notifier is not None:
                self.notifier.notify_failure(message)
            return WebhookResult(True, True, message)

        schedule = self.state.set(now, target, source_trigger_id=trigger.id)
        self.logger.info(
            "Trigger %s fired for %s %s; running schedule %s",
            trigger.id,
            trigger.target_date,
            trigger.target_time,
            schedule.id,
        )
        outcome = await self.runner.run_due(now, schedule_id=schedule.id)
        message = outcome.message if outcome else "Booking attempt already in progress"
        return WebhookResult(True, True, message, outcome=outcome)
