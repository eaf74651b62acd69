"""
Schedule runner
Fires due deferred triggers and runs the active schedule when it is due.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from automation.shared.booking_contracts import BookingOutcome
from infrastructure import constants
from infrastructure.errors import CourtBotError
from reservations.queue.schedule_state import ScheduleState, utc_now
from reservations.queue.schedule_transitions import RetryDecision
from reservations.queue.scheduler import RetryController, SchedulerStats, seconds_until
from tracking import t


class ScheduleRunner:
    """The single "is due, then attempt" path shared by every entry point.

    Attempts never overlap: the schedule is claimed through the store before
    the collaborator is called and released only after the outcome has been
    recorded.
    """

    def __init__(
        self,
        state: ScheduleState,
        retry: RetryController,
        *,
        registry: Any = None,
        notifier: Any = None,
        stats: Optional[SchedulerStats] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Any = None,
    ) -> None:
        t('reservations.queue.reservation_scheduler.ScheduleRunner.__init__')
        self.state = state
        self.retry = retry
        self.registry = registry
        self.notifier = notifier
        self.stats = stats or SchedulerStats()
        self.gate: Any = None
        self.running = False
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger('ScheduleRunner')

    async def run_due(
        self,
        now: Optional[datetime] = None,
        *,
        schedule_id: Optional[str] = None,
    ) -> Optional[BookingOutcome]:
        """Attempt the schedule if it is due; ``None`` when nothing ran."""

        t('reservations.queue.reservation_scheduler.ScheduleRunner.run_due')
        now = now or self._clock()
        claimed = self.state.claim_due(now, schedule_id=schedule_id)
        if claimed is None:
            return None

        try:
            if not self.state.is_active(claimed.id):
                self.logger.info("Schedule %s cancelled before attempt; skipping", claimed.id)
                return None
            outcome = await self.retry.attempt(claimed.target_reservation_time)
            decision = self.state.record_outcome(outcome, schedule_id=claimed.id)
        finally:
            self.state.release_claim(claimed.attempt_owner)

        self.stats.record_outcome(outcome)
        if decision == RetryDecision.RETRY_SCHEDULED:
            self.stats.record_retry()
        self._notify(decision, outcome)
        return outcome

    def _notify(self, decision: RetryDecision, outcome: BookingOutcome) -> None:
        t('reservations.queue.reservation_scheduler.ScheduleRunner._notify')
        if self.notifier is None:
            return
        if outcome.success:
            self.notifier.notify_success(outcome.court or "court", outcome.time or "")
        elif decision == RetryDecision.RETRY_SCHEDULED:
            snapshot = self.state.snapshot()
            self.notifier.notify_retry(
                snapshot.retry_count,
                snapshot.max_retries,
                outcome.message,
                int(self.state.retry_delay.total_seconds()),
            )
        elif decision in (RetryDecision.COMPLETED, RetryDecision.EXHAUSTED):
            self.notifier.notify_failure(outcome.message)

    async def tick(self, now: Optional[datetime] = None) -> List[BookingOutcome]:
        """Fire due deferred triggers, then run the schedule if it is due."""

        t('reservations.queue.reservation_scheduler.ScheduleRunner.tick')
        now = now or self._clock()
        outcomes: List[BookingOutcome] = []

        if self.gate is not None and self.registry is not None:
            for trigger in list(self.registry.due(now)):
                try:
                    result = await self.gate.fire(trigger, now)
                except CourtBotError as exc:
                    self.logger.error("Firing trigger %s failed: %s", trigger.id, exc)
                    continue
                if result.fired:
                    self.stats.record_trigger_fired()
                if result.outcome is not None:
                    outcomes.append(result.outcome)

            try:
                await self.registry.prune(now)
            except CourtBotError as exc:
                self.logger.error("Pruning triggers failed: %s", exc)

        outcome = await self.run_due(now)
        if outcome is not None:
            outcomes.append(outcome)
        return outcomes

    async def wait_and_run(self, run_at: datetime) -> Optional[BookingOutcome]:
        """Sleep in-process until ``run_at``, then run whatever is due."""

        t('reservations.queue.reservation_scheduler.ScheduleRunner.wait_and_run')
        delay = seconds_until(self._clock(), run_at)
        if delay > 0:
            self.logger.info("Precise wait of %.1fs until %s", delay, run_at.isoformat())
            await self._sleep(delay)
        return await self.run_due(max(run_at, self._clock()))

    async def run_forever(self, poll_interval: float = constants.DEFAULT_POLL_INTERVAL_SECONDS) -> None:
        """Main loop that keeps ticking until :meth:`stop` is called."""

        t('reservations.queue.reservation_scheduler.ScheduleRunner.run_forever')
        self.running = True
        self.logger.info("Schedule runner started (poll every %ss)", poll_interval)
        while self.running:
            try:
                await self.tick()
                await self._sleep(poll_interval)
            except Exception as exc:  # keep the loop alive across tick failures
                self.logger.error("Scheduler error: %s", exc)
                await self._sleep(max(poll_interval * 2, 30))
        self.logger.info("Schedule runner stopped")

    def stop(self) -> None:
        t('reservations.queue.reservation_scheduler.ScheduleRunner.stop')
        self.running = False
