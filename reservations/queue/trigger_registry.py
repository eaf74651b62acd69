"""Durable registry of deferred triggers armed with the external scheduler."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, List, Optional
from urllib.parse import urlencode

from infrastructure import constants
from infrastructure.errors import InvalidInputError, SchedulerIntegrationError
from reservations.models import DeferredTrigger
from tracking import t

from .schedule_state import utc_now
from .schedule_validation import ensure_aware, parse_target
from .state_repository import StateStore


def fired_claim_name(trigger_id: str) -> str:
    return f"trigger-fired:{trigger_id}"


class TriggerRegistry:
    """Create, list, fire and cancel deferred triggers.

    Delivery from the external scheduler is at-least-once; the registry makes
    firing idempotent through an atomic store claim per trigger id, which
    cancellation also consumes so a trigger is either fired once or cancelled.
    """

    def __init__(
        self,
        store: StateStore,
        cron_client: Any,
        *,
        webhook_url: Optional[str] = None,
        retention: timedelta = timedelta(hours=constants.FIRED_TRIGGER_RETENTION_HOURS),
        timezone: str = constants.VENUE_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
        logger: Any = None,
    ) -> None:
        t('reservations.queue.trigger_registry.TriggerRegistry.__init__')
        self._store = store
        self._cron = cron_client
        self._webhook_url = webhook_url
        self.retention = retention
        self.timezone = timezone
        self._clock = clock
        self._lock = threading.RLock()
        self.logger = logger or logging.getLogger('TriggerRegistry')

    # ------------------------------------------------------------------
    # Persistence plumbing
    # ------------------------------------------------------------------
    def _load_all(self) -> List[DeferredTrigger]:
        triggers: List[DeferredTrigger] = []
        for payload in self._store.load_triggers():
            try:
                triggers.append(DeferredTrigger.from_payload(payload))
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.error("Skipping unreadable trigger record %s: %s", payload, exc)
        return triggers

    def _save_all(self, triggers: List[DeferredTrigger]) -> None:
        self._store.save_triggers([trigger.to_payload() for trigger in triggers])

    def _callback_url(self, trigger: DeferredTrigger) -> str:
        if not self._webhook_url:
            raise SchedulerIntegrationError("WEBHOOK_URL not configured")
        query = urlencode(
            {
                'date': trigger.target_date,
                'time': trigger.target_time,
                'triggerId': trigger.id,
            }
        )
        separator = '&' if '?' in self._webhook_url else '?'
        return f"{self._webhook_url}{separator}{query}"

    def _remove(self, trigger_id: str) -> Optional[DeferredTrigger]:
        with self._lock:
            triggers = self._load_all()
            remaining = [trigger for trigger in triggers if trigger.id != trigger_id]
            if len(remaining) == len(triggers):
                return None
            removed = next(trigger for trigger in triggers if trigger.id == trigger_id)
            self._save_all(remaining)
            return removed

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def create(self, target_date: str, target_time: str, trigger_at: datetime) -> DeferredTrigger:
        """Persist a trigger, then arm the external job that will fire it."""

        t('reservations.queue.trigger_registry.TriggerRegistry.create')
        ensure_aware(trigger_at, "trigger_at")
        trigger = DeferredTrigger(
            id=uuid.uuid4().hex,
            target_date=target_date,
            target_time=target_time,
            trigger_at=trigger_at,
            created_at=self._clock(),
        )

        with self._lock:
            triggers = self._load_all()
            triggers.append(trigger)
            self._save_all(triggers)

        try:
            callback_url = self._callback_url(trigger)
            job_ref = await self._cron.arm(
                trigger_at,
                callback_url,
                f"courtbot {target_date} {target_time}",
            )
        except SchedulerIntegrationError:
            self._remove(trigger.id)
            self.logger.error(
                "Could not arm trigger %s for %s %s; record removed",
                trigger.id,
                target_date,
                target_time,
            )
            raise

        with self._lock:
            triggers = self._load_all()
            for existing in triggers:
                if existing.id == trigger.id:
                    existing.external_job_ref = job_ref
            self._save_all(triggers)
        trigger.external_job_ref = job_ref

        self.logger.info(
            f"""DEFERRED TRIGGER CREATED
            ID: {trigger.id}
            Target: {target_date} {target_time}
            Fires at: {trigger_at.isoformat()}
            External job: {job_ref}
            """
        )
        return trigger

    def get(self, trigger_id: str) -> Optional[DeferredTrigger]:
        t('reservations.queue.trigger_registry.TriggerRegistry.get')
        for trigger in self._load_all():
            if trigger.id == trigger_id:
                return trigger
        return None

    def list(self) -> Iterator[DeferredTrigger]:
        """Yield pending triggers, re-reading the store on every call."""

        t('reservations.queue.trigger_registry.TriggerRegistry.list')
        for trigger in self._load_all():
            if not trigger.fired:
                yield trigger

    def due(self, now: datetime) -> Iterator[DeferredTrigger]:
        t('reservations.queue.trigger_registry.TriggerRegistry.due')
        ensure_aware(now, "now")
        for trigger in self.list():
            if trigger.trigger_at <= now:
                yield trigger

    def mark_fired(self, trigger_id: str) -> bool:
        """Return ``True`` only for the first fire of a known pending trigger."""

        t('reservations.queue.trigger_registry.TriggerRegistry.mark_fired')
        existing = self.get(trigger_id)
        if existing is None or existing.fired:
            return False
        if not self._store.acquire(fired_claim_name(trigger_id)):
            self.logger.info("Trigger %s already claimed; ignoring re-delivery", trigger_id)
            return False

        with self._lock:
            triggers = self._load_all()
            found = False
            for trigger in triggers:
                if trigger.id == trigger_id:
                    trigger.fired = True
                    trigger.fired_at = self._clock()
                    found = True
            if not found:
                return False
            self._save_all(triggers)

        self.logger.info("Trigger %s marked fired", trigger_id)
        return True

    async def disarm(self, trigger: DeferredTrigger) -> bool:
        """Best-effort removal of the external job. Errors are logged."""

        t('reservations.queue.trigger_registry.TriggerRegistry.disarm')
        if not trigger.external_job_ref:
            return False
        try:
            await self._cron.disarm(trigger.external_job_ref)
        except SchedulerIntegrationError as exc:
            self.logger.error(
                "Failed to disarm external job %s for trigger %s: %s",
                trigger.external_job_ref,
                trigger.id,
                exc,
            )
            return False
        return True

    async def cancel(self, trigger_id: str) -> bool:
        """Remove a pending trigger. Unknown or fired triggers are a no-op."""

        t('reservations.queue.trigger_registry.TriggerRegistry.cancel')
        existing = self.get(trigger_id)
        if existing is None or existing.fired:
            return False
        if not self._store.acquire(fired_claim_name(trigger_id)):
            self.logger.info("Trigger %s is firing; cancel ignored", trigger_id)
            return False

        removed = self._remove(trigger_id)
        self._store.release(fired_claim_name(trigger_id))
        if removed is None:
            return False
        await self.disarm(removed)
        self.logger.info("Cancelled trigger %s (%s %s)", trigger_id, removed.target_date, removed.target_time)
        return True

    def _target_passed(self, trigger: DeferredTrigger, now: datetime) -> bool:
        try:
            return parse_target(trigger.target_date, trigger.target_time, self.timezone) <= now
        except InvalidInputError:
            return True

    async def prune(self, now: datetime) -> int:
        """Drop fired triggers past the retention window and pending ones whose target passed.

        Each removed record also gives up its fired claim. A re-delivery after
        that finds no record and is ignored. Returns how many were removed.
        """

        t('reservations.queue.trigger_registry.TriggerRegistry.prune')
        ensure_aware(now, "now")
        removed = 0
        for trigger in self._load_all():
            if trigger.fired:
                fired_at = trigger.fired_at or trigger.trigger_at
                if now - fired_at < self.retention:
                    continue
                if self._remove(trigger.id) is not None:
                    removed += 1
                self._store.release(fired_claim_name(trigger.id))
                continue

            if not self._target_passed(trigger, now):
                continue
            if not self._store.acquire(fired_claim_name(trigger.id)):
                continue
            stale = self._remove(trigger.id)
            self._store.release(fired_claim_name(trigger.id))
            if stale is None:
                continue
            removed += 1
            await self.disarm(stale)
            self.logger.warning(
                "Pruned trigger %s: target %s %s passed without firing",
                trigger.id,
                trigger.target_date,
                trigger.target_time,
            )

        if removed:
            self.logger.info("Pruned %s trigger record(s)", removed)
        return removed
