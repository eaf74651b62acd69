"""Shared fakes and utilities for unit tests."""

from __future__ import annotations
from tracking import t

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytz
import redis

from automation.shared.booking_contracts import BookingOutcome
from infrastructure.errors import SchedulerIntegrationError
from infrastructure.settings import AppSettings, load_settings

EASTERN = pytz.timezone("America/New_York")


def eastern(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    """Build an aware venue-local datetime."""
    return EASTERN.localize(datetime(year, month, day, hour, minute, second))


def make_settings(**overrides: Any) -> AppSettings:
    env = {
        "DATA_DIRECTORY": "unused",
        "WEBHOOK_URL": "https://courts.example.com/api/webhook",
        "CRONJOB_API_KEY": "test-key",
    }
    env.update({key: str(value) for key, value in overrides.items()})
    return load_settings(env)


class DummyLogger:
    """Lightweight stand-in for ``logging.Logger`` that records calls."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []

    def _record(self, level: str, *args: Any, **kwargs: Any) -> None:
        self.records.append((level, args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self._record("debug", *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self._record("info", *args, **kwargs)

    def warning(self, *args: Any, **kwargs: Any) -> None:
        self._record("warning", *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self._record("error", *args, **kwargs)

    def exception(self, *args: Any, **kwargs: Any) -> None:
        self._record("exception", *args, **kwargs)

    @property
    def messages(self) -> List[Tuple[str, Any]]:
        """Return formatted messages for quick assertions."""
        formatted: List[Tuple[str, Any]] = []
        for level, args, _kwargs in self.records:
            message: Any = None
            if args:
                template = args[0]
                if isinstance(template, str) and len(args) > 1:
                    try:
                        message = template % args[1:]
                    except (TypeError, ValueError):
                        message = template
                else:
                    message = template
            formatted.append((level, message))
        return formatted

    def levels(self) -> List[str]:
        return [level for level, _args, _kwargs in self.records]


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


class FakeRedis:
    """Dict-backed subset of the redis client API."""

    def __init__(self, fail: bool = False, failing_gets: int = 0) -> None:
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, Optional[int]] = {}
        self.fail = fail
        self.failing_gets = failing_gets

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def get(self, key: str) -> Any:
        self._check()
        if self.failing_gets:
            self.failing_gets -= 1
            raise redis.TimeoutError("read timed out")
        return self.data.get(key)

    def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None) -> Optional[bool]:
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiry[key] = ex
        return True

    def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def eval(self, script: str, numkeys: int, key: str, owner: str) -> int:
        self._check()
        if self.data.get(key) == owner:
            return self.delete(key)
        return 0


class MemoryStore:
    """In-memory ``StateStore`` with the same claim semantics as the file store."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.schedule: Optional[Dict[str, Any]] = None
        self.triggers: List[Dict[str, Any]] = []
        self.claims: Dict[str, Optional[datetime]] = {}
        self.owners: Dict[str, Optional[str]] = {}
        self.saves = 0
        self._clock = clock or (lambda: datetime.now(pytz.utc))

    def load_schedule(self) -> Optional[Dict[str, Any]]:
        return dict(self.schedule) if self.schedule else None

    def save_schedule(self, payload: Dict[str, Any]) -> None:
        self.saves += 1
        self.schedule = dict(payload)

    def load_triggers(self) -> List[Dict[str, Any]]:
        return [dict(item) for item in self.triggers]

    def save_triggers(self, triggers: List[Dict[str, Any]]) -> None:
        self.triggers = [dict(item) for item in triggers]

    def acquire(self, name: str, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> bool:
        now = self._clock()
        if name in self.claims:
            expires = self.claims[name]
            if expires is None or expires > now:
                return False
        self.claims[name] = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self.owners[name] = owner
        return True

    def release(self, name: str, owner: Optional[str] = None) -> None:
        if owner is not None and self.owners.get(name) != owner:
            return
        self.claims.pop(name, None)
        self.owners.pop(name, None)


OutcomeSource = Union[BookingOutcome, BaseException]


class FakeBooker:
    """Booking collaborator that replays scripted outcomes or exceptions."""

    def __init__(self, outcomes: Sequence[OutcomeSource] = (), default: Optional[OutcomeSource] = None) -> None:
        self.outcomes = list(outcomes)
        self.default = default if default is not None else BookingOutcome.success_result("Tennis Court 2", "7:00 pm")
        self.calls: List[datetime] = []
        self.before_return: Optional[Callable[[], Any]] = None

    async def attempt_booking(self, target: datetime) -> BookingOutcome:
        t('tests.helpers.FakeBooker.attempt_booking')
        self.calls.append(target)
        if self.before_return is not None:
            result = self.before_return()
            if hasattr(result, "__await__"):
                await result
        item = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(item, BaseException):
            raise item
        return item


class FakeCronClient:
    """Records arm/disarm calls; can be told to fail."""

    def __init__(self, *, fail_arm: bool = False, fail_disarm: bool = False) -> None:
        self.fail_arm = fail_arm
        self.fail_disarm = fail_disarm
        self.armed: List[Tuple[datetime, str, str]] = []
        self.disarmed: List[str] = []

    async def arm(self, fire_at: datetime, callback_url: str, title: str) -> str:
        if self.fail_arm:
            raise SchedulerIntegrationError("cron-job.org error 500 while arming")
        self.armed.append((fire_at, callback_url, title))
        return f"job-{len(self.armed)}"

    async def disarm(self, job_id: str) -> None:
        if self.fail_disarm:
            raise SchedulerIntegrationError(f"cron-job.org error 500 while deleting job {job_id}")
        self.disarmed.append(job_id)


class RecordingNotifier:
    """Notifier stand-in collecting every event."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Tuple[Any, ...]]] = []

    def notify_success(self, court: str, time: str) -> None:
        self.events.append(("success", (court, time)))

    def notify_failure(self, reason: str) -> None:
        self.events.append(("failure", (reason,)))

    def notify_retry(self, attempt: int, max_attempts: int, reason: str, delay_seconds: int = 60) -> None:
        self.events.append(("retry", (attempt, max_attempts, reason)))

    def notify_scheduled(self, reservation_time: datetime, run_time: datetime) -> None:
        self.events.append(("scheduled", (reservation_time, run_time)))

    async def flush(self) -> None:
        return None

    def kinds(self) -> List[str]:
        return [kind for kind, _args in self.events]
