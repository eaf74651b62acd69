"""Domain dataclasses for the schedule record and deferred triggers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pytz

from infrastructure.constants import DEFAULT_MAX_RETRIES


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as a UTC ISO-8601 string."""

    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError("Refusing to serialize a naive datetime")
    return value.astimezone(pytz.utc).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 string back into an aware UTC datetime."""

    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


class LogLevel(Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """One line of the human-facing activity log."""

    time: datetime
    message: str
    level: LogLevel = LogLevel.INFO

    def to_payload(self) -> Dict[str, Any]:
        return {"time": to_iso(self.time), "message": self.message, "type": self.level.value}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LogEntry":
        return cls(
            time=from_iso(payload.get("time")) or datetime.now(pytz.utc),
            message=str(payload.get("message", "")),
            level=LogLevel(payload.get("type", LogLevel.INFO.value)),
        )


@dataclass(frozen=True)
class LastRun:
    """Result of the most recent completed attempt."""

    time: datetime
    success: bool
    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {"time": to_iso(self.time), "success": self.success, "message": self.message}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LastRun":
        return cls(
            time=from_iso(payload.get("time")) or datetime.now(pytz.utc),
            success=bool(payload.get("success")),
            message=str(payload.get("message", "")),
        )


@dataclass
class ScheduleRecord:
    """The single durable schedule. Empty when ``run_time`` is ``None``."""

    id: Optional[str] = None
    target_reservation_time: Optional[datetime] = None
    run_time: Optional[datetime] = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    last_run: Optional[LastRun] = None
    logs: List[LogEntry] = field(default_factory=list)
    attempt_started_at: Optional[datetime] = None
    attempt_owner: Optional[str] = None
    source_trigger_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def scheduled(self) -> bool:
        return self.run_time is not None and self.target_reservation_time is not None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scheduledTime": to_iso(self.run_time),
            "targetReservationTime": to_iso(self.target_reservation_time),
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "lastRun": self.last_run.to_payload() if self.last_run else None,
            "logs": [entry.to_payload() for entry in self.logs],
            "attemptStartedAt": to_iso(self.attempt_started_at),
            "attemptOwner": self.attempt_owner,
            "sourceTriggerId": self.source_trigger_id,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ScheduleRecord":
        last_run = payload.get("lastRun")
        return cls(
            id=payload.get("id"),
            target_reservation_time=from_iso(payload.get("targetReservationTime")),
            run_time=from_iso(payload.get("scheduledTime")),
            retry_count=int(payload.get("retryCount", 0) or 0),
            max_retries=int(payload.get("maxRetries", DEFAULT_MAX_RETRIES)),
            last_run=LastRun.from_payload(last_run) if isinstance(last_run, dict) else None,
            logs=[
                LogEntry.from_payload(item)
                for item in payload.get("logs") or []
                if isinstance(item, dict)
            ],
            attempt_started_at=from_iso(payload.get("attemptStartedAt")),
            attempt_owner=payload.get("attemptOwner"),
            source_trigger_id=payload.get("sourceTriggerId"),
            created_at=from_iso(payload.get("createdAt")),
        )


@dataclass
class DeferredTrigger:
    """A pending far-future booking armed with the external scheduler."""

    id: str
    target_date: str
    target_time: str
    trigger_at: datetime
    external_job_ref: Optional[str] = None
    fired: bool = False
    created_at: Optional[datetime] = None
    fired_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "targetDate": self.target_date,
            "targetTime": self.target_time,
            "triggerAt": to_iso(self.trigger_at),
            "externalJobRef": self.external_job_ref,
            "fired": self.fired,
            "createdAt": to_iso(self.created_at),
            "firedAt": to_iso(self.fired_at),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DeferredTrigger":
        return cls(
            id=str(payload["id"]),
            target_date=str(payload["targetDate"]),
            target_time=str(payload["targetTime"]),
            trigger_at=from_iso(payload["triggerAt"]),
            external_job_ref=payload.get("externalJobRef"),
            fired=bool(payload.get("fired", False)),
            created_at=from_iso(payload.get("createdAt")),
            fired_at=from_iso(payload.get("firedAt")),
        )
