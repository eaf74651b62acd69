"""Shared booking attempt/outcome contracts for the scheduler and executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Protocol


class OutcomeKind(Enum):
    """Classification of a single booking attempt."""

    SUCCESS = "success"
    FAILURE_TERMINAL = "failure_terminal"
    FAILURE_TRANSIENT = "failure_transient"


@dataclass(frozen=True)
class BookingOutcome:
    """Result of one booking attempt, consumed by the retry state machine."""

    kind: OutcomeKind
    message: str
    court: Optional[str] = None
    time: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_terminal(self) -> bool:
        return self.kind == OutcomeKind.FAILURE_TERMINAL

    @property
    def is_transient(self) -> bool:
        return self.kind == OutcomeKind.FAILURE_TRANSIENT

    @property
    def execution_time(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @classmethod
    def success_result(
        cls,
        court: str,
        time: str,
        *,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> "BookingOutcome":
        return cls(
            kind=OutcomeKind.SUCCESS,
            message=message or f"Booked {court} at {time}",
            court=court,
            time=time,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def terminal_failure(
        cls, reason: str, *, metadata: Optional[Dict[str, object]] = None
    ) -> "BookingOutcome":
        return cls(
            kind=OutcomeKind.FAILURE_TERMINAL,
            message=reason,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def transient_failure(
        cls, reason: str, *, metadata: Optional[Dict[str, object]] = None
    ) -> "BookingOutcome":
        return cls(
            kind=OutcomeKind.FAILURE_TRANSIENT,
            message=reason,
            metadata=dict(metadata or {}),
        )

    def with_timing(self, started_at: datetime, completed_at: datetime) -> "BookingOutcome":
        """Return a copy stamped with the attempt's start and end instants."""

        return BookingOutcome(
            kind=self.kind,
            message=self.message,
            court=self.court,
            time=self.time,
            started_at=started_at,
            completed_at=completed_at,
            metadata=dict(self.metadata),
        )


class BookingAttempt(Protocol):
    """Anything that can try to book the slot starting at ``target``."""

    async def attempt_booking(self, target: datetime) -> BookingOutcome:
        ...
