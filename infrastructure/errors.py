"""Error taxonomy shared by the scheduler components."""

from __future__ import annotations


class CourtBotError(Exception):
    """Base class for every error raised by the scheduler."""


class InvalidInputError(CourtBotError, ValueError):
    """Malformed or past-dated input, rejected before any side effect."""


class TerminalBookingFailure(CourtBotError):
    """The slot cannot be booked; retrying will not help."""


class TransientBookingFailure(CourtBotError):
    """The attempt failed for a reason that may clear up on retry."""


class SchedulerIntegrationError(CourtBotError):
    """The external deferred scheduler rejected or could not process a call."""


class TooEarlyOrTooLate(CourtBotError):
    """A webhook arrived outside the tolerance around its intended instant."""

    def __init__(self, message: str, *, scheduled_for=None, drift_seconds: float = 0.0) -> None:
        super().__init__(message)
        self.scheduled_for = scheduled_for
        self.drift_seconds = drift_seconds


class StateStoreError(CourtBotError):
    """The durable store could not be written."""
