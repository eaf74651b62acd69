"""Wrap a single booking attempt and classify what came back."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from automation.shared.booking_contracts import BookingAttempt, BookingOutcome
from infrastructure.errors import TerminalBookingFailure, TransientBookingFailure
from reservations.queue.schedule_state import utc_now
from tracking import t


class RetryController:
    """Run one attempt through the booking collaborator.

    The collaborator's own ``BookingOutcome`` is trusted as-is. Exceptions are
    classified by type: ``TerminalBookingFailure`` means the slot is gone,
    everything else (timeouts, network and page errors) is transient. The
    retry budget itself lives in :class:`ScheduleState`.
    """

    def __init__(
        self,
        booker: BookingAttempt,
        *,
        attempt_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Any = None,
    ) -> None:
        t('reservations.queue.scheduler.retry.RetryController.__init__')
        self._booker = booker
        self.attempt_timeout = attempt_timeout
        self._clock = clock
        self.logger = logger or logging.getLogger('RetryController')

    async def attempt(self, target: datetime) -> BookingOutcome:
        t('reservations.queue.scheduler.retry.RetryController.attempt')
        started = self._clock()
        self.logger.info("Starting booking attempt for %s", target.isoformat())
        try:
            call = self._booker.attempt_booking(target)
            if self.attempt_timeout:
                outcome = await asyncio.wait_for(call, timeout=self.attempt_timeout)
            else:
                outcome = await call
        except TerminalBookingFailure as exc:
            outcome = BookingOutcome.terminal_failure(str(exc) or "Slot unavailable")
        except TransientBookingFailure as exc:
            outcome = BookingOutcome.transient_failure(str(exc) or "Transient failure")
        except asyncio.TimeoutError:
            outcome = BookingOutcome.transient_failure("Booking attempt timed out")
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # collaborator failures are retried, never fatal
            self.logger.exception("Booking attempt raised unexpectedly")
            outcome = BookingOutcome.transient_failure(f"{type(exc).__name__}: {exc}")

        if not isinstance(outcome, BookingOutcome):
            outcome = BookingOutcome.transient_failure(
                f"Booking collaborator returned {type(outcome).__name__}"
            )

        finished = self._clock()
        outcome = outcome.with_timing(started, finished)
        self.logger.info(
            "Booking attempt finished: %s (%s)",
            outcome.kind.value,
            outcome.message,
        )
        return outcome
