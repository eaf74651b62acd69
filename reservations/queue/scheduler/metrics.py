"""Statistics helpers for the schedule runner."""

from __future__ import annotations
from tracking import t

from dataclasses import dataclass
from typing import Optional

from automation.shared.booking_contracts import BookingOutcome


@dataclass
class SchedulerStats:
    """Mutable counters tracking booking attempt performance."""

    total_attempts: int = 0
    successful_bookings: int = 0
    terminal_failures: int = 0
    transient_failures: int = 0
    retries_scheduled: int = 0
    triggers_fired: int = 0
    total_execution_time: float = 0.0

    def record_outcome(self, outcome: BookingOutcome) -> None:
        t('reservations.queue.scheduler.metrics.SchedulerStats.record_outcome')
        self.total_attempts += 1
        if outcome.success:
            self.successful_bookings += 1
        elif outcome.is_terminal:
            self.terminal_failures += 1
        else:
            self.transient_failures += 1
        self._record_execution_time(outcome.execution_time)

    def record_retry(self) -> None:
        t('reservations.queue.scheduler.metrics.SchedulerStats.record_retry')
        self.retries_scheduled += 1

    def record_trigger_fired(self) -> None:
        t('reservations.queue.scheduler.metrics.SchedulerStats.record_trigger_fired')
        self.triggers_fired += 1

    def _record_execution_time(self, execution_time: Optional[float]) -> None:
        t('reservations.queue.scheduler.metrics.SchedulerStats._record_execution_time')
        if execution_time is None:
            return
        try:
            value = float(execution_time)
        except (TypeError, ValueError):
            return
        if value < 0:
            return
        self.total_execution_time += value

    @property
    def failed_bookings(self) -> int:
        return self.terminal_failures + self.transient_failures

    @property
    def avg_execution_time(self) -> float:
        t('reservations.queue.scheduler.metrics.SchedulerStats.avg_execution_time')
        if self.total_attempts == 0:
            return 0.0
        return self.total_execution_time / self.total_attempts

    @property
    def success_rate(self) -> float:
        t('reservations.queue.scheduler.metrics.SchedulerStats.success_rate')
        if self.total_attempts == 0:
            return 0.0
        return (self.successful_bookings / self.total_attempts) * 100

    def format_report(self) -> str:
        t('reservations.queue.scheduler.metrics.SchedulerStats.format_report')
        lines = [
            "📊 Court Booking Scheduler Report",
            f"✅ Successful: {self.successful_bookings}",
            f"⛔ Terminal failures: {self.terminal_failures}",
            f"⚠️ Transient failures: {self.transient_failures}",
            f"📈 Total Attempts: {self.total_attempts}",
            f"🏆 Success Rate: {self.success_rate:.2f}%",
            f"⏱️ Avg Execution Time: {self.avg_execution_time:.2f}s",
        ]
        if self.retries_scheduled:
            lines.append(f"🔁 Retries Scheduled: {self.retries_scheduled}")
        if self.triggers_fired:
            lines.append(f"⏰ Triggers Fired: {self.triggers_fired}")
        return "\n".join(lines)
