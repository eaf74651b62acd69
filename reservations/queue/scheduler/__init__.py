"""Scheduling primitives: window arithmetic, dispatch, retry and webhook gate."""

from .timing import booking_opens_at, is_window_open, seconds_until
from .dispatch import DispatchDecision, DispatchMode, select_dispatch
from .metrics import SchedulerStats
from .retry import RetryController
from .webhook_gate import WebhookGate, WebhookResult

__all__ = [
    "booking_opens_at",
    "is_window_open",
    "seconds_until",
    "DispatchDecision",
    "DispatchMode",
    "select_dispatch",
    "SchedulerStats",
    "RetryController",
    "WebhookGate",
    "WebhookResult",
]
