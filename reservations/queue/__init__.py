"""Schedule state, deferred triggers and the runner."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .reservation_scheduler import ScheduleRunner
    from .schedule_state import ScheduleState
    from .state_repository import JsonFileStore, RedisStore, create_store
    from .trigger_registry import TriggerRegistry

__all__ = [
    "ScheduleRunner",
    "ScheduleState",
    "JsonFileStore",
    "RedisStore",
    "create_store",
    "TriggerRegistry",
]

_MODULES = {
    "ScheduleRunner": "reservations.queue.reservation_scheduler",
    "ScheduleState": "reservations.queue.schedule_state",
    "JsonFileStore": "reservations.queue.state_repository",
    "RedisStore": "reservations.queue.state_repository",
    "create_store": "reservations.queue.state_repository",
    "TriggerRegistry": "reservations.queue.trigger_registry",
}


def __getattr__(name: str):
    if name not in _MODULES:
        raise AttributeError(name)
    return getattr(import_module(_MODULES[name]), name)
