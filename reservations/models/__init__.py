"""Domain model definitions for courtbot."""

from .schedule import (
    DeferredTrigger,
    LastRun,
    LogEntry,
    LogLevel,
    ScheduleRecord,
    from_iso,
    to_iso,
)

__all__ = [
    "DeferredTrigger",
    "LastRun",
    "LogEntry",
    "LogLevel",
    "ScheduleRecord",
    "from_iso",
    "to_iso",
]
