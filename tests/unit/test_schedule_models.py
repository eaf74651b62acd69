from tracking import t

import pytest

from reservations.models import (
    DeferredTrigger,
    LastRun,
    LogEntry,
    LogLevel,
    ScheduleRecord,
    from_iso,
    to_iso,
)
from tests.helpers import eastern


def test_iso_helpers_store_utc():
    t('tests.unit.test_schedule_models.test_iso_helpers_store_utc')
    value = eastern(2026, 2, 6, 19, 0)

    stored = to_iso(value)

    assert stored == "2026-02-07T00:00:00+00:00"
    assert from_iso(stored) == value
    assert from_iso("2026-02-07T00:00:00") == value
    assert to_iso(None) is None and from_iso("") is None


def test_naive_datetime_cannot_be_serialized():
    t('tests.unit.test_schedule_models.test_naive_datetime_cannot_be_serialized')
    with pytest.raises(ValueError):
        to_iso(eastern(2026, 2, 6, 19, 0).replace(tzinfo=None))


def test_schedule_record_payload_uses_stored_field_names():
    t('tests.unit.test_schedule_models.test_schedule_record_payload_uses_stored_field_names')
    record = ScheduleRecord(
        id="abc",
        target_reservation_time=eastern(2026, 2, 6, 19, 0),
        run_time=eastern(2026, 1, 30, 19, 0),
        retry_count=2,
        last_run=LastRun(time=eastern(2026, 1, 30, 19, 1), success=False, message="timeout"),
        logs=[LogEntry(time=eastern(2026, 1, 30, 19, 1), message="Retry 2/10", level=LogLevel.INFO)],
    )

    payload = record.to_payload()

    assert payload["scheduledTime"] == "2026-01-31T00:00:00+00:00"
    assert payload["targetReservationTime"] == "2026-02-07T00:00:00+00:00"
    assert payload["retryCount"] == 2
    assert payload["maxRetries"] == 10
    assert payload["lastRun"]["success"] is False
    assert payload["logs"] == [
        {"time": "2026-01-31T00:01:00+00:00", "message": "Retry 2/10", "type": "info"}
    ]

    restored = ScheduleRecord.from_payload(payload)
    assert restored.scheduled
    assert restored.run_time == record.run_time
    assert restored.last_run.message == "timeout"
    assert restored.logs[0].level == LogLevel.INFO


def test_empty_record_is_not_scheduled():
    t('tests.unit.test_schedule_models.test_empty_record_is_not_scheduled')
    record = ScheduleRecord.from_payload({"logs": [{"message": "old", "type": "error"}, "junk"]})

    assert not record.scheduled
    assert record.retry_count == 0
    assert [entry.level for entry in record.logs] == [LogLevel.ERROR]


def test_deferred_trigger_payload():
    t('tests.unit.test_schedule_models.test_deferred_trigger_payload')
    trigger = DeferredTrigger(
        id="t1",
        target_date="2026-02-06",
        target_time="19:00",
        trigger_at=eastern(2026, 1, 30, 19, 0),
        external_job_ref="4242",
    )

    payload = trigger.to_payload()

    assert payload["targetDate"] == "2026-02-06"
    assert payload["triggerAt"] == "2026-01-31T00:00:00+00:00"
    assert payload["fired"] is False
    assert DeferredTrigger.from_payload(payload) == trigger
