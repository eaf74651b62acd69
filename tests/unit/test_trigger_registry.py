from tracking import t
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from infrastructure.errors import SchedulerIntegrationError, StateStoreError
from reservations.queue.state_repository import RedisStore
from reservations.queue.trigger_registry import TriggerRegistry, fired_claim_name
from tests.helpers import DummyLogger, FakeCronClient, FakeRedis, FrozenClock, MemoryStore, eastern

WEBHOOK_URL = "https://courts.example.com/api/webhook"
FIRE_AT = eastern(2026, 1, 30, 19, 0)


def _registry(clock, cron=None, webhook_url=WEBHOOK_URL, logger=None):
    store = MemoryStore(clock)
    cron = cron or FakeCronClient()
    registry = TriggerRegistry(
        store,
        cron,
        webhook_url=webhook_url,
        clock=clock,
        logger=logger or DummyLogger(),
    )
    return registry, store, cron


@pytest.mark.asyncio
async def test_create_persists_and_arms_callback():
    t('tests.unit.test_trigger_registry.test_create_persists_and_arms_callback')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, cron = _registry(clock)

    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert trigger.external_job_ref == "job-1"
    assert store.triggers[0]["externalJobRef"] == "job-1"
    fire_at, callback, title = cron.armed[0]
    assert fire_at == FIRE_AT
    assert title == "courtbot 2026-02-06 19:00"
    parsed = urlparse(callback)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == WEBHOOK_URL
    assert parse_qs(parsed.query) == {
        "date": ["2026-02-06"],
        "time": ["19:00"],
        "triggerId": [trigger.id],
    }


@pytest.mark.asyncio
async def test_arm_failure_leaves_no_orphan_record():
    t('tests.unit.test_trigger_registry.test_arm_failure_leaves_no_orphan_record')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, _cron = _registry(clock, cron=FakeCronClient(fail_arm=True))

    with pytest.raises(SchedulerIntegrationError):
        await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert store.triggers == []
    assert list(registry.list()) == []


@pytest.mark.asyncio
async def test_missing_webhook_url_is_an_integration_error():
    t('tests.unit.test_trigger_registry.test_missing_webhook_url_is_an_integration_error')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, cron = _registry(clock, webhook_url=None)

    with pytest.raises(SchedulerIntegrationError):
        await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert store.triggers == []
    assert cron.armed == []


@pytest.mark.asyncio
async def test_mark_fired_succeeds_once():
    t('tests.unit.test_trigger_registry.test_mark_fired_succeeds_once')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, _store, _cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert registry.mark_fired(trigger.id) is True
    assert registry.mark_fired(trigger.id) is False
    assert registry.mark_fired("unknown") is False

    fired = registry.get(trigger.id)
    assert fired.fired is True
    assert fired.fired_at == clock()
    assert list(registry.list()) == []


@pytest.mark.asyncio
async def test_cancel_removes_trigger_and_disarms_job():
    t('tests.unit.test_trigger_registry.test_cancel_removes_trigger_and_disarms_job')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, _store, cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert await registry.cancel(trigger.id) is True
    assert await registry.cancel(trigger.id) is False

    assert cron.disarmed == ["job-1"]
    assert registry.get(trigger.id) is None
    assert registry.mark_fired(trigger.id) is False


@pytest.mark.asyncio
async def test_fired_trigger_cannot_be_cancelled():
    t('tests.unit.test_trigger_registry.test_fired_trigger_cannot_be_cancelled')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, _store, cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)
    registry.mark_fired(trigger.id)

    assert await registry.cancel(trigger.id) is False
    assert cron.disarmed == []


@pytest.mark.asyncio
async def test_disarm_failure_is_logged_not_raised():
    t('tests.unit.test_trigger_registry.test_disarm_failure_is_logged_not_raised')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    logger = DummyLogger()
    registry, _store, _cron = _registry(clock, cron=FakeCronClient(fail_disarm=True), logger=logger)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert await registry.cancel(trigger.id) is True

    assert registry.get(trigger.id) is None
    assert "error" in logger.levels()


@pytest.mark.asyncio
async def test_list_is_restartable_and_due_filters_by_time():
    t('tests.unit.test_trigger_registry.test_list_is_restartable_and_due_filters_by_time')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, _store, _cron = _registry(clock)
    early = await registry.create("2026-02-06", "19:00", FIRE_AT)
    late = await registry.create("2026-02-07", "08:00", eastern(2026, 1, 31, 8, 0))

    assert [trigger.id for trigger in registry.list()] == [early.id, late.id]
    assert [trigger.id for trigger in registry.list()] == [early.id, late.id]

    assert list(registry.due(eastern(2026, 1, 30, 18, 59))) == []
    assert [trigger.id for trigger in registry.due(eastern(2026, 1, 30, 19, 0))] == [early.id]
    assert len(list(registry.due(eastern(2026, 2, 1, 0, 0)))) == 2


@pytest.mark.asyncio
async def test_cancel_gives_up_the_fired_claim():
    t('tests.unit.test_trigger_registry.test_cancel_gives_up_the_fired_claim')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, _cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)

    assert await registry.cancel(trigger.id) is True

    assert fired_claim_name(trigger.id) not in store.claims
    assert registry.mark_fired(trigger.id) is False


@pytest.mark.asyncio
async def test_prune_drops_old_fired_triggers_and_their_claims():
    t('tests.unit.test_trigger_registry.test_prune_drops_old_fired_triggers_and_their_claims')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, _cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)
    clock.set(FIRE_AT)
    registry.mark_fired(trigger.id)

    assert await registry.prune(FIRE_AT + timedelta(hours=23)) == 0
    assert registry.get(trigger.id).fired is True

    assert await registry.prune(FIRE_AT + timedelta(hours=24)) == 1
    assert registry.get(trigger.id) is None
    assert store.triggers == []
    assert store.claims == {}
    assert registry.mark_fired(trigger.id) is False


@pytest.mark.asyncio
async def test_prune_drops_pending_triggers_whose_target_passed():
    t('tests.unit.test_trigger_registry.test_prune_drops_pending_triggers_whose_target_passed')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, cron = _registry(clock)
    missed = await registry.create("2026-02-06", "19:00", FIRE_AT)
    upcoming = await registry.create("2026-02-07", "08:00", eastern(2026, 1, 31, 8, 0))

    assert await registry.prune(eastern(2026, 2, 6, 19, 30)) == 1

    assert registry.get(missed.id) is None
    assert [trigger.id for trigger in registry.list()] == [upcoming.id]
    assert cron.disarmed == ["job-1"]
    assert store.claims == {}


@pytest.mark.asyncio
async def test_prune_skips_a_trigger_that_is_firing():
    t('tests.unit.test_trigger_registry.test_prune_skips_a_trigger_that_is_firing')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    registry, store, _cron = _registry(clock)
    trigger = await registry.create("2026-02-06", "19:00", FIRE_AT)
    store.acquire(fired_claim_name(trigger.id))

    assert await registry.prune(eastern(2026, 2, 6, 19, 30)) == 0
    assert registry.get(trigger.id) is not None


@pytest.mark.asyncio
async def test_read_failure_during_create_keeps_existing_triggers():
    t('tests.unit.test_trigger_registry.test_read_failure_during_create_keeps_existing_triggers')
    clock = FrozenClock(eastern(2026, 1, 20, 10, 0))
    client = FakeRedis()
    cron = FakeCronClient()
    registry = TriggerRegistry(
        RedisStore(client, logger=DummyLogger()),
        cron,
        webhook_url=WEBHOOK_URL,
        clock=clock,
        logger=DummyLogger(),
    )
    first = await registry.create("2026-02-06", "19:00", FIRE_AT)
    second = await registry.create("2026-02-07", "08:00", eastern(2026, 1, 31, 8, 0))
    client.failing_gets = 1

    with pytest.raises(StateStoreError):
        await registry.create("2026-02-08", "08:00", eastern(2026, 2, 1, 8, 0))

    assert [trigger.id for trigger in registry.list()] == [first.id, second.id]
    assert len(cron.armed) == 2
