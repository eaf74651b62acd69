from tracking import t
import json

import pytest

from infrastructure.errors import StateStoreError
from reservations.queue.state_repository import JsonFileStore, RedisStore, create_store
from tests.helpers import DummyLogger, FakeRedis, make_settings


class Ticker:
    def __init__(self, value=1000.0):
        self.value = value

    def __call__(self):
        return self.value


def test_json_store_round_trip(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_round_trip')
    store = JsonFileStore(str(tmp_path / "state"), logger=DummyLogger())

    assert store.load_schedule() is None
    assert store.load_triggers() == []

    store.save_schedule({"id": "abc", "retryCount": 2})
    store.save_triggers([{"id": "t1"}, {"id": "t2"}])

    fresh = JsonFileStore(str(tmp_path / "state"), logger=DummyLogger())
    assert fresh.load_schedule() == {"id": "abc", "retryCount": 2}
    assert [item["id"] for item in fresh.load_triggers()] == ["t1", "t2"]
    assert not list((tmp_path / "state").glob("*.tmp"))


def test_json_store_tolerates_corrupt_files(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_tolerates_corrupt_files')
    (tmp_path / "schedule.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "triggers.json").write_text(json.dumps({"id": "oops"}), encoding="utf-8")
    logger = DummyLogger()
    store = JsonFileStore(str(tmp_path), logger=logger)

    assert store.load_schedule() is None
    assert store.load_triggers() == []
    assert "error" in logger.levels()
    assert "warning" in logger.levels()


def test_json_store_write_failure_raises(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_write_failure_raises')
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = JsonFileStore(str(blocker), logger=DummyLogger())

    with pytest.raises(StateStoreError):
        store.save_schedule({"id": "abc"})


def test_json_store_claims_are_exclusive(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_claims_are_exclusive')
    store = JsonFileStore(str(tmp_path), logger=DummyLogger())
    other = JsonFileStore(str(tmp_path), logger=DummyLogger())

    assert store.acquire("trigger-fired:abc") is True
    assert other.acquire("trigger-fired:abc") is False

    store.release("trigger-fired:abc")
    store.release("trigger-fired:abc")
    assert other.acquire("trigger-fired:abc") is True


def test_json_store_reclaims_stale_claims_only_with_ttl(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_reclaims_stale_claims_only_with_ttl')
    ticker = Ticker()
    store = JsonFileStore(str(tmp_path), logger=DummyLogger(), clock=ticker)

    assert store.acquire("attempt", 300) is True
    assert store.acquire("fired") is True

    ticker.value += 200
    assert store.acquire("attempt", 300) is False

    ticker.value += 101
    assert store.acquire("attempt", 300) is True
    assert store.acquire("fired") is False


def test_redis_store_round_trip_and_claims():
    t('tests.unit.test_state_repository.test_redis_store_round_trip_and_claims')
    client = FakeRedis()
    store = RedisStore(client, logger=DummyLogger())

    store.save_schedule({"id": "abc"})
    store.save_triggers([{"id": "t1"}])

    assert json.loads(client.data["courtbot:schedule"]) == {"id": "abc"}
    assert store.load_schedule() == {"id": "abc"}
    assert store.load_triggers() == [{"id": "t1"}]

    assert store.acquire("attempt", 300) is True
    assert client.expiry["courtbot:claim:attempt"] == 300
    assert store.acquire("attempt", 300) is False
    store.release("attempt")
    assert store.acquire("attempt", 300) is True


def test_redis_store_ignores_bad_payloads():
    t('tests.unit.test_state_repository.test_redis_store_ignores_bad_payloads')
    client = FakeRedis()
    client.data["courtbot:schedule"] = "{broken"
    client.data["courtbot:triggers"] = json.dumps({"id": "t1"})
    store = RedisStore(client, logger=DummyLogger())

    assert store.load_schedule() is None
    assert store.load_triggers() == []


def test_redis_store_errors_surface_as_state_store_errors():
    t('tests.unit.test_state_repository.test_redis_store_errors_surface_as_state_store_errors')
    store = RedisStore(FakeRedis(fail=True), logger=DummyLogger())

    with pytest.raises(StateStoreError):
        store.load_schedule()
    with pytest.raises(StateStoreError):
        store.load_triggers()
    with pytest.raises(StateStoreError):
        store.save_schedule({"id": "abc"})
    with pytest.raises(StateStoreError):
        store.acquire("attempt", 300)


def test_redis_read_timeout_does_not_look_like_empty_state():
    t('tests.unit.test_state_repository.test_redis_read_timeout_does_not_look_like_empty_state')
    client = FakeRedis()
    store = RedisStore(client, logger=DummyLogger())
    store.save_triggers([{"id": "t1"}, {"id": "t2"}])
    client.failing_gets = 1

    with pytest.raises(StateStoreError):
        store.load_triggers()

    assert [item["id"] for item in store.load_triggers()] == ["t1", "t2"]


def test_json_store_unreadable_file_raises(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_unreadable_file_raises')
    (tmp_path / "schedule.json").mkdir()
    store = JsonFileStore(str(tmp_path), logger=DummyLogger())

    with pytest.raises(StateStoreError):
        store.load_schedule()


def test_json_store_release_leaves_newer_owner_alone(tmp_path):
    t('tests.unit.test_state_repository.test_json_store_release_leaves_newer_owner_alone')
    ticker = Ticker()
    store = JsonFileStore(str(tmp_path), logger=DummyLogger(), clock=ticker)

    assert store.acquire("attempt", 300, owner="first") is True
    ticker.value += 301
    assert store.acquire("attempt", 300, owner="second") is True

    store.release("attempt", owner="first")
    assert store.acquire("attempt", 300, owner="third") is False

    store.release("attempt", owner="second")
    assert store.acquire("attempt", 300, owner="third") is True


def test_redis_release_leaves_newer_owner_alone():
    t('tests.unit.test_state_repository.test_redis_release_leaves_newer_owner_alone')
    client = FakeRedis()
    store = RedisStore(client, logger=DummyLogger())

    assert store.acquire("attempt", 300, owner="first") is True
    # lease lapsed server-side and another worker took over
    del client.data["courtbot:claim:attempt"]
    assert store.acquire("attempt", 300, owner="second") is True

    store.release("attempt", owner="first")
    assert client.data["courtbot:claim:attempt"] == "second"

    store.release("attempt", owner="second")
    assert "courtbot:claim:attempt" not in client.data


def test_create_store_picks_backend(tmp_path):
    t('tests.unit.test_state_repository.test_create_store_picks_backend')
    json_store = create_store(make_settings(DATA_DIRECTORY=str(tmp_path)), logger=DummyLogger())
    redis_store = create_store(
        make_settings(REDIS_URL="redis://localhost:6379/0"),
        logger=DummyLogger(),
    )

    assert isinstance(json_store, JsonFileStore)
    assert json_store.directory == tmp_path
    assert isinstance(redis_store, RedisStore)
