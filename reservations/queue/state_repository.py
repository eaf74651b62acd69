"""Persistence backends for the schedule record and deferred triggers.

Two interchangeable stores are provided: JSON files on local disk and Redis.
Both expose whole-record load/save plus an atomic named claim used to keep
concurrent processes from firing the same trigger or attempt twice.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import redis

from infrastructure import constants
from infrastructure.errors import StateStoreError
from tracking import t


class StateStore(Protocol):
    """Durable storage contract shared by every backend."""

    def load_schedule(self) -> Optional[Dict[str, Any]]:
        ...

    def save_schedule(self, payload: Dict[str, Any]) -> None:
        ...

    def load_triggers(self) -> List[Dict[str, Any]]:
        ...

    def save_triggers(self, triggers: List[Dict[str, Any]]) -> None:
        ...

    def acquire(self, name: str, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> bool:
        ...

    def release(self, name: str, owner: Optional[str] = None) -> None:
        ...


_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]+")

_RELEASE_IF_OWNER = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class JsonFileStore:
    """Read/write scheduler state as JSON files under one directory."""

    def __init__(
        self,
        directory: str,
        *,
        logger: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        t('reservations.queue.state_repository.JsonFileStore.__init__')
        self._directory = Path(directory)
        self._schedule_path = self._directory / constants.SCHEDULE_FILE_NAME
        self._triggers_path = self._directory / constants.TRIGGERS_FILE_NAME
        self._claims_dir = self._directory / constants.CLAIMS_DIR_NAME
        self._logger = logger or logging.getLogger('JsonFileStore')
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._directory

    def load_schedule(self) -> Optional[Dict[str, Any]]:
        """Load the schedule record, returning ``None`` when absent or corrupt."""

        t('reservations.queue.state_repository.JsonFileStore.load_schedule')
        payload = self._read(self._schedule_path)
        if payload is None:
            return None
        if not isinstance(payload, dict):
            self._logger.warning(
                "Invalid schedule format in %s; expected object, received %s",
                self._schedule_path,
                type(payload).__name__,
            )
            return None
        return payload

    def save_schedule(self, payload: Dict[str, Any]) -> None:
        t('reservations.queue.state_repository.JsonFileStore.save_schedule')
        self._write(self._schedule_path, payload)

    def load_triggers(self) -> List[Dict[str, Any]]:
        """Load deferred triggers, returning an empty list when absent or corrupt."""

        t('reservations.queue.state_repository.JsonFileStore.load_triggers')
        payload = self._read(self._triggers_path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            self._logger.warning(
                "Invalid trigger format in %s; expected list, received %s",
                self._triggers_path,
                type(payload).__name__,
            )
            return []
        return [item for item in payload if isinstance(item, dict)]

    def save_triggers(self, triggers: List[Dict[str, Any]]) -> None:
        t('reservations.queue.state_repository.JsonFileStore.save_triggers')
        self._write(self._triggers_path, list(triggers))

    def acquire(self, name: str, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> bool:
        """Create the claim marker for ``name``; false if another holder has it.

        A marker older than ``ttl_seconds`` is treated as abandoned and
        reclaimed. Without a ttl the claim never expires. ``owner`` is written
        into the marker so :meth:`release` can leave a newer holder alone.
        """

        t('reservations.queue.state_repository.JsonFileStore.acquire')
        self._claims_dir.mkdir(parents=True, exist_ok=True)
        path = self._claim_path(name)
        for _ in range(2):
            try:
                fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if ttl_seconds is None or not self._claim_is_stale(path, ttl_seconds):
                    return False
                self._logger.warning("Reclaiming stale claim %s", name)
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                continue
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(f"{self._clock()}\n{owner or ''}")
            return True
        return False

    def release(self, name: str, owner: Optional[str] = None) -> None:
        """Remove the claim; with ``owner``, only if that owner still holds it."""

        t('reservations.queue.state_repository.JsonFileStore.release')
        path = self._claim_path(name)
        if owner is not None:
            _created, holder = self._read_claim(path)
            if holder != owner:
                self._logger.warning("Claim %s now held by another owner; not releasing", name)
                return
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def _claim_path(self, name: str) -> Path:
        return self._claims_dir / f"{_SAFE_NAME.sub('_', name)}.claim"

    def _read_claim(self, path: Path) -> Tuple[float, Optional[str]]:
        try:
            created, _, holder = path.read_text(encoding='utf-8').partition('\n')
        except OSError:
            return 0.0, None
        try:
            timestamp = float(created.strip() or 0)
        except ValueError:
            timestamp = 0.0
        return timestamp, holder.strip() or None

    def _claim_is_stale(self, path: Path, ttl_seconds: int) -> bool:
        created, _holder = self._read_claim(path)
        return self._clock() - created > ttl_seconds

    def _read(self, path: Path) -> Any:
        if not path.exists():
            self._logger.debug("State file %s does not exist; starting empty", path)
            return None
        try:
            with path.open('r', encoding='utf-8') as handle:
                return json.load(handle)
        except ValueError as exc:
            self._logger.error("Corrupt state in %s, treating as empty: %s", path, exc)
            return None
        except OSError as exc:
            self._logger.error("Failed to load state from %s: %s", path, exc)
            raise StateStoreError(f"Could not read {path}: {exc}") from exc

    def _write(self, path: Path, payload: Any) -> None:
        tmp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                'w', encoding='utf-8', dir=path.parent, delete=False, suffix='.tmp'
            ) as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.flush()
                tmp_path = Path(handle.name)
            tmp_path.replace(path)
            self._logger.debug("State saved to %s", path)
        except OSError as exc:
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            self._logger.error("Failed to save state to %s: %s", path, exc)
            raise StateStoreError(f"Could not write {path}: {exc}") from exc


class RedisStore:
    """Scheduler state kept in Redis under ``courtbot:*`` keys."""

    def __init__(
        self,
        client: Any,
        *,
        prefix: str = constants.REDIS_KEY_PREFIX,
        logger: Any = None,
    ) -> None:
        t('reservations.queue.state_repository.RedisStore.__init__')
        self._client = client
        self._prefix = prefix
        self._logger = logger or logging.getLogger('RedisStore')

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStore":
        t('reservations.queue.state_repository.RedisStore.from_url')
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
        )
        return cls(client, **kwargs)

    def _key(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    def load_schedule(self) -> Optional[Dict[str, Any]]:
        t('reservations.queue.state_repository.RedisStore.load_schedule')
        payload = self._get_json(self._key('schedule'))
        if payload is not None and not isinstance(payload, dict):
            self._logger.warning("Invalid schedule format in Redis; ignoring")
            return None
        return payload

    def save_schedule(self, payload: Dict[str, Any]) -> None:
        t('reservations.queue.state_repository.RedisStore.save_schedule')
        self._set_json(self._key('schedule'), payload)

    def load_triggers(self) -> List[Dict[str, Any]]:
        t('reservations.queue.state_repository.RedisStore.load_triggers')
        payload = self._get_json(self._key('triggers'))
        if payload is None:
            return []
        if not isinstance(payload, list):
            self._logger.warning("Invalid trigger format in Redis; ignoring")
            return []
        return [item for item in payload if isinstance(item, dict)]

    def save_triggers(self, triggers: List[Dict[str, Any]]) -> None:
        t('reservations.queue.state_repository.RedisStore.save_triggers')
        self._set_json(self._key('triggers'), list(triggers))

    def acquire(self, name: str, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> bool:
        t('reservations.queue.state_repository.RedisStore.acquire')
        try:
            acquired = self._client.set(
                self._key(f"claim:{name}"),
                owner or str(time.time()),
                nx=True,
                ex=ttl_seconds,
            )
        except redis.RedisError as exc:
            self._logger.error("Redis claim %s failed: %s", name, exc)
            raise StateStoreError(f"Could not acquire claim {name}: {exc}") from exc
        return bool(acquired)

    def release(self, name: str, owner: Optional[str] = None) -> None:
        """Drop the claim; with ``owner``, compare-and-delete in one round trip."""

        t('reservations.queue.state_repository.RedisStore.release')
        key = self._key(f"claim:{name}")
        try:
            if owner is None:
                self._client.delete(key)
                return
            removed = self._client.eval(_RELEASE_IF_OWNER, 1, key, owner)
        except redis.RedisError as exc:
            self._logger.error("Redis release %s failed: %s", name, exc)
            raise StateStoreError(f"Could not release claim {name}: {exc}") from exc
        if not removed:
            self._logger.warning("Claim %s now held by another owner; not releasing", name)

    def _get_json(self, key: str) -> Any:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            self._logger.error("Failed to load %s from Redis: %s", key, exc)
            raise StateStoreError(f"Could not read {key}: {exc}") from exc
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            self._logger.error("Corrupt JSON under %s: %s", key, exc)
            return None

    def _set_json(self, key: str, payload: Any) -> None:
        try:
            self._client.set(key, json.dumps(payload))
        except redis.RedisError as exc:
            self._logger.error("Failed to save %s to Redis: %s", key, exc)
            raise StateStoreError(f"Could not write {key}: {exc}") from exc


def create_store(settings: Any, *, logger: Any = None) -> StateStore:
    """Pick the Redis store when a URL is configured, else JSON files."""

    t('reservations.queue.state_repository.create_store')
    log = logger or logging.getLogger('BookingService')
    if settings.redis_url:
        log.info("Using Redis state store")
        return RedisStore.from_url(settings.redis_url)
    log.info("Using JSON state store in %s", settings.data_directory)
    return JsonFileStore(settings.data_directory)
