"""Persistence contract shared by every record store backend.

Provides an abstract interface over three collections (``workItems``,
``students``, ``submissions``) with an in-memory implementation and a
Redis implementation.  The REST implementation lives in
``services/remote_store.py``.  The active backend is chosen once from
settings by :func:`get_record_store`; callers depend only on
:class:`RecordStore`.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence, Union

from redis.exceptions import RedisError

from config.settings import get_settings
from errors.exceptions import BackendUnavailableError, ValidationError

logger = logging.getLogger(__name__)

Key = Union[str, Sequence[str]]

# ── Collections ──────────────────────────────────────────────


@dataclass(frozen=True)
class CollectionSpec:
    """Declared unique key and indexed fields of one collection.

    ``list_indexes`` are list-valued fields indexed per element, which is
    what ``contains`` filters use.
    """

    name: str
    key_fields: tuple[str, ...]
    indexes: tuple[str, ...] = ()
    list_indexes: tuple[str, ...] = ()

    def key_of(self, record: dict[str, Any]) -> tuple[str, ...]:
        """Extract the unique key of *record*; every key field is required."""
        for field in self.key_fields:
            if record.get(field) in (None, ""):
                raise ValidationError(field, f"required key field of {self.name} record")
        return tuple(str(record[field]) for field in self.key_fields)

    def normalize_key(self, key: Key) -> tuple[str, ...]:
        parts = (key,) if isinstance(key, str) else tuple(key)
        if len(parts) != len(self.key_fields):
            raise ValueError(
                f"{self.name} key needs {len(self.key_fields)} part(s) "
                f"{self.key_fields}, got {parts!r}"
            )
        return tuple(str(p) for p in parts)


COLLECTIONS: dict[str, CollectionSpec] = {
    "workItems": CollectionSpec(
        name="workItems",
        key_fields=("id",),
        indexes=("class_id", "kind", "archived", "deleted"),
        list_indexes=("target_groups", "target_students"),
    ),
    "students": CollectionSpec(
        name="students",
        key_fields=("id",),
        indexes=("id", "group_id", "active"),
    ),
    "submissions": CollectionSpec(
        name="submissions",
        key_fields=("work_item_id", "student_id"),
        indexes=("id", "work_item_id", "student_id", "status"),
    ),
}


def get_collection(name: str) -> CollectionSpec:
    spec = COLLECTIONS.get(name)
    if spec is None:
        raise ValueError(f"Unknown collection: {name!r}")
    return spec


# ── Filters ──────────────────────────────────────────────────


class FilterOp(str, Enum):
    EQ = "eq"
    CONTAINS = "contains"  # list field contains value
    IN = "in"  # field value is one of a list


@dataclass(frozen=True)
class Filter:
    """One equality/containment condition; a query ANDs its filters."""

    field: str
    op: FilterOp
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> Filter:
        return cls(field, FilterOp.EQ, value)

    @classmethod
    def contains(cls, field: str, value: Any) -> Filter:
        return cls(field, FilterOp.CONTAINS, value)

    @classmethod
    def is_in(cls, field: str, values: Iterable[Any]) -> Filter:
        return cls(field, FilterOp.IN, tuple(values))

    def matches(self, record: dict[str, Any]) -> bool:
        actual = record.get(self.field)
        if self.op == FilterOp.EQ:
            return actual == self.value
        if self.op == FilterOp.CONTAINS:
            return isinstance(actual, list) and self.value in actual
        return actual in self.value


def matches_all(record: dict[str, Any], filters: Iterable[Filter]) -> bool:
    return all(f.matches(record) for f in filters)


# ── Abstract Interface ───────────────────────────────────────


class RecordStore(ABC):
    """Abstract record store; implement for different backends.

    Every implementation must behave identically: returned records are
    copies, ``upsert`` replaces by the collection's unique key, and
    ``delete`` of a missing key is a no-op.  Storage failures surface as
    :class:`BackendUnavailableError` and leave state unchanged.
    """

    backend_name = "abstract"

    async def start(self) -> None:
        """Acquire connections.  No-op for backends that need none."""

    async def close(self) -> None:
        """Release connections.  No-op for backends that hold none."""

    @abstractmethod
    async def get(self, collection: str, key: Key) -> dict[str, Any] | None:
        """Retrieve one record by unique key.  Returns None if absent."""
        ...

    @abstractmethod
    async def query(
        self, collection: str, filters: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]:
        """Return every record matching all *filters*."""
        ...

    @abstractmethod
    async def upsert(self, collection: str, record: dict[str, Any]) -> None:
        """Insert *record*, or replace the record with the same unique key."""
        ...

    @abstractmethod
    async def delete(self, collection: str, key: Key) -> None:
        """Remove a record by unique key."""
        ...


# ── In-Memory Implementation ────────────────────────────────


class InMemoryRecordStore(RecordStore):
    """Process-memory store; not durable.

    Suitable for tests and single-process demos.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, dict[tuple[str, ...], dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }

    async def get(self, collection: str, key: Key) -> dict[str, Any] | None:
        spec = get_collection(collection)
        record = self._data[collection].get(spec.normalize_key(key))
        return copy.deepcopy(record) if record is not None else None

    async def query(
        self, collection: str, filters: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]:
        get_collection(collection)
        return [
            copy.deepcopy(r)
            for r in self._data[collection].values()
            if matches_all(r, filters)
        ]

    async def upsert(self, collection: str, record: dict[str, Any]) -> None:
        spec = get_collection(collection)
        key = spec.key_of(record)
        self._data[collection][key] = copy.deepcopy(record)
        logger.debug("memory upsert %s %s", collection, key)

    async def delete(self, collection: str, key: Key) -> None:
        spec = get_collection(collection)
        self._data[collection].pop(spec.normalize_key(key), None)

    def size(self, collection: str) -> int:
        """Number of records currently stored in *collection*."""
        get_collection(collection)
        return len(self._data[collection])


# ── Redis Implementation ─────────────────────────────────────


class RedisRecordStore(RecordStore):
    """Redis-backed key-indexed store (the local indexed backend).

    Each record is stored as JSON under its unique key.  Every indexed
    field keeps one Redis set per value holding the member keys, plus one
    set listing the whole collection.  Queries narrow candidates through
    those sets and then apply the filters to the loaded records, so
    results match the other backends exactly.  Upserts and deletes run in
    a single ``MULTI/EXEC`` transaction.
    """

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str = "",
        key_prefix: str = "classwork:",
        client: Any | None = None,
    ) -> None:
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=10,
                socket_timeout=10,
            )
        self._redis = client
        self._prefix = key_prefix

    # -- key layout ----------------------------------------------------------

    @staticmethod
    def _member(parts: tuple[str, ...]) -> str:
        return json.dumps(list(parts), separators=(",", ":"))

    def _record_key(self, collection: str, member: str) -> str:
        return f"{self._prefix}{collection}:rec:{member}"

    def _all_key(self, collection: str) -> str:
        return f"{self._prefix}{collection}:all"

    def _index_key(self, collection: str, field: str, value: Any) -> str:
        return f"{self._prefix}{collection}:idx:{field}:{json.dumps(value)}"

    def _index_keys(self, spec: CollectionSpec, record: dict[str, Any]) -> list[str]:
        keys = [self._index_key(spec.name, f, record.get(f)) for f in spec.indexes]
        for field in spec.list_indexes:
            for value in record.get(field) or []:
                keys.append(self._index_key(spec.name, field, value))
        return keys

    def _candidate_index_keys(self, spec: CollectionSpec, flt: Filter) -> list[str] | None:
        """Index sets that cover *flt*, or None when the field is not indexed."""
        if flt.op == FilterOp.EQ and flt.field in spec.indexes:
            return [self._index_key(spec.name, flt.field, flt.value)]
        if flt.op == FilterOp.CONTAINS and flt.field in spec.list_indexes:
            return [self._index_key(spec.name, flt.field, flt.value)]
        if flt.op == FilterOp.IN and flt.field in spec.indexes:
            return [self._index_key(spec.name, flt.field, v) for v in flt.value]
        return None

    # -- contract ------------------------------------------------------------

    async def get(self, collection: str, key: Key) -> dict[str, Any] | None:
        spec = get_collection(collection)
        member = self._member(spec.normalize_key(key))
        try:
            data = await self._redis.get(self._record_key(collection, member))
        except RedisError as exc:
            logger.warning("Redis get %s failed: %s", collection, exc)
            raise BackendUnavailableError("redis", str(exc)) from exc
        return json.loads(data) if data is not None else None

    async def query(
        self, collection: str, filters: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]:
        spec = get_collection(collection)
        try:
            candidates: set[str] | None = None
            for flt in filters:
                index_keys = self._candidate_index_keys(spec, flt)
                if index_keys is None:
                    continue
                members = set(await self._redis.sunion(index_keys)) if index_keys else set()
                candidates = members if candidates is None else candidates & members
            if candidates is None:
                candidates = set(await self._redis.smembers(self._all_key(collection)))
            if not candidates:
                return []
            members = sorted(candidates)
            raw = await self._redis.mget(
                [self._record_key(collection, m) for m in members]
            )
        except RedisError as exc:
            logger.warning("Redis query %s failed: %s", collection, exc)
            raise BackendUnavailableError("redis", str(exc)) from exc

        records = [json.loads(r) for r in raw if r is not None]
        return [r for r in records if matches_all(r, filters)]

    async def upsert(self, collection: str, record: dict[str, Any]) -> None:
        spec = get_collection(collection)
        member = self._member(spec.key_of(record))
        record_key = self._record_key(collection, member)
        try:
            previous = await self._redis.get(record_key)
            async with self._redis.pipeline(transaction=True) as pipe:
                if previous is not None:
                    for index_key in self._index_keys(spec, json.loads(previous)):
                        pipe.srem(index_key, member)
                pipe.set(record_key, json.dumps(record))
                for index_key in self._index_keys(spec, record):
                    pipe.sadd(index_key, member)
                pipe.sadd(self._all_key(collection), member)
                await pipe.execute()
        except RedisError as exc:
            logger.warning("Redis upsert %s failed: %s", collection, exc)
            raise BackendUnavailableError("redis", str(exc)) from exc
        logger.debug("redis upsert %s %s", collection, member)

    async def delete(self, collection: str, key: Key) -> None:
        spec = get_collection(collection)
        member = self._member(spec.normalize_key(key))
        record_key = self._record_key(collection, member)
        try:
            previous = await self._redis.get(record_key)
            if previous is None:
                return
            async with self._redis.pipeline(transaction=True) as pipe:
                for index_key in self._index_keys(spec, json.loads(previous)):
                    pipe.srem(index_key, member)
                pipe.delete(record_key)
                pipe.srem(self._all_key(collection), member)
                await pipe.execute()
        except RedisError as exc:
            logger.warning("Redis delete %s failed: %s", collection, exc)
            raise BackendUnavailableError("redis", str(exc)) from exc

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return await self._redis.ping()
        except RedisError:
            return False


# ── Module-level Singleton ───────────────────────────────────

_store: RecordStore | None = None


def get_record_store() -> RecordStore:
    """Get the singleton record store chosen by ``record_store_type``.

    The remote store connects on first use; call :func:`close_record_store`
    on shutdown to release its connection pool.
    """
    global _store
    if _store is None:
        settings = get_settings()
        store_type = settings.record_store_type

        if store_type == "redis" and settings.redis_url:
            _store = RedisRecordStore(
                redis_url=settings.redis_url,
                key_prefix=settings.redis_key_prefix,
            )
            logger.info("Initialized RedisRecordStore (prefix=%s)", settings.redis_key_prefix)
        elif store_type == "remote" and settings.remote_base_url:
            from services.remote_store import RemoteRecordStore

            _store = RemoteRecordStore.from_settings(settings)
            logger.info("Initialized RemoteRecordStore (base_url=%s)", settings.remote_base_url)
        else:
            if store_type != "memory":
                logger.warning(
                    "record_store_type=%r is not fully configured; "
                    "falling back to InMemoryRecordStore",
                    store_type,
                )
            _store = InMemoryRecordStore()
            logger.info("Initialized InMemoryRecordStore")
    return _store


async def close_record_store() -> None:
    """Close and forget the singleton store."""
    global _store
    if _store is not None:
        await _store.close()
        _store = None
