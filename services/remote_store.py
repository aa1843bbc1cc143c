"""Remote record store over a PostgREST-compatible REST API.

Query filters map onto PostgREST operators:

- ``Filter.eq``        → ``field=eq.value`` (``is.null`` for None)
- ``Filter.contains``  → ``field=cs.{"value"}``
- ``Filter.is_in``     → ``field=in.("a","b")``

Upserts post a single-row array with ``on_conflict`` set to the
collection's key fields and ``Prefer: resolution=merge-duplicates``, so
the row is written atomically by the server.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Sequence

from config.settings import Settings
from services.record_store import (
    Filter,
    FilterOp,
    Key,
    RecordStore,
    get_collection,
)
from services.rest_client import RestClient

logger = logging.getLogger(__name__)

UPSERT_PREFER = "resolution=merge-duplicates,return=minimal"


def encode_filter_value(value: Any) -> str:
    """Render a scalar the way PostgREST expects it after ``eq.``."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return json.dumps(value)
    return encode_filter_value(value)


def to_query_param(flt: Filter) -> tuple[str, str]:
    """Translate one :class:`Filter` into a PostgREST query parameter."""
    if flt.op == FilterOp.EQ:
        if flt.value is None:
            return flt.field, "is.null"
        return flt.field, f"eq.{encode_filter_value(flt.value)}"
    if flt.op == FilterOp.CONTAINS:
        return flt.field, f"cs.{{{_quote(flt.value)}}}"
    return flt.field, f"in.({','.join(_quote(v) for v in flt.value)})"


class RemoteRecordStore(RecordStore):
    """Durable, shared store reached over the network.

    The HTTP client is started on first use when :meth:`start` was not
    awaited explicitly.
    """

    backend_name = "remote"

    def __init__(self, client: RestClient, tables: dict[str, str] | None = None) -> None:
        self._client = client
        self._tables = tables or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoteRecordStore:
        return cls(RestClient.from_settings(settings), tables=settings.remote_tables())

    def _path(self, collection: str) -> str:
        get_collection(collection)
        return f"/{self._tables.get(collection, collection)}"

    def _key_params(self, collection: str, key: Key) -> list[tuple[str, str]]:
        spec = get_collection(collection)
        parts = spec.normalize_key(key)
        return [
            to_query_param(Filter.eq(field, value))
            for field, value in zip(spec.key_fields, parts)
        ]

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def _request(self, method: str, collection: str, **kwargs: Any) -> Any:
        if not self._client.started:
            await self._client.start()
        return await self._client.request(method, self._path(collection), **kwargs)

    # -- contract ------------------------------------------------------------

    async def get(self, collection: str, key: Key) -> dict[str, Any] | None:
        params = self._key_params(collection, key) + [("limit", "1")]
        rows = await self._request("GET", collection, params=params)
        if not rows:
            return None
        return rows[0]

    async def query(
        self, collection: str, filters: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]:
        params = [to_query_param(f) for f in filters]
        rows = await self._request("GET", collection, params=params)
        return list(rows or [])

    async def upsert(self, collection: str, record: dict[str, Any]) -> None:
        spec = get_collection(collection)
        key = spec.key_of(record)
        await self._request(
            "POST",
            collection,
            params=[("on_conflict", ",".join(spec.key_fields))],
            json_body=[record],
            headers={"Prefer": UPSERT_PREFER},
        )
        logger.debug("remote upsert %s %s", collection, key)

    async def delete(self, collection: str, key: Key) -> None:
        await self._request(
            "DELETE", collection, params=self._key_params(collection, key)
        )
