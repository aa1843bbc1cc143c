"""Shared pytest fixtures for the classwork engine tests.

Provides:
- ``clock``: deterministic, strictly increasing timestamps
- ``store``: a fresh record store, parametrised over every backend
  (in-memory, Redis via fakeredis, remote via ``httpx.MockTransport``)
- ``memory_store``: a fresh in-memory store
- ``distribution`` / ``ledger`` / ``grading``: services wired to ``store``
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import fakeredis
import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio

from services.grading import GradingCoordinator
from services.record_store import COLLECTIONS, InMemoryRecordStore, RedisRecordStore
from services.remote_store import RemoteRecordStore, encode_filter_value
from services.rest_client import RestClient
from services.submission_ledger import SubmissionLedger
from services.work_distribution import WorkDistributionService

REMOTE_BASE_URL = "https://db.example.test/rest/v1"


class FakeClock:
    """Callable clock; every call returns a time one step after the last."""

    def __init__(
        self,
        start: datetime = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(minutes=1),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


# ── PostgREST-like table server for the remote store ─────────


def _matches(record: dict, field: str, expr: str) -> bool:
    op, _, raw = expr.partition(".")
    actual = record.get(field)
    if op == "is":
        return actual is None
    if op == "eq":
        return actual is not None and encode_filter_value(actual) == raw
    if op == "cs":
        wanted = json.loads(f"[{raw[1:-1]}]")
        return isinstance(actual, list) and all(w in actual for w in wanted)
    if op == "in":
        inner = raw[1:-1]
        wanted = json.loads(f"[{inner}]") if inner else []
        return actual in wanted
    raise AssertionError(f"unsupported operator in {field}={expr}")


class FakeRestTables:
    """Minimal in-test table server speaking the subset the remote store uses.

    Set ``fail_with`` to an HTTP status to make requests fail; restrict the
    failure to some HTTP methods with ``fail_methods``.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.fail_methods: set[str] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None and (
            self.fail_methods is None or request.method in self.fail_methods
        ):
            return httpx.Response(self.fail_with, text="service unavailable")

        table = request.url.path.rsplit("/", 1)[-1]
        rows = self.tables.setdefault(table, [])
        params = list(request.url.params.multi_items())

        if request.method == "GET":
            limit = None
            conditions = []
            for name, value in params:
                if name == "limit":
                    limit = int(value)
                else:
                    conditions.append((name, value))
            result = [r for r in rows if all(_matches(r, f, e) for f, e in conditions)]
            if limit is not None:
                result = result[:limit]
            return httpx.Response(200, json=result)

        if request.method == "POST":
            conflict = dict(params)["on_conflict"].split(",")
            for new in json.loads(request.content):
                for i, existing in enumerate(rows):
                    if all(existing.get(f) == new.get(f) for f in conflict):
                        rows[i] = new
                        break
                else:
                    rows.append(new)
            return httpx.Response(201)

        if request.method == "DELETE":
            self.tables[table] = [
                r for r in rows if not all(_matches(r, f, e) for f, e in params)
            ]
            return httpx.Response(204)

        return httpx.Response(405)


# ── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    """Fresh in-memory store, isolated per test."""
    return InMemoryRecordStore()


@pytest.fixture
def redis_store() -> RedisRecordStore:
    client = fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    return RedisRecordStore(client=client, key_prefix="test:")


@pytest.fixture
def rest_tables() -> FakeRestTables:
    return FakeRestTables()


@pytest_asyncio.fixture
async def remote_store(rest_tables):
    client = RestClient(
        base_url=REMOTE_BASE_URL,
        api_key="test-key",
        transport=httpx.MockTransport(rest_tables),
    )
    store = RemoteRecordStore(client, tables={name: name for name in COLLECTIONS})
    await store.start()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "redis", "remote"])
def store(request):
    """The same contract, once per backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def distribution(store, clock) -> WorkDistributionService:
    return WorkDistributionService(store, clock=clock)


@pytest.fixture
def ledger(distribution) -> SubmissionLedger:
    return distribution.ledger


@pytest.fixture
def grading(distribution) -> GradingCoordinator:
    return GradingCoordinator(distribution)
