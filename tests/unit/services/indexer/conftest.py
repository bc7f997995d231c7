"""In-memory collaborators for indexer tests.

``FakeTags`` stands in for the relational tables and applies the same
eligibility rule as the SQL query. ``FakeEngine`` records documents per
index and resolves tasks according to per-test switches.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any
from unittest.mock import patch

import pytest

from searchsync.core.exceptions import SearchEngineError, WatermarkError
from searchsync.models.run import TaskHandle, TaskOutcome, TaskStatus
from searchsync.services.indexer import (
    BatchConfig,
    Indexer,
    IndexerConfig,
    RetryConfig,
    TimeoutsConfig,
)
from searchsync.services.indices import TagsProcessor


def ts(day: int, month: int = 1, year: int = 2024) -> datetime:
    return datetime(year, month, day, tzinfo=UTC)


class FakeTags(TagsProcessor):
    """Tags processor whose source is an in-memory table."""

    def __init__(self) -> None:
        super().__init__()
        self.rows: dict[int, dict[str, Any]] = {}
        self.fetches: list[tuple[int, int]] = []
        self.fetch_errors: list[BaseException] = []

    def add(
        self, tag_id: int, *, created: datetime, updated: datetime | None = None, **extra: Any
    ) -> None:
        row = {
            "id": tag_id,
            "name": f"tag-{tag_id}",
            "nsfw": False,
            "isCategory": False,
            "unlisted": False,
            "adminOnly": False,
            "createdAt": created,
            "updatedAt": updated or created,
            "metrics": [],
        }
        row.update(extra)
        self.rows[tag_id] = row

    async def fetch_page(self, store, since, pending_ids, offset, limit):
        self.fetches.append((offset, limit))
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        eligible = [
            row
            for _, row in sorted(self.rows.items())
            if not row["unlisted"]
            and not row["adminOnly"]
            and (
                since is None
                or row["createdAt"] > since
                or row["updatedAt"] > since
                or row["id"] in pending_ids
            )
        ]
        return eligible[offset : offset + limit]


class FakeEngine:
    """SearchClient double keeping documents and tasks in memory."""

    def __init__(self) -> None:
        self.indexes: dict[str, dict[Any, dict[str, Any]]] = {}
        self.settings: dict[tuple[str, str], list[str]] = {}
        self.batches: list[list[dict[str, Any]]] = []
        self.fail_settings = False
        self.fail_task_batches: set[int] = set()
        self.submit_errors: list[BaseException] = []
        self.wait_error: BaseException | None = None
        self.submit_delay = 0.0
        self.wait_delay = 0.0
        self.wait_calls: list[tuple[list[TaskHandle], float]] = []
        self._next_uid = 0
        self._pending: dict[int, tuple[str, list[dict[str, Any]], bool]] = {}

    def _uid(self) -> int:
        self._next_uid += 1
        return self._next_uid

    async def get_or_create_index(self, index_name: str, primary_key: str) -> bool:
        if self.fail_settings:
            raise SearchEngineError("invalid_settings")
        created = index_name not in self.indexes
        self.indexes.setdefault(index_name, {})
        return created

    async def _settings(self, index_name: str, kind: str, attributes) -> TaskHandle:
        self.settings[(index_name, kind)] = list(attributes)
        return TaskHandle(self._uid(), index_name)

    async def update_searchable_attributes(self, index_name, attributes):
        return await self._settings(index_name, "searchable", attributes)

    async def update_sortable_attributes(self, index_name, attributes):
        return await self._settings(index_name, "sortable", attributes)

    async def update_filterable_attributes(self, index_name, attributes):
        return await self._settings(index_name, "filterable", attributes)

    async def update_documents(self, index_name, documents, *, primary_key=None, batch=None):
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        docs = list(documents)
        self.batches.append(docs)
        uid = self._uid()
        self._pending[uid] = (index_name, docs, batch not in self.fail_task_batches)
        return TaskHandle(uid, index_name, batch)

    async def wait_for_tasks(self, handles, timeout):
        self.wait_calls.append((list(handles), timeout))
        if self.wait_error is not None and any(h.batch is not None for h in handles):
            raise self.wait_error
        if self.wait_delay and any(h.batch is not None for h in handles):
            await asyncio.sleep(min(self.wait_delay, timeout))
            if self.wait_delay > timeout:
                raise TimeoutError(f"tasks not finished after {timeout}s")
        outcomes = []
        for handle in handles:
            entry = self._pending.pop(handle.task_uid, None)
            if entry is None:
                outcomes.append(TaskOutcome(handle, TaskStatus.SUCCEEDED))
                continue
            index_name, docs, ok = entry
            if ok:
                for doc in docs:
                    self.indexes.setdefault(index_name, {})[doc["id"]] = doc
                outcomes.append(TaskOutcome(handle, TaskStatus.SUCCEEDED))
            else:
                outcomes.append(TaskOutcome(handle, TaskStatus.FAILED, "document_error"))
        return outcomes

    def documents(self, index_name: str = "tags") -> dict[Any, dict[str, Any]]:
        return self.indexes.get(index_name, {})


class FakeWatermarks:
    def __init__(self) -> None:
        self.values: dict[str, datetime] = {}
        self.fail_set = False

    async def get(self, index_name: str) -> datetime | None:
        return self.values.get(index_name)

    async def set(self, index_name: str, value: datetime) -> None:
        if self.fail_set:
            raise WatermarkError("write refused")
        self.values[index_name] = value


class FakePending:
    def __init__(self) -> None:
        self.entries: list[tuple[str, int, datetime]] = []
        self.snapshots = 0

    def add(self, index_name: str, entity_id: int, at: datetime) -> None:
        self.entries.append((index_name, entity_id, at))

    async def list_pending(self, index_name: str) -> set[int]:
        self.snapshots += 1
        return {i for name, i, _ in self.entries if name == index_name}

    async def clear(self, index_name, ids, before) -> int:
        keep = [
            e for e in self.entries if not (e[0] == index_name and e[1] in ids and e[2] <= before)
        ]
        removed = len(self.entries) - len(keep)
        self.entries = keep
        return removed


class Clock:
    """Store clock returned by ``fetch_store_time``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    async def __call__(self, store) -> datetime:
        return self.now


@pytest.fixture
def tags() -> FakeTags:
    return FakeTags()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def watermarks() -> FakeWatermarks:
    return FakeWatermarks()


@pytest.fixture
def pending() -> FakePending:
    return FakePending()


@pytest.fixture
def clock():
    clock = Clock(ts(10))
    with patch("searchsync.services.indexer.service.fetch_store_time", new=clock):
        yield clock


@pytest.fixture
def indexer_config() -> IndexerConfig:
    return IndexerConfig(
        interval=60.0,
        batch=BatchConfig(page_size=100),
        retry=RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0),
        timeouts=TimeoutsConfig(run=5.0, grace=0.5, tasks=5.0, schema_setup=5.0),
    )


@pytest.fixture
def make_indexer(mock_store, tags, engine, watermarks, pending, clock, indexer_config):
    def _make(**overrides: Any) -> Indexer:
        config = indexer_config.model_copy(update=overrides) if overrides else indexer_config
        return Indexer(
            store=mock_store,
            config=config,
            search=engine,
            processors=[tags],
            watermarks=watermarks,
            pending=pending,
        )

    return _make


@pytest.fixture
def users_tags() -> FakeTags:
    """A second index backed by its own in-memory table."""

    class UsersTags(FakeTags):
        INDEX_NAME = "users"

    return UsersTags()
