"""Unit tests for services.common.queries module.

Every test mocks the Store layer directly so no database connection is
required. Assertions verify:

- The correct Store method is called.
- The SQL contains expected key fragments.
- Parameters are passed in the correct position.
- The return value is properly transformed.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from searchsync.models.constants import MetricTimeframe
from searchsync.services.common.queries import (
    delete_pending,
    enqueue_pending,
    fetch_pending_ids,
    fetch_store_time,
    fetch_tags_page,
)


@pytest.fixture
def store() -> MagicMock:
    """Mock Store with the query facade stubbed."""
    store = MagicMock()
    store.fetch = AsyncMock(return_value=[])
    store.fetchval = AsyncMock(return_value=None)
    store.execute = AsyncMock(return_value="DELETE 0")
    store.config.timeouts.batch = 120.0
    return store


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class TestFetchPendingIds:
    async def _run(self, store):
        return await fetch_pending_ids(store, "tags")

    @pytest.mark.asyncio
    async def test_duplicates_collapse(self, store):
        store.fetch.return_value = [{"id": 3}, {"id": 1}, {"id": 3}]
        assert await self._run(store) == {1, 3}

        sql, index_name = store.fetch.await_args.args
        assert '"SearchIndexUpdateQueue"' in sql
        assert "DISTINCT" in sql
        assert index_name == "tags"

    @pytest.mark.asyncio
    async def test_empty(self, store):
        assert await self._run(store) == set()


class TestEnqueuePending:
    @pytest.mark.asyncio
    async def test_inserts_sorted_unique_ids(self, store):
        assert await enqueue_pending(store, "tags", [5, 2, 5]) == 2

        args = store.execute.await_args
        assert "INSERT INTO" in args.args[0]
        assert args.args[1:] == ("tags", [2, 5])
        assert args.kwargs["timeout"] == 120.0

    @pytest.mark.asyncio
    async def test_empty_skips_query(self, store):
        assert await enqueue_pending(store, "tags", []) == 0
        store.execute.assert_not_called()


class TestDeletePending:
    @pytest.mark.asyncio
    async def test_only_snapshot_ids_before_cutoff(self, store):
        store.execute.return_value = "DELETE 2"

        assert await delete_pending(store, "tags", {7, 3}, T0) == 2

        sql = store.execute.await_args.args[0]
        assert "id = ANY($2::int[])" in sql
        assert '"createdAt" <= $3' in sql
        assert store.execute.await_args.args[1:] == ("tags", [3, 7], T0)

    @pytest.mark.asyncio
    async def test_empty_skips_query(self, store):
        assert await delete_pending(store, "tags", set(), T0) == 0
        store.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_status(self, store):
        store.execute.return_value = "DELETE"
        assert await delete_pending(store, "tags", {1}, T0) == 0


class TestFetchStoreTime:
    @pytest.mark.asyncio
    async def test_uses_database_clock(self, store):
        store.fetchval.return_value = T0
        assert await fetch_store_time(store) == T0
        store.fetchval.assert_awaited_once_with("SELECT now()")


class TestFetchTagsPage:
    @pytest.mark.asyncio
    async def test_parameters(self, store):
        rows = [{"id": 1}]
        store.fetch.return_value = rows

        result = await fetch_tags_page(store, T0, {9, 4}, offset=200, limit=100)

        assert result == rows
        args = store.fetch.await_args.args
        assert args[1:] == (T0, "AllTime", [4, 9], 200, 100)

    @pytest.mark.asyncio
    async def test_filters_and_order(self, store):
        await fetch_tags_page(store, None, set(), offset=0, limit=10)

        sql = store.fetch.await_args.args[0]
        assert "NOT t.unlisted" in sql
        assert 'NOT t."adminOnly"' in sql
        assert "$1::timestamptz IS NULL" in sql
        assert 't."updatedAt" > $1::timestamptz' in sql
        assert "t.id = ANY($3::int[])" in sql
        assert "ORDER BY t.id" in sql
        assert '"TagMetric"' in sql

    @pytest.mark.asyncio
    async def test_timeframe(self, store):
        await fetch_tags_page(
            store, None, [], offset=0, limit=10, timeframe=MetricTimeframe.MONTH
        )
        assert store.fetch.await_args.args[2] == "Month"
