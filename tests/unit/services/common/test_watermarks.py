"""Unit tests for services.common.watermarks module."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from searchsync.core.exceptions import ConnectionPoolError, WatermarkError
from searchsync.models.constants import ServiceName
from searchsync.models.service_state import ServiceStateType
from searchsync.services.common.watermarks import WatermarkStore


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store() -> MagicMock:
    store = MagicMock()
    store.get_service_state = AsyncMock(return_value=[])
    store.upsert_service_state = AsyncMock(return_value=1)
    return store


def _row(value):
    return [{"state_key": "tags", "state_value": value, "updated_at": 0}]


class TestGet:
    @pytest.mark.asyncio
    async def test_never_committed(self, store):
        assert await WatermarkStore(store).get("tags") is None
        store.get_service_state.assert_awaited_once_with(
            ServiceName.INDEXER, ServiceStateType.WATERMARK, "tags"
        )

    @pytest.mark.asyncio
    async def test_parses_iso(self, store):
        store.get_service_state.return_value = _row(
            {"last_successful_run_at": "2024-05-01T12:00:00+00:00"}
        )
        assert await WatermarkStore(store).get("tags") == T0

    @pytest.mark.asyncio
    async def test_keeps_offset(self, store):
        store.get_service_state.return_value = _row(
            {"last_successful_run_at": "2024-05-01T14:00:00+02:00"}
        )
        value = await WatermarkStore(store).get("tags")
        assert value == T0
        assert value.utcoffset() == timedelta(hours=2)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "state_value",
        [
            {},
            {"last_successful_run_at": 17},
            {"last_successful_run_at": "yesterday"},
            {"last_successful_run_at": "2024-05-01T12:00:00"},
            "2024-05-01T12:00:00+00:00",
        ],
    )
    async def test_corrupt_value(self, store, state_value):
        store.get_service_state.return_value = _row(state_value)
        with pytest.raises(WatermarkError):
            await WatermarkStore(store).get("tags")


class TestSet:
    @pytest.mark.asyncio
    async def test_upserts_single_row(self, store):
        await WatermarkStore(store).set("tags", T0)

        (records,) = store.upsert_service_state.await_args.args
        assert len(records) == 1
        state = records[0]
        assert state.state_key == "tags"
        assert state.state_type is ServiceStateType.WATERMARK
        assert state.state_value["last_successful_run_at"] == "2024-05-01T12:00:00+00:00"

    @pytest.mark.asyncio
    async def test_naive_rejected(self, store):
        with pytest.raises(WatermarkError, match="timezone-aware"):
            await WatermarkStore(store).set("tags", datetime(2024, 5, 1))
        store.upsert_service_state.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [ConnectionPoolError("down"), asyncpg.PostgresError("boom"), OSError("reset")],
    )
    async def test_write_failure(self, store, error):
        store.upsert_service_state.side_effect = error
        with pytest.raises(WatermarkError, match="failed to persist"):
            await WatermarkStore(store).set("tags", T0)

    @pytest.mark.asyncio
    async def test_round_trip_through_stored_value(self, store):
        watermarks = WatermarkStore(store)
        value = datetime(2024, 5, 1, 9, 30, 15, 123456, tzinfo=timezone(timedelta(hours=-3)))

        await watermarks.set("tags", value)
        stored = store.upsert_service_state.await_args.args[0][0].state_value
        store.get_service_state.return_value = _row(dict(stored))

        assert await watermarks.get("tags") == value
