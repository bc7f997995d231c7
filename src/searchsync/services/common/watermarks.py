"""Per-index watermark persistence.

A watermark is the start time of the last run whose every engine task
succeeded. It lives in the ``service_state`` table as one row per index::

    service_name='indexer', state_type='watermark', state_key=<index>,
    state_value={"last_successful_run_at": "<ISO 8601>"}
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

import asyncpg

from searchsync.core.exceptions import DatabaseError, WatermarkError
from searchsync.models.constants import ServiceName
from searchsync.models.service_state import ServiceState, ServiceStateType


if TYPE_CHECKING:
    from searchsync.core.store import Store

_VALUE_KEY = "last_successful_run_at"


class WatermarkStore:
    """Read and atomically replace index watermarks."""

    def __init__(self, store: Store, service_name: ServiceName = ServiceName.INDEXER) -> None:
        self._store = store
        self._service_name = service_name

    async def get(self, index_name: str) -> datetime | None:
        """Return the watermark of ``index_name``, or None if it never committed.

        Raises:
            WatermarkError: If the stored value is not a valid timestamp.
        """
        rows = await self._store.get_service_state(
            self._service_name, ServiceStateType.WATERMARK, index_name
        )
        if not rows:
            return None
        return _parse(index_name, rows[0]["state_value"])

    async def set(self, index_name: str, value: datetime) -> None:
        """Replace the watermark of ``index_name`` in a single transaction.

        Raises:
            WatermarkError: If the value is naive or the write fails.
        """
        if value.tzinfo is None:
            raise WatermarkError(f"watermark for {index_name} must be timezone-aware")
        state = ServiceState(
            service_name=self._service_name,
            state_type=ServiceStateType.WATERMARK,
            state_key=index_name,
            state_value={_VALUE_KEY: value.isoformat()},
            updated_at=int(time.time()),
        )
        try:
            await self._store.upsert_service_state([state])
        except (DatabaseError, asyncpg.PostgresError, OSError, TimeoutError) as e:
            raise WatermarkError(f"failed to persist watermark for {index_name}: {e}") from e


def _parse(index_name: str, state_value: Any) -> datetime:
    raw = state_value.get(_VALUE_KEY) if isinstance(state_value, dict) else None
    if not isinstance(raw, str):
        raise WatermarkError(f"watermark for {index_name} is missing {_VALUE_KEY}")
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise WatermarkError(f"watermark for {index_name} is not ISO 8601: {raw!r}") from e
    if parsed.tzinfo is None:
        raise WatermarkError(f"watermark for {index_name} has no timezone: {raw!r}")
    return parsed
