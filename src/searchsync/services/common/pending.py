"""Pending-change queue for index re-synchronization.

Producers record ``(index, entity id)`` pairs for changes that do not bump
an entity's own timestamps, for example a metric recount. The indexer takes
one snapshot per run and treats every queued id as eligible regardless of
the watermark. Duplicate entries are harmless.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .queries import delete_pending, enqueue_pending, fetch_pending_ids


if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from searchsync.core.store import Store


class PendingQueue:
    """Thin facade over the ``SearchIndexUpdateQueue`` table."""

    def __init__(self, store: Store) -> None:
        self._store = store

    async def list_pending(self, index_name: str) -> set[int]:
        """Snapshot the ids queued for ``index_name``."""
        return await fetch_pending_ids(self._store, index_name)

    async def enqueue(self, index_name: str, ids: Iterable[int]) -> int:
        """Queue ``ids`` for the next run of ``index_name``."""
        return await enqueue_pending(self._store, index_name, ids)

    async def clear(self, index_name: str, ids: Iterable[int], before: datetime) -> int:
        """Drop consumed entries: ``ids`` enqueued at or before ``before``."""
        return await delete_pending(self._store, index_name, ids, before)
