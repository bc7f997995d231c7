"""Indexer service utility functions.

Retry loops for page fetches and batch submissions, per-index run locks,
and the mutable progress record of one run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import asyncpg

from searchsync.core.exceptions import (
    ConnectionPoolError,
    RunInProgressError,
    SearchEngineError,
    SubmissionError,
    TransientFetchError,
)
from searchsync.core.logger import format_kv_pairs
from searchsync.models.run import RunResult, RunState


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from searchsync.core.search import SearchClient
    from searchsync.core.store import Store
    from searchsync.models.run import TaskHandle
    from searchsync.services.indices import IndexProcessor

    from .configs import RetryConfig


# =============================================================================
# Logging
# =============================================================================

_logger = logging.getLogger(__name__)


def _log(level: str, message: str, **kwargs: Any) -> None:
    """Log ``message`` with key=value pairs through the module logger."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    if _logger.isEnabledFor(log_level):
        formatted = message + format_kv_pairs(kwargs, max_value_length=None)
        _logger.log(log_level, formatted)


# =============================================================================
# Retry Loops
# =============================================================================

TRANSIENT_FETCH_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionPoolError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)


async def fetch_page_with_retry(  # noqa: PLR0913
    processor: IndexProcessor,
    store: Store,
    since: datetime | None,
    pending_ids: set[int],
    *,
    offset: int,
    limit: int,
    retry: RetryConfig,
) -> Sequence[Mapping[str, Any]]:
    """Fetch one page, retrying connection-level failures with backoff.

    Query errors (bad SQL, constraint problems) are not retried and
    propagate unchanged.

    Raises:
        TransientFetchError: If every attempt failed with a transient error.
    """
    for attempt in range(retry.max_attempts):
        try:
            return await processor.fetch_page(store, since, pending_ids, offset, limit)
        except TRANSIENT_FETCH_ERRORS as e:
            if attempt + 1 >= retry.max_attempts:
                raise TransientFetchError(
                    f"fetching {processor.INDEX_NAME} at offset {offset} failed "
                    f"after {retry.max_attempts} attempts: {e}"
                ) from e
            delay = retry.delay(attempt)
            _log(
                "WARNING",
                "fetch_retry",
                index=processor.INDEX_NAME,
                offset=offset,
                attempt=attempt + 1,
                delay_s=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in fetch_page_with_retry")


async def submit_batch_with_retry(  # noqa: PLR0913
    search: SearchClient,
    index_name: str,
    documents: Sequence[dict[str, Any]],
    *,
    primary_key: str,
    batch: int,
    retry: RetryConfig,
) -> TaskHandle:
    """Submit one page of documents, retrying engine failures with backoff.

    Resubmitting is safe because documents are upserts keyed by
    ``primary_key``.

    Raises:
        SubmissionError: If every attempt was rejected.
    """
    for attempt in range(retry.max_attempts):
        try:
            handle = await search.update_documents(
                index_name, documents, primary_key=primary_key, batch=batch
            )
            _log(
                "DEBUG",
                "batch_submitted",
                index=index_name,
                batch=batch,
                documents=len(documents),
                task_uid=handle.task_uid,
            )
            return handle
        except SearchEngineError as e:
            if attempt + 1 >= retry.max_attempts:
                raise SubmissionError(
                    f"submitting batch {batch} to {index_name} failed "
                    f"after {retry.max_attempts} attempts: {e}"
                ) from e
            delay = retry.delay(attempt)
            _log(
                "WARNING",
                "submit_retry",
                index=index_name,
                batch=batch,
                attempt=attempt + 1,
                delay_s=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in submit_batch_with_retry")


# =============================================================================
# Run Locks
# =============================================================================


class RunLocks:
    """One ``asyncio.Lock`` per index; a busy index is refused, not queued."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_locked(self, index_name: str) -> bool:
        lock = self._locks.get(index_name)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def claim(self, index_name: str) -> AsyncIterator[None]:
        """Hold the lock of ``index_name`` for the duration of the block.

        Raises:
            RunInProgressError: If another run of the index holds the lock.
        """
        lock = self._locks.setdefault(index_name, asyncio.Lock())
        if lock.locked():
            raise RunInProgressError(f"a run of {index_name} is already in progress")
        async with lock:
            yield


# =============================================================================
# Run Progress
# =============================================================================


@dataclass(slots=True)
class RunProgress:
    """Mutable counters of one run, frozen into a ``RunResult`` at the end."""

    index_name: str
    state: RunState = RunState.IDLE
    pages: int = 0
    documents: int = 0
    tasks: int = 0
    pending: int = 0
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    started_at: datetime | None = None
    handles: list[TaskHandle] = field(default_factory=list)
    in_flight: asyncio.Task[TaskHandle] | None = None

    def to_result(
        self,
        duration: float,
        *,
        kind: str | None = None,
        error: str | None = None,
    ) -> RunResult:
        return RunResult(
            index_name=self.index_name,
            state=self.state,
            pages=self.pages,
            documents=self.documents,
            tasks=self.tasks,
            pending=self.pending,
            watermark_before=self.watermark_before,
            watermark_after=self.watermark_after,
            started_at=self.started_at,
            duration=round(duration, 3),
            kind=kind,
            error=error,
        )
