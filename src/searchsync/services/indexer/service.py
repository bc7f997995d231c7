"""Indexer service for searchsync.

Keeps Meilisearch indices consistent with the relational store, one
incremental run per index per cycle. Indices run concurrently under an
``asyncio.TaskGroup``; runs of the same index never overlap.

One run of one index proceeds as follows:

1. Ensure the index exists with its attribute settings and wait until the
   engine confirmed them.
2. Read the run start time from the store clock, the watermark and a
   snapshot of the pending-change queue.
3. Page through eligible records ordered by id. While page N is being
   submitted, page N+1 is fetched.
4. Wait once for every document task of the run.
5. Only if every task succeeded, advance the watermark to the run start
   time and clear the consumed queue entries.

Note:
    Any failure leaves the watermark untouched, so the next run re-selects
    every record the failed run may have missed. Documents are upserts
    keyed by id, so re-sending them is harmless. Changes made while a run
    is in progress carry timestamps after its start time and are picked up
    by the next run.

Examples:
    ```python
    from searchsync.core import SearchClient, Store
    from searchsync.services import Indexer

    store = Store.from_yaml("config/store.yaml")
    indexer = Indexer.from_yaml("config/services/indexer.yaml", store=store)

    async with store, indexer:
        await indexer.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, ClassVar

import asyncpg

from searchsync.core.base_service import BaseService
from searchsync.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    SearchEngineError,
    SyncRunError,
    SyncTimeoutError,
    TaskFailure,
)
from searchsync.core.metrics import INDEX_DOCUMENTS, INDEX_RUNS, INDEX_WATERMARK
from searchsync.core.search import SearchClient
from searchsync.models.constants import ServiceName
from searchsync.models.run import RunResult, RunState
from searchsync.services.common.pending import PendingQueue
from searchsync.services.common.queries import fetch_store_time
from searchsync.services.common.watermarks import WatermarkStore
from searchsync.services.indices import PROCESSORS, IndexProcessor, TagsProcessor

from .configs import IndexerConfig
from .utils import RunLocks, RunProgress, fetch_page_with_retry, submit_batch_with_retry


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime
    from types import TracebackType

    from searchsync.core.store import Store
    from searchsync.models.run import TaskHandle


class Indexer(BaseService[IndexerConfig]):
    """Incremental search index synchronization service.

    Each cycle runs [sync_index()][searchsync.services.indexer.Indexer.sync_index]
    for every configured index and raises if any of them failed, so
    ``run_forever()`` counts the cycle as failed.

    The [SearchClient][searchsync.core.search.SearchClient] is created once
    per process. Pass one in to share it; otherwise the service builds one
    from ``config.search`` and owns its lifecycle.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.INDEXER
    CONFIG_CLASS: ClassVar[type[IndexerConfig]] = IndexerConfig

    def __init__(
        self,
        store: Store,
        config: IndexerConfig | None = None,
        *,
        search: SearchClient | None = None,
        processors: Iterable[IndexProcessor] | None = None,
        watermarks: WatermarkStore | None = None,
        pending: PendingQueue | None = None,
    ) -> None:
        super().__init__(store=store, config=config or IndexerConfig())
        self._config: IndexerConfig
        self._owns_search = search is None
        self._search = search or SearchClient(self._config.search)
        self._watermarks = watermarks or WatermarkStore(store, self.SERVICE_NAME)
        self._pending = pending or PendingQueue(store)
        self._locks = RunLocks()

        if processors is None:
            processors = [self._build_processor(name) for name in self._config.indices]
        self._processors: dict[str, IndexProcessor] = {p.INDEX_NAME: p for p in processors}

    def _build_processor(self, index_name: str) -> IndexProcessor:
        processor_cls = PROCESSORS[index_name]
        if processor_cls is TagsProcessor:
            return TagsProcessor(timeframe=self._config.timeframe)
        return processor_cls()

    @property
    def indices(self) -> list[str]:
        return list(self._processors)

    @property
    def search(self) -> SearchClient:
        return self._search

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Synchronize every configured index once.

        Raises:
            SyncRunError: After all indices finished, if any run failed.
        """
        cycle_start = time.monotonic()
        self._logger.info("cycle_started", indices=",".join(self._processors))

        results = await self.sync_all()

        committed = [r for r in results if r.committed]
        failed = [r for r in results if not r.committed]
        documents = sum(r.documents for r in committed)

        self.set_gauge("indices_committed", len(committed))
        self.set_gauge("indices_failed", len(failed))
        self.inc_counter("documents_committed", documents)

        self._logger.info(
            "cycle_completed",
            committed=len(committed),
            failed=len(failed),
            documents=documents,
            duration_s=round(time.monotonic() - cycle_start, 2),
        )

        if failed:
            summary = ", ".join(f"{r.index_name}={r.kind}" for r in failed)
            raise SyncRunError(f"{len(failed)} of {len(results)} index runs failed: {summary}")

    async def sync_all(self, index_names: Sequence[str] | None = None) -> list[RunResult]:
        """Run ``sync_index()`` concurrently for ``index_names`` (default: all).

        Returns:
            One result per index, in input order. A failure of one index
            never affects the others.
        """
        names = list(index_names) if index_names is not None else list(self._processors)
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self.sync_index(name)) for name in names]
        return [task.result() for task in tasks]

    # -------------------------------------------------------------------------
    # One Index Run
    # -------------------------------------------------------------------------

    async def sync_index(self, index_name: str) -> RunResult:
        """Run one incremental synchronization of ``index_name``.

        Never raises for run failures: they are reported through the
        returned result's ``state``, ``kind`` and ``error``, including an
        ``index_name`` with no registered processor (``ConfigurationError``).
        The watermark only advances when the result is ``COMMITTED``.
        """
        progress = RunProgress(index_name=index_name)
        started = time.monotonic()

        self._logger.info("run_started", index=index_name)

        try:
            processor = self._processors.get(index_name)
            if processor is None:
                raise ConfigurationError(f"no processor registered for index {index_name!r}")
            async with self._locks.claim(index_name):
                await self._execute(processor, progress)

        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise

        except Exception as e:  # Intentionally broad: per-index error boundary
            kind = e.kind if isinstance(e, SyncRunError) else type(e).__name__
            progress.state = RunState.FAILED
            progress.watermark_after = progress.watermark_before
            result = progress.to_result(time.monotonic() - started, kind=kind, error=str(e))
            self._logger.error(
                "run_failed",
                index=index_name,
                kind=kind,
                error=str(e),
                pages=result.pages,
                documents=result.documents,
            )
            self._record(result)
            return result

        result = progress.to_result(time.monotonic() - started)
        self._logger.info(
            "run_committed",
            index=index_name,
            pages=result.pages,
            documents=result.documents,
            tasks=result.tasks,
            pending=result.pending,
            watermark=result.watermark_after.isoformat() if result.watermark_after else None,
            duration_s=result.duration,
        )
        self._record(result)
        return result

    async def _execute(self, processor: IndexProcessor, progress: RunProgress) -> None:
        name = processor.INDEX_NAME
        timeouts = self._config.timeouts
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeouts.run

        try:
            async with asyncio.timeout_at(deadline) as scope:
                pending_ids = await self._prepare(processor, progress)
                await self._page_through(processor, progress, pending_ids)
        except TimeoutError as e:
            if not scope.expired():
                raise
            grace_end = loop.time() + timeouts.grace
            await self._collect_in_flight(progress, timeouts.grace)
            await self._drain(name, progress.handles, grace_end - loop.time())
            raise SyncTimeoutError(
                f"run of {name} exceeded {timeouts.run}s after {progress.pages} pages"
            ) from e
        finally:
            await self._discard_in_flight(progress)

        progress.tasks = len(progress.handles)
        progress.state = RunState.AWAITING_TASKS
        await self._await_tasks(name, progress.handles, deadline)

        started_at = progress.started_at
        new_watermark = started_at
        if progress.watermark_before is not None:
            new_watermark = max(started_at, progress.watermark_before)
        await self._watermarks.set(name, new_watermark)
        progress.watermark_after = new_watermark
        progress.state = RunState.COMMITTED

        self._logger.debug("watermark_advanced", index=name, watermark=new_watermark.isoformat())

        if pending_ids and self._config.pending.clear_on_commit:
            await self._clear_pending(name, pending_ids, started_at)

    async def _prepare(self, processor: IndexProcessor, progress: RunProgress) -> set[int]:
        """Ensure the schema, then snapshot start time, watermark and pending ids."""
        name = processor.INDEX_NAME

        progress.state = RunState.SCHEMA_ENSURING
        await processor.ensure_schema(self._search, self._config.timeouts.schema_setup)

        progress.started_at = await fetch_store_time(self._store)
        progress.watermark_before = await self._watermarks.get(name)
        pending_ids = await self._pending.list_pending(name)
        progress.pending = len(pending_ids)

        self._logger.debug(
            "run_snapshot",
            index=name,
            started_at=progress.started_at.isoformat(),
            watermark=progress.watermark_before.isoformat() if progress.watermark_before else None,
            pending=len(pending_ids),
        )
        return pending_ids

    async def _page_through(
        self,
        processor: IndexProcessor,
        progress: RunProgress,
        pending_ids: set[int],
    ) -> None:
        """Fetch, transform and submit pages until the source is exhausted.

        At most one submission is in flight; it is awaited before the next
        one starts so engine tasks stay in page order. The submission is
        shielded: if the run is interrupted it stays in
        ``progress.in_flight`` because the engine may already have accepted
        the batch.
        """
        name = processor.INDEX_NAME
        page_size = self._config.batch.page_size
        retry = self._config.retry
        offset = 0

        while True:
            progress.state = RunState.FETCHING
            records = await fetch_page_with_retry(
                processor,
                self._store,
                progress.watermark_before,
                pending_ids,
                offset=offset,
                limit=page_size,
                retry=retry,
            )

            await self._collect_submission(progress)

            if not records:
                break

            documents = [processor.transform(record) for record in records]
            self._logger.debug("page_fetched", index=name, offset=offset, count=len(records))

            progress.state = RunState.SUBMITTING
            progress.in_flight = asyncio.create_task(
                submit_batch_with_retry(
                    self._search,
                    name,
                    documents,
                    primary_key=processor.SETTINGS.primary_key,
                    batch=progress.pages,
                    retry=retry,
                )
            )
            progress.pages += 1
            progress.documents += len(documents)
            offset += len(records)

            if len(records) < page_size:
                break

        await self._collect_submission(progress)

    @staticmethod
    async def _collect_submission(progress: RunProgress) -> None:
        task = progress.in_flight
        if task is None:
            return
        handle = await asyncio.shield(task)
        progress.in_flight = None
        progress.handles.append(handle)

    async def _collect_in_flight(self, progress: RunProgress, grace: float) -> None:
        """Wait up to ``grace`` seconds for an interrupted submission's handle."""
        task = progress.in_flight
        if task is None or grace <= 0:
            return
        done, _ = await asyncio.wait({task}, timeout=grace)
        if task in done and not task.cancelled() and task.exception() is None:
            progress.in_flight = None
            progress.handles.append(task.result())

    @staticmethod
    async def _discard_in_flight(progress: RunProgress) -> None:
        task = progress.in_flight
        if task is None:
            return
        progress.in_flight = None
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _await_tasks(self, name: str, handles: list[TaskHandle], deadline: float) -> None:
        """Wait for every task, bounded by the task timeout and the run deadline.

        Raises:
            SyncTimeoutError: If the tasks did not finish in time. When the
                run deadline passed, the tasks first get the grace period.
            TaskFailure: If a task did not succeed or its status is unreadable.
        """
        if not handles:
            return
        timeouts = self._config.timeouts
        try:
            async with asyncio.timeout_at(deadline) as scope:
                outcomes = await self._search.wait_for_tasks(handles, timeouts.tasks)
        except TimeoutError as e:
            if scope.expired():
                await self._drain(name, handles, timeouts.grace)
                raise SyncTimeoutError(
                    f"run of {name} exceeded {timeouts.run}s awaiting {len(handles)} tasks"
                ) from e
            raise SyncTimeoutError(
                f"{len(handles)} tasks of {name} not finished after {timeouts.tasks}s"
            ) from e
        except SearchEngineError as e:
            raise TaskFailure(f"could not confirm tasks of {name}: {e}") from e

        failed = [o for o in outcomes if not o.succeeded]
        if failed:
            first = failed[0]
            raise TaskFailure(
                f"{len(failed)} of {len(outcomes)} tasks of {name} did not succeed; "
                f"task {first.handle.task_uid} (batch {first.handle.batch}) "
                f"{first.status}: {first.error}"
            )

    async def _drain(self, name: str, handles: list[TaskHandle], grace: float) -> None:
        """Give already submitted tasks ``grace`` seconds to settle."""
        if not handles or grace <= 0:
            return
        try:
            await self._search.wait_for_tasks(handles, grace)
        except (TimeoutError, SearchEngineError) as e:
            self._logger.warning("drain_incomplete", index=name, tasks=len(handles), error=str(e))

    async def _clear_pending(self, name: str, ids: set[int], before: datetime) -> None:
        try:
            removed = await self._pending.clear(name, ids, before)
        except (DatabaseError, asyncpg.PostgresError, OSError, TimeoutError) as e:
            self._logger.warning("pending_clear_failed", index=name, ids=len(ids), error=str(e))
            return
        self._logger.debug("pending_cleared", index=name, removed=removed)

    def _record(self, result: RunResult) -> None:
        if not self._config.metrics.enabled:
            return
        INDEX_RUNS.labels(
            index=result.index_name, state=result.state, kind=result.kind or ""
        ).inc()
        if result.committed:
            INDEX_DOCUMENTS.labels(index=result.index_name).inc(result.documents)
            if result.watermark_after is not None:
                INDEX_WATERMARK.labels(index=result.index_name).set(
                    result.watermark_after.timestamp()
                )

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Indexer:
        if self._owns_search:
            await self._search.connect()
        return await super().__aenter__()

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        try:
            await super().__aexit__(_exc_type, _exc_val, _exc_tb)
        finally:
            if self._owns_search:
                await self._search.close()
