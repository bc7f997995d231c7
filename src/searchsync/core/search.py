"""
Async Meilisearch client shared by every index run.

Wraps ``meilisearch_python_sdk.AsyncClient`` with the handful of operations
the indexer needs: index get-or-create, attribute settings, document upserts
and task waiting. Every SDK or transport failure is translated into
[SearchEngineError][searchsync.core.exceptions.SearchEngineError] so callers
deal with a single exception type; a task wait that runs out of time raises
the builtin ``TimeoutError``.

The client is created once per process and injected into services:

```python
search = SearchClient(SearchConfig(url="http://localhost:7700"))

async with search:
    handle = await search.update_documents("tags", [{"id": 1, "name": "cat"}])
    outcomes = await search.wait_for_tasks([handle], timeout=60.0)
```
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx
from meilisearch_python_sdk import AsyncClient
from meilisearch_python_sdk.errors import (
    MeilisearchApiError,
    MeilisearchError,
    MeilisearchTimeoutError,
)
from pydantic import BaseModel, Field

from searchsync.models.run import TaskHandle, TaskOutcome, TaskStatus

from .exceptions import SearchEngineError
from .logger import Logger


T = TypeVar("T")

_INDEX_NOT_FOUND = "index_not_found"


class SearchConfig(BaseModel):
    """Connection settings for the Meilisearch server.

    The API key is never stored in configuration files; it is read from the
    environment variable named by ``api_key_env``. An unset variable means an
    unauthenticated server.
    """

    url: str = Field(default="http://localhost:7700", min_length=1, description="Server URL")
    api_key_env: str = Field(
        default="MEILI_MASTER_KEY",
        min_length=1,
        description="Environment variable holding the API key",
    )
    timeout: int | None = Field(
        default=30, ge=1, description="HTTP request timeout in seconds (None = no limit)"
    )
    poll_interval_ms: int = Field(
        default=50, ge=10, le=10_000, description="Task status polling interval"
    )

    @property
    def api_key(self) -> str | None:
        return os.getenv(self.api_key_env) or None


class SearchClient:
    """Process-wide Meilisearch client.

    Use as an async context manager, or call ``connect()`` / ``close()``
    explicitly.
    """

    def __init__(self, config: SearchConfig | None = None) -> None:
        self._config = config or SearchConfig()
        self._client: AsyncClient | None = None
        self._logger = Logger("search")

    @property
    def config(self) -> SearchConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the underlying HTTP client. Idempotent."""
        if self._client is not None:
            return
        api_key = self._config.api_key
        if api_key is None:
            self._logger.warning("search_unauthenticated", api_key_env=self._config.api_key_env)
        self._client = AsyncClient(
            url=self._config.url,
            api_key=api_key,
            timeout=self._config.timeout,
        )
        self._logger.info("search_client_created", url=self._config.url)

    async def close(self) -> None:
        """Close the underlying HTTP client. Idempotent."""
        if self._client is None:
            return
        try:
            await self._client.aclose()
        finally:
            self._client = None
            self._logger.info("search_client_closed")

    def _require_client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("SearchClient not connected. Call connect() first.")
        return self._client

    async def _call(self, operation: str, index_name: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except (MeilisearchError, httpx.HTTPError) as e:
            self._logger.debug("search_call_failed", operation=operation, index=index_name, error=str(e))
            raise SearchEngineError(f"{operation} on index '{index_name}' failed: {e}") from e

    # -------------------------------------------------------------------------
    # Index and Settings
    # -------------------------------------------------------------------------

    async def get_or_create_index(self, index_name: str, primary_key: str) -> bool:
        """Ensure ``index_name`` exists with ``primary_key``.

        Returns:
            True if the index was created, False if it already existed.

        Raises:
            SearchEngineError: If the lookup or the creation fails.
        """
        client = self._require_client()
        try:
            await client.get_index(index_name)
            return False
        except MeilisearchApiError as e:
            if e.code != _INDEX_NOT_FOUND:
                raise SearchEngineError(f"get_index on index '{index_name}' failed: {e}") from e
        except (MeilisearchError, httpx.HTTPError) as e:
            raise SearchEngineError(f"get_index on index '{index_name}' failed: {e}") from e

        await self._call(
            "create_index",
            index_name,
            lambda: client.create_index(index_name, primary_key=primary_key),
        )
        self._logger.info("index_created", index=index_name, primary_key=primary_key)
        return True

    async def update_searchable_attributes(
        self, index_name: str, attributes: Sequence[str]
    ) -> TaskHandle:
        """Replace the searchable attributes; list order is ranking priority."""
        index = self._require_client().index(index_name)
        info = await self._call(
            "update_searchable_attributes",
            index_name,
            lambda: index.update_searchable_attributes(list(attributes)),
        )
        return TaskHandle(task_uid=info.task_uid, index_name=index_name)

    async def update_sortable_attributes(
        self, index_name: str, attributes: Sequence[str]
    ) -> TaskHandle:
        """Replace the sortable attributes."""
        index = self._require_client().index(index_name)
        info = await self._call(
            "update_sortable_attributes",
            index_name,
            lambda: index.update_sortable_attributes(list(attributes)),
        )
        return TaskHandle(task_uid=info.task_uid, index_name=index_name)

    async def update_filterable_attributes(
        self, index_name: str, attributes: Sequence[str]
    ) -> TaskHandle:
        """Replace the filterable attributes."""
        index = self._require_client().index(index_name)
        info = await self._call(
            "update_filterable_attributes",
            index_name,
            lambda: index.update_filterable_attributes(list(attributes)),
        )
        return TaskHandle(task_uid=info.task_uid, index_name=index_name)

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def update_documents(
        self,
        index_name: str,
        documents: Sequence[dict[str, Any]],
        *,
        primary_key: str | None = None,
        batch: int | None = None,
    ) -> TaskHandle:
        """Submit documents as an upsert keyed by the primary key.

        Returns as soon as the engine accepted the request; the returned
        handle must be awaited with ``wait_for_tasks()`` before the write
        counts as applied.
        """
        index = self._require_client().index(index_name)
        info = await self._call(
            "update_documents",
            index_name,
            lambda: index.update_documents(list(documents), primary_key=primary_key),
        )
        return TaskHandle(task_uid=info.task_uid, index_name=index_name, batch=batch)

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def wait_for_tasks(
        self,
        handles: Sequence[TaskHandle],
        timeout: float,  # noqa: ASYNC109
    ) -> list[TaskOutcome]:
        """Wait until every task reached a terminal status.

        All handles share one deadline of ``timeout`` seconds.

        Returns:
            One outcome per handle, in input order.

        Raises:
            TimeoutError: If the deadline passes before every task finished.
            SearchEngineError: If the task status cannot be read.
        """
        client = self._require_client()
        deadline = time.monotonic() + timeout
        outcomes: list[TaskOutcome] = []

        for handle in handles:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                raise TimeoutError(f"tasks still pending after {timeout}s")
            try:
                result = await asyncio.wait_for(
                    client.wait_for_task(
                        handle.task_uid,
                        timeout_in_ms=remaining_ms,
                        interval_in_ms=self._config.poll_interval_ms,
                        raise_for_status=False,
                    ),
                    timeout=remaining_ms / 1000,
                )
            except TimeoutError:
                raise TimeoutError(f"task {handle.task_uid} still pending after {timeout}s") from None
            except MeilisearchTimeoutError as e:
                raise TimeoutError(
                    f"task {handle.task_uid} still pending after {timeout}s"
                ) from e
            except MeilisearchError as e:
                raise SearchEngineError(f"wait_for_task {handle.task_uid} failed: {e}") from e
            except httpx.HTTPError as e:
                raise SearchEngineError(f"wait_for_task {handle.task_uid} failed: {e}") from e

            outcomes.append(
                TaskOutcome(
                    handle=handle,
                    status=TaskStatus(result.status),
                    error=_task_error(result.error),
                )
            )

        return outcomes

    async def __aenter__(self) -> SearchClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"SearchClient(url={self._config.url}, connected={self.is_connected})"


def _task_error(error: Any) -> str | None:
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return str(error)
