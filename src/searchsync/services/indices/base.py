"""Index processor contract.

An [IndexProcessor][searchsync.services.indices.base.IndexProcessor] owns
everything specific to one search index: its attribute settings, the query
that selects eligible source records, and the pure transform from a record
to an index document. The
[Indexer][searchsync.services.indexer.Indexer] drives processors through
one generic run loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from searchsync.core.exceptions import SchemaSetupError, SearchEngineError
from searchsync.core.logger import Logger


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from searchsync.core.search import SearchClient
    from searchsync.core.store import Store


@dataclass(frozen=True, slots=True)
class IndexSettings:
    """Attribute configuration applied to an index on every run.

    Attributes:
        primary_key: Document field that keys upserts.
        searchable: Searchable fields, highest relevance first.
        sortable: Fields usable in ``sort``.
        filterable: Fields usable in ``filter``.
    """

    primary_key: str = "id"
    searchable: tuple[str, ...] = ()
    sortable: tuple[str, ...] = ()
    filterable: tuple[str, ...] = ()


class IndexProcessor(ABC):
    """Base class for per-index sources.

    Subclasses set ``INDEX_NAME`` and ``SETTINGS`` and implement
    ``fetch_page()`` and ``transform()``.
    """

    INDEX_NAME: ClassVar[str]
    SETTINGS: ClassVar[IndexSettings]

    def __init__(self) -> None:
        self._logger = Logger(f"index.{self.INDEX_NAME}")

    async def ensure_schema(self, search: SearchClient, timeout: float) -> None:  # noqa: ASYNC109
        """Create the index if missing and apply ``SETTINGS``.

        Returns only after the engine confirmed every settings task, so
        documents submitted afterwards are searchable and sortable on the
        configured fields. Re-applying identical settings is a no-op on the
        engine side.

        Raises:
            SchemaSetupError: If any engine call fails, a settings task does
                not succeed, or confirmation takes longer than ``timeout``.
        """
        name = self.INDEX_NAME
        settings = self.SETTINGS
        try:
            await search.get_or_create_index(name, settings.primary_key)
            handles = [await search.update_searchable_attributes(name, settings.searchable)]
            if settings.sortable:
                handles.append(await search.update_sortable_attributes(name, settings.sortable))
            if settings.filterable:
                handles.append(
                    await search.update_filterable_attributes(name, settings.filterable)
                )
            outcomes = await search.wait_for_tasks(handles, timeout)
        except SearchEngineError as e:
            raise SchemaSetupError(f"schema setup for {name} failed: {e}") from e
        except TimeoutError as e:
            raise SchemaSetupError(f"schema setup for {name} timed out: {e}") from e

        failed = [o for o in outcomes if not o.succeeded]
        if failed:
            detail = ", ".join(f"{o.handle.task_uid}={o.status}:{o.error}" for o in failed)
            raise SchemaSetupError(f"settings tasks for {name} did not succeed: {detail}")

        self._logger.debug("schema_ensured", index=name, tasks=len(handles))

    @abstractmethod
    async def fetch_page(
        self,
        store: Store,
        since: datetime | None,
        pending_ids: set[int],
        offset: int,
        limit: int,
    ) -> Sequence[Mapping[str, Any]]:
        """Return up to ``limit`` eligible records after skipping ``offset``.

        Records are ordered by primary key so offsets stay stable across
        pages of one run.
        """
        ...

    @abstractmethod
    def transform(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Project a source record onto an index document. Must not do I/O."""
        ...
