"""Services: business logic built on [searchsync.core][searchsync.core].

Each service extends [BaseService][searchsync.core.base_service.BaseService]
and implements ``async def run()`` for one cycle of work.

Attributes:
    Indexer: Incremental synchronization of search indices from the
        relational store.
    common: Watermark store, pending-change queue and centralized SQL.
    indices: Per-index processors (settings, source query, transform).

Examples:
    ```python
    from searchsync.core import Store
    from searchsync.services import Indexer

    store = Store.from_yaml("config/store.yaml")
    async with store, Indexer(store=store) as indexer:
        await indexer.run()
    ```
"""

from .indexer import Indexer, IndexerConfig


__all__ = [
    "Indexer",
    "IndexerConfig",
]
