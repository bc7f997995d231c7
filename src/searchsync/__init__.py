r"""searchsync -- incremental search index synchronization.

Keeps Meilisearch indices consistent with an authoritative PostgreSQL store
without full reindexing: each run sends only records changed since the last
fully successful run, plus explicitly queued ids, and advances its
watermark only after the engine confirmed every write.

Imports flow strictly downward:

```text
    services         Indexer, index processors, queue and watermarks
       |
     core            Pool, Store, SearchClient, BaseService, logging, metrics
       |
    models           Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level names (``from searchsync import Indexer``) are imported lazily
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("searchsync")

__all__ = [
    "BaseService",
    "ConfigT",
    "Indexer",
    "IndexerConfig",
    "Logger",
    "Pool",
    "PoolConfig",
    "RunResult",
    "RunState",
    "SearchClient",
    "Store",
    "StoreConfig",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("searchsync.core", "BaseService"),
    "ConfigT": ("searchsync.core", "ConfigT"),
    "Logger": ("searchsync.core", "Logger"),
    "Pool": ("searchsync.core", "Pool"),
    "PoolConfig": ("searchsync.core", "PoolConfig"),
    "SearchClient": ("searchsync.core", "SearchClient"),
    "Store": ("searchsync.core", "Store"),
    "StoreConfig": ("searchsync.core", "StoreConfig"),
    "RunResult": ("searchsync.models", "RunResult"),
    "RunState": ("searchsync.models", "RunState"),
    "Indexer": ("searchsync.services", "Indexer"),
    "IndexerConfig": ("searchsync.services", "IndexerConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'searchsync' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
