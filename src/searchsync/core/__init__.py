"""Core layer providing the foundation for all searchsync services.

Depends only on ``searchsync.models`` and is depended upon by
``searchsync.services``.

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
    Store: Database facade; services use [Store][searchsync.core.store.Store],
        never [Pool][searchsync.core.pool.Pool] directly.
    SearchClient: Process-wide Meilisearch client with error translation.
    BaseService: Abstract generic base class with lifecycle management,
        factory methods and Prometheus metrics integration.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.

Examples:
    ```python
    from searchsync.core import Pool, Store

    store = Store(pool=Pool.from_yaml("config/store.yaml"))
    async with store:
        await store.fetch('SELECT id FROM "Tag" LIMIT 1')
    ```
"""

from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    INDEX_DOCUMENTS,
    INDEX_RUNS,
    INDEX_WATERMARK,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .search import SearchClient, SearchConfig
from .store import (
    BatchConfig,
    Store,
    StoreConfig,
    StoreTimeoutsConfig,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "INDEX_DOCUMENTS",
    "INDEX_RUNS",
    "INDEX_WATERMARK",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BaseService",
    "BaseServiceConfig",
    "BatchConfig",
    "ConfigT",
    "DatabaseConfig",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "SearchClient",
    "SearchConfig",
    "ServerSettingsConfig",
    "Store",
    "StoreConfig",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
