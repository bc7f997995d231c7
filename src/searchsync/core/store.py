"""
High-level database interface for the authoritative store.

Exposes generic query methods (``fetch``, ``fetchrow``, ``fetchval``,
``execute``) as a facade over [Pool][searchsync.core.pool.Pool]
with per-category default timeouts, plus typed persistence for the
``service_state`` table used for watermarks.

Domain queries over the indexed entities and the pending-change queue live
in ``services/common/queries.py`` and the index processors, not here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import asyncpg  # noqa: TC002
from pydantic import BaseModel, Field, field_validator

from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS = 0.1


if TYPE_CHECKING:
    from searchsync.models import ServiceState


_UPSERT_SERVICE_STATE = """
INSERT INTO service_state (service_name, state_type, state_key, state_value, updated_at)
SELECT * FROM unnest($1::text[], $2::text[], $3::text[], $4::jsonb[], $5::bigint[])
ON CONFLICT (service_name, state_type, state_key) DO UPDATE
SET state_value = EXCLUDED.state_value,
    updated_at = EXCLUDED.updated_at
"""

_GET_SERVICE_STATE = """
SELECT state_key, state_value, updated_at
FROM service_state
WHERE service_name = $1
  AND state_type = $2
  AND ($3::text IS NULL OR state_key = $3)
ORDER BY state_key
"""


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class BatchConfig(BaseModel):
    """Maximum number of records per bulk write."""

    max_size: int = Field(
        default=1000, ge=1, le=100_000, description="Maximum items per batch operation"
    )


class StoreTimeoutsConfig(BaseModel):
    """Default timeouts for store operations (in seconds, None = no limit)."""

    query: float | None = Field(default=60.0, description="Query timeout (seconds, None=infinite)")
    batch: float | None = Field(
        default=120.0, description="Bulk write timeout (seconds, None=infinite)"
    )

    @field_validator("query", "batch", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout: None (infinite) or >= 0.1 seconds."""
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the store facade."""

    batch: BatchConfig = Field(default_factory=BatchConfig)
    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# Store Class
# ---------------------------------------------------------------------------


class Store:
    """Database facade shared by every service.

    Uses composition with a private ``Pool`` and implements the async
    context manager protocol for pool lifecycle management.

    Example:
        store = Store.from_yaml("config/store.yaml")

        async with store:
            rows = await store.fetch('SELECT id FROM "Tag" LIMIT $1', 10)
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @property
    def config(self) -> StoreConfig:
        """The store configuration (read-only)."""
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        """Read-only access to the underlying pool configuration."""
        return self._pool.config

    @classmethod
    def from_yaml(cls, config_path: str) -> Store:
        """Create a Store from a YAML file with a ``pool`` section and optional
        ``batch``/``timeouts`` sections."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Store:
        """Create a Store from a configuration dictionary.

        The ``pool`` key builds the Pool; the remaining keys are
        ``StoreConfig`` fields.
        """
        pool = None
        if "pool" in config_dict:
            pool = Pool.from_dict(config_dict["pool"])

        store_config_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_config_dict) if store_config_dict else None

        return cls(pool=pool, config=config)

    def _validate_batch_size(self, batch: list[Any], operation: str) -> None:
        """Raise ValueError if batch exceeds the configured maximum size."""
        if len(batch) > self._config.batch.max_size:
            max_size = self._config.batch.max_size
            raise ValueError(f"{operation} batch size ({len(batch)}) exceeds maximum ({max_size})")

    # -------------------------------------------------------------------------
    # Generic Query Facade
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Execute a query and return all rows.

        ``timeout`` defaults to ``config.timeouts.query``.
        """
        t = timeout if timeout is not None else self._config.timeouts.query
        return await self._pool.fetch(query, *args, timeout=t)

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        """Execute a query and return the first row."""
        t = timeout if timeout is not None else self._config.timeouts.query
        return await self._pool.fetchrow(query, *args, timeout=t)

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:  # noqa: ASYNC109
        """Execute a query and return the first column of the first row."""
        t = timeout if timeout is not None else self._config.timeouts.query
        return await self._pool.fetchval(query, *args, timeout=t)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Execute a query and return the command status string."""
        t = timeout if timeout is not None else self._config.timeouts.query
        return await self._pool.execute(query, *args, timeout=t)

    # -------------------------------------------------------------------------
    # Service State Operations
    # -------------------------------------------------------------------------

    async def upsert_service_state(self, records: list[ServiceState]) -> int:
        """Atomically upsert service state rows in a single statement.

        Readers observe either all new values or none of them.

        Returns:
            Number of records upserted.
        """
        if not records:
            return 0

        self._validate_batch_size(records, "upsert_service_state")

        params = [r.to_db_params() for r in records]
        async with self._pool.transaction() as conn:
            await conn.execute(
                _UPSERT_SERVICE_STATE,
                [p.service_name for p in params],
                [p.state_type for p in params],
                [p.state_key for p in params],
                [p.state_value for p in params],
                [p.updated_at for p in params],
                timeout=self._config.timeouts.batch,
            )

        self._logger.debug("service_state_upserted", count=len(records))
        return len(records)

    async def get_service_state(
        self,
        service_name: str,
        state_type: str,
        key: str | None = None,
    ) -> list[dict[str, Any]]:
        """Retrieve persisted service state rows.

        Args:
            service_name: Owning service name (e.g. ``"indexer"``).
            state_type: Category of state (e.g. ``"watermark"``).
            key: Specific row key, or None for every row of the
                service/type combination.

        Returns:
            List of dicts with keys ``state_key``, ``state_value``, ``updated_at``.
        """
        rows = await self._pool.fetch(
            _GET_SERVICE_STATE,
            service_name,
            state_type,
            key,
            timeout=self._config.timeouts.query,
        )

        return [
            {
                "state_key": row["state_key"],
                "state_value": row["state_value"],
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect the underlying pool. Idempotent."""
        await self._pool.connect()
        self._logger.debug("session_started")

    async def close(self) -> None:
        """Close the underlying pool. Idempotent."""
        self._logger.debug("session_ending")
        await self._pool.close()

    async def __aenter__(self) -> Store:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        return f"Store(host={db.host}, database={db.database}, connected={self._pool.is_connected})"
