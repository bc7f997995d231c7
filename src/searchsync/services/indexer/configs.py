"""Indexer service configuration models.

See Also:
    [Indexer][searchsync.services.indexer.Indexer]: The service class that
        consumes these configurations.
    [BaseServiceConfig][searchsync.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures`` and
        ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from searchsync.core.base_service import BaseServiceConfig
from searchsync.core.search import SearchConfig
from searchsync.models.constants import MetricTimeframe
from searchsync.services.indices import PROCESSORS


class BatchConfig(BaseModel):
    """Pagination of the source query."""

    page_size: int = Field(
        default=100, ge=1, le=10_000, description="Records per fetched page and per document task"
    )


class RetryConfig(BaseModel):
    """Backoff for transient page fetch and batch submission failures.

    Exponential backoff waits ``initial_delay * 2^attempt``; linear backoff
    waits ``initial_delay * (attempt + 1)``. Both are capped at ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per page or batch")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Initial retry delay (seconds)")
    max_delay: float = Field(default=30.0, ge=0.0, description="Maximum retry delay (seconds)")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v

    def delay(self, attempt: int) -> float:
        """Backoff delay before retrying after the zero-based ``attempt``."""
        if self.exponential_backoff:
            delay = self.initial_delay * (2**attempt)
        else:
            delay = self.initial_delay * (attempt + 1)
        return float(min(delay, self.max_delay))


class TimeoutsConfig(BaseModel):
    """Deadlines for one index run (seconds)."""

    run: float = Field(
        default=1800.0, ge=1.0, description="Deadline for fetching and submitting all pages"
    )
    grace: float = Field(
        default=60.0, ge=0.0, description="Extra wait for in-flight tasks after the run deadline"
    )
    tasks: float = Field(
        default=600.0, ge=1.0, description="Maximum wait for all document tasks of a run"
    )
    schema_setup: float = Field(
        default=60.0,
        ge=1.0,
        alias="schema",
        description="Maximum wait for index settings tasks",
    )

    model_config = {"populate_by_name": True}


class PendingConfig(BaseModel):
    """Pending-change queue handling."""

    clear_on_commit: bool = Field(
        default=True,
        description="Delete consumed queue entries after the watermark advanced",
    )


class IndexerConfig(BaseServiceConfig):
    """Indexer service configuration.

    See Also:
        [SearchConfig][searchsync.core.search.SearchConfig]: Meilisearch
            connection settings.
    """

    indices: list[str] = Field(
        default_factory=lambda: list(PROCESSORS), min_length=1, description="Indices to sync"
    )
    timeframe: MetricTimeframe = Field(
        default=MetricTimeframe.ALL_TIME, description="Metric timeframe embedded in documents"
    )
    search: SearchConfig = Field(default_factory=SearchConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    pending: PendingConfig = Field(default_factory=PendingConfig)

    @field_validator("indices", mode="after")
    @classmethod
    def validate_indices(cls, v: list[str]) -> list[str]:
        """Reject unknown index names and drop duplicates, keeping order."""
        unknown = [name for name in v if name not in PROCESSORS]
        if unknown:
            known = ", ".join(sorted(PROCESSORS))
            raise ValueError(f"Unknown indices {unknown} (known: {known})")
        return list(dict.fromkeys(v))
