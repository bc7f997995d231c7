"""searchsync exception hierarchy.

Typed exceptions separate transient from fatal failures and give every
failed index run a stable ``kind`` that is reported to the caller.

Exception hierarchy:

```text
SearchSyncError (base -- never raised directly)
├── ConfigurationError       -- config validation, missing keys, bad YAML
├── DatabaseError            -- pool/store failures
│   └── ConnectionPoolError  -- transient: pool exhausted, network blip
├── SearchEngineError        -- Meilisearch rejected a request or was unreachable
└── SyncRunError             -- one index run failed (kind reported in RunResult)
    ├── TransientFetchError  -- page fetch kept failing after retries
    ├── SchemaSetupError     -- index creation or attribute settings rejected
    ├── SubmissionError      -- batch write kept failing after retries
    ├── TaskFailure          -- an accepted engine task finished unsuccessfully
    ├── SyncTimeoutError     -- run deadline or task wait timeout exceeded
    ├── WatermarkError       -- watermark could not be persisted
    └── RunInProgressError   -- another run of the same index is active
```

See Also:
    [Pool][searchsync.core.pool.Pool]: Raises
        [ConnectionPoolError][searchsync.core.exceptions.ConnectionPoolError]
        once connection retries are exhausted.
    [SearchClient][searchsync.core.search.SearchClient]: Translates SDK and
        transport errors into
        [SearchEngineError][searchsync.core.exceptions.SearchEngineError].
    [Indexer][searchsync.services.indexer.Indexer]: Converts
        [SyncRunError][searchsync.core.exceptions.SyncRunError] subclasses
        into failed run results.
"""

from __future__ import annotations


class SearchSyncError(Exception):
    """Base exception for all searchsync errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(SearchSyncError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(SearchSyncError):
    """Base for all database-related errors."""


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.
    """


# ---------------------------------------------------------------------------
# Search engine
# ---------------------------------------------------------------------------


class SearchEngineError(SearchSyncError):
    """The search engine rejected a request or could not be reached."""


# ---------------------------------------------------------------------------
# Run failures
# ---------------------------------------------------------------------------


class SyncRunError(SearchSyncError):
    """A synchronization run failed without advancing the watermark.

    The class name doubles as the failure ``kind`` reported in
    [RunResult][searchsync.models.run.RunResult].
    """

    @property
    def kind(self) -> str:
        """Stable failure identifier (the exception class name)."""
        return type(self).__name__


class TransientFetchError(SyncRunError):
    """The relational store stayed unreachable while fetching a page."""


class SchemaSetupError(SyncRunError):
    """The engine rejected index creation or the attribute configuration."""


class SubmissionError(SyncRunError):
    """A batch write was rejected on every retry attempt."""


class TaskFailure(SyncRunError):
    """An accepted engine task finished in a non-success state."""


class SyncTimeoutError(SyncRunError):
    """The run deadline or the task wait timeout expired."""


class WatermarkError(SyncRunError):
    """The new watermark could not be persisted."""


class RunInProgressError(SyncRunError):
    """Another run for the same index is still active."""
