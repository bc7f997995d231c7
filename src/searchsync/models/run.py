"""Value types describing one synchronization run of one index.

See Also:
    [Indexer.sync_index][searchsync.services.indexer.Indexer.sync_index]:
        Produces [RunResult][searchsync.models.run.RunResult] instances.
    [SearchClient][searchsync.core.search.SearchClient]: Produces
        [TaskHandle][searchsync.models.run.TaskHandle] and
        [TaskOutcome][searchsync.models.run.TaskOutcome] instances.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from enum import StrEnum


class RunState(StrEnum):
    """Lifecycle of a run.

    ``IDLE -> SCHEMA_ENSURING -> FETCHING <-> SUBMITTING -> AWAITING_TASKS``
    then exactly one of ``COMMITTED`` or ``FAILED``. Any state may move to
    ``FAILED``; only ``AWAITING_TASKS`` may move to ``COMMITTED``.
    """

    IDLE = "idle"
    SCHEMA_ENSURING = "schema_ensuring"
    FETCHING = "fetching"
    SUBMITTING = "submitting"
    AWAITING_TASKS = "awaiting_tasks"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMMITTED, RunState.FAILED)


class TaskStatus(StrEnum):
    """Terminal and intermediate states of an engine task."""

    ENQUEUED = "enqueued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True, slots=True)
class TaskHandle:
    """Opaque reference to one asynchronous engine task.

    Attributes:
        task_uid: Engine-assigned task identifier.
        index_name: Index the task writes to.
        batch: Zero-based ordinal of the page that produced the task, or
            ``None`` for settings tasks.
    """

    task_uid: int
    index_name: str
    batch: int | None = None


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Final status reported by the engine for a [TaskHandle][searchsync.models.run.TaskHandle]."""

    handle: TaskHandle
    status: TaskStatus
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class RunResult:
    """Summary of a finished run.

    Attributes:
        index_name: Index that was synchronized.
        state: ``COMMITTED`` or ``FAILED``.
        pages: Number of non-empty pages fetched.
        documents: Number of documents submitted.
        tasks: Number of document tasks submitted.
        pending: Size of the pending-id snapshot taken at run start.
        watermark_before: Watermark read at run start.
        watermark_after: Watermark after the run; equal to
            ``watermark_before`` on failure.
        started_at: Run start time, the candidate watermark.
        duration: Wall-clock seconds.
        kind: Failure kind (exception class name) for failed runs.
        error: Failure message for failed runs.
    """

    index_name: str
    state: RunState
    pages: int = 0
    documents: int = 0
    tasks: int = 0
    pending: int = 0
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    started_at: datetime | None = None
    duration: float = 0.0
    kind: str | None = None
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.state == RunState.COMMITTED
