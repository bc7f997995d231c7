"""Pure data types with zero I/O.

The models layer has no dependencies on any other searchsync package, only
the Python standard library. Rows, task handles and run summaries are frozen
dataclasses validated in ``__post_init__``.

Attributes:
    ServiceState: Generic persisted service state (watermarks).
    RunResult: Outcome of one index synchronization run.
    TaskHandle: Reference to an asynchronous search engine task.
"""

from .constants import IndexName, MetricTimeframe, ServiceName
from .run import RunResult, RunState, TaskHandle, TaskOutcome, TaskStatus
from .service_state import ServiceState, ServiceStateDbParams, ServiceStateType


__all__ = [
    "IndexName",
    "MetricTimeframe",
    "RunResult",
    "RunState",
    "ServiceName",
    "ServiceState",
    "ServiceStateDbParams",
    "ServiceStateType",
    "TaskHandle",
    "TaskOutcome",
    "TaskStatus",
]
