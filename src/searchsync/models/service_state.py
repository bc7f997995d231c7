"""Service state types for database persistence.

Pure data containers representing rows in the ``service_state`` table. The
indexer stores one row per index holding its watermark; the table layout is
generic so further services can persist their own state.

All validation happens in ``__post_init__`` so invalid instances never
escape the constructor.

See Also:
    [Store][searchsync.core.store.Store]: Consumes
        [ServiceState][searchsync.models.service_state.ServiceState] via
        ``upsert_service_state()``; rows are read back by ``get_service_state()``.
    [WatermarkStore][searchsync.services.common.watermarks.WatermarkStore]:
        Reads and writes watermark rows.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NamedTuple


if TYPE_CHECKING:
    from collections.abc import Mapping

from ._validation import deep_freeze, normalize_state, validate_str_not_empty, validate_timestamp
from .constants import ServiceName


class ServiceStateType(StrEnum):
    """Discriminator for the ``state_type`` column.

    Attributes:
        WATERMARK: Time of the last fully successful synchronization run of
            one index (``state_key`` is the index name).
    """

    WATERMARK = "watermark"


class ServiceStateDbParams(NamedTuple):
    """Column-ordered parameters for the ``service_state`` upsert.

    ``state_value`` is pre-serialized to a JSON string so the registered
    JSONB codec passes it through unchanged.
    """

    service_name: ServiceName
    state_type: ServiceStateType
    state_key: str
    state_value: str
    updated_at: int


@dataclass(frozen=True, slots=True)
class ServiceState:
    """A single row in the ``service_state`` table.

    Attributes:
        service_name: Owning service.
        state_type: Kind of state stored in the row.
        state_key: Application-defined key (the index name for watermarks).
        state_value: JSON-compatible mapping with service-specific data.
        updated_at: Unix timestamp of the last update.

    Examples:
        ```python
        state = ServiceState(
            service_name=ServiceName.INDEXER,
            state_type=ServiceStateType.WATERMARK,
            state_key="tags",
            state_value={"last_successful_run_at": "2024-05-01T12:00:00+00:00"},
            updated_at=1714564800,
        )
        state.to_db_params()  # ServiceStateDbParams(...)
        ```
    """

    service_name: ServiceName
    state_type: ServiceStateType
    state_key: str
    state_value: Mapping[str, Any]
    updated_at: int
    _json_value: str = field(default="", init=False, repr=False, compare=False)
    _db_params: ServiceStateDbParams = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        hash=False,  # type: ignore[assignment]
    )

    def __post_init__(self) -> None:
        validate_str_not_empty(self.state_key, "state_key")
        validate_timestamp(self.updated_at, "updated_at")

        object.__setattr__(self, "service_name", ServiceName(self.service_name))
        object.__setattr__(self, "state_type", ServiceStateType(self.state_type))
        normalized = normalize_state(self.state_value, "state_value")
        object.__setattr__(self, "_json_value", json.dumps(normalized))
        object.__setattr__(self, "state_value", deep_freeze(normalized))
        object.__setattr__(
            self,
            "_db_params",
            ServiceStateDbParams(
                service_name=self.service_name,
                state_type=self.state_type,
                state_key=self.state_key,
                state_value=self._json_value,
                updated_at=self.updated_at,
            ),
        )

    def to_db_params(self) -> ServiceStateDbParams:
        """Return cached database parameters in column order."""
        return self._db_params
