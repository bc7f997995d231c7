"""Shared constants for the models layer.

Enumerations used by both the core and services layers. Keeping them here
avoids circular imports between [searchsync.core][] and
[searchsync.services][].
"""

from __future__ import annotations

from enum import StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging, metrics, and persistence.

    The string values are stored in the ``service_name`` column of the
    ``service_state`` table and used as the ``service`` label in Prometheus
    metrics.

    Attributes:
        INDEXER: Incremental search index synchronization service
            ([Indexer][searchsync.services.indexer.Indexer]).
    """

    INDEXER = "indexer"


class IndexName(StrEnum):
    """Search indices known to the engine.

    The value is both the Meilisearch index uid and the ``type`` column of
    the pending-change queue table.
    """

    TAGS = "tags"


class MetricTimeframe(StrEnum):
    """Aggregation windows of the precomputed metric tables.

    Documents only carry metrics for a single timeframe; ``ALL_TIME`` is the
    default.
    """

    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    YEAR = "Year"
    ALL_TIME = "AllTime"
