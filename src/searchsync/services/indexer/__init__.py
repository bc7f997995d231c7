"""Indexer service package.

See Also:
    [Indexer][searchsync.services.indexer.service.Indexer]: The service.
    [IndexerConfig][searchsync.services.indexer.configs.IndexerConfig]:
        Its configuration model.
"""

from .configs import (
    BatchConfig,
    IndexerConfig,
    PendingConfig,
    RetryConfig,
    TimeoutsConfig,
)
from .service import Indexer


__all__ = [
    "BatchConfig",
    "Indexer",
    "IndexerConfig",
    "PendingConfig",
    "RetryConfig",
    "TimeoutsConfig",
]
