"""Shared infrastructure for searchsync services.

Attributes:
    queries: Domain SQL centralized in one module (pending-change queue and
        index source pages).
    watermarks: [WatermarkStore][searchsync.services.common.watermarks.WatermarkStore]
        persisting the per-index watermark in ``service_state``.
    pending: [PendingQueue][searchsync.services.common.pending.PendingQueue]
        over the pending-change queue table.
"""

from .pending import PendingQueue
from .watermarks import WatermarkStore


__all__ = [
    "PendingQueue",
    "WatermarkStore",
]
