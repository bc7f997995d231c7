"""Tags search index.

Documents are tags that are neither unlisted nor admin-only. Each carries
one ``metrics`` object for a single timeframe; a tag without metric rows
gets zero counts so sorting on every metric stays total.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from searchsync.models.constants import IndexName, MetricTimeframe
from searchsync.services.common.queries import fetch_tags_page

from .base import IndexProcessor, IndexSettings


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from searchsync.core.store import Store


METRIC_FIELDS: tuple[str, ...] = (
    "postCount",
    "articleCount",
    "followerCount",
    "modelCount",
    "imageCount",
    "hiddenCount",
)


class TagsProcessor(IndexProcessor):
    """Source and transform for the ``tags`` index."""

    INDEX_NAME: ClassVar[str] = IndexName.TAGS
    SETTINGS: ClassVar[IndexSettings] = IndexSettings(
        primary_key="id",
        searchable=("name",),
        sortable=("createdAt", *(f"metrics.{f}" for f in METRIC_FIELDS)),
        filterable=("nsfw", "isCategory"),
    )

    def __init__(self, timeframe: MetricTimeframe = MetricTimeframe.ALL_TIME) -> None:
        super().__init__()
        self._timeframe = timeframe

    @property
    def timeframe(self) -> MetricTimeframe:
        return self._timeframe

    async def fetch_page(
        self,
        store: Store,
        since: datetime | None,
        pending_ids: set[int],
        offset: int,
        limit: int,
    ) -> Sequence[Mapping[str, Any]]:
        return await fetch_tags_page(
            store,
            since,
            pending_ids,
            offset=offset,
            limit=limit,
            timeframe=self._timeframe,
        )

    def transform(self, record: Mapping[str, Any]) -> dict[str, Any]:
        rows = record.get("metrics") or []
        first = rows[0] if rows else {}
        metrics = {field: int(first.get(field) or 0) for field in METRIC_FIELDS}

        created_at = record.get("createdAt")
        return {
            "id": record["id"],
            "name": record["name"],
            "nsfw": bool(record.get("nsfw", False)),
            "isCategory": bool(record.get("isCategory", False)),
            "createdAt": int(created_at.timestamp()) if isinstance(created_at, datetime) else None,
            "metrics": metrics,
        }
