"""Unit tests for the tags index processor."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest

from searchsync.models.constants import IndexName, MetricTimeframe
from searchsync.services.indices import PROCESSORS, TagsProcessor
from searchsync.services.indices.tags import METRIC_FIELDS


def _record(**overrides):
    record = {
        "id": 1,
        "name": "cat",
        "nsfw": False,
        "isCategory": False,
        "createdAt": datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        "metrics": [
            {
                "postCount": 5,
                "articleCount": 1,
                "followerCount": 2,
                "modelCount": 3,
                "imageCount": 40,
                "hiddenCount": 0,
            }
        ],
    }
    record.update(overrides)
    return record


class TestRegistry:
    def test_tags_registered(self):
        assert PROCESSORS["tags"] is TagsProcessor
        assert TagsProcessor.INDEX_NAME == IndexName.TAGS


class TestSettings:
    def test_searchable_and_key(self):
        settings = TagsProcessor.SETTINGS
        assert settings.primary_key == "id"
        assert settings.searchable == ("name",)

    def test_sortable_covers_every_metric(self):
        sortable = TagsProcessor.SETTINGS.sortable
        assert "createdAt" in sortable
        assert all(f"metrics.{field}" in sortable for field in METRIC_FIELDS)

    def test_filterable(self):
        assert TagsProcessor.SETTINGS.filterable == ("nsfw", "isCategory")


class TestTransform:
    def test_full_record(self):
        doc = TagsProcessor().transform(_record())
        assert doc == {
            "id": 1,
            "name": "cat",
            "nsfw": False,
            "isCategory": False,
            "createdAt": 1714564800,
            "metrics": {
                "postCount": 5,
                "articleCount": 1,
                "followerCount": 2,
                "modelCount": 3,
                "imageCount": 40,
                "hiddenCount": 0,
            },
        }

    def test_no_metric_rows_gives_zero_counts(self):
        doc = TagsProcessor().transform(_record(metrics=[]))
        assert doc["metrics"] == dict.fromkeys(METRIC_FIELDS, 0)

    def test_null_metrics(self):
        doc = TagsProcessor().transform(_record(metrics=None))
        assert doc["metrics"]["postCount"] == 0

    def test_partial_metric_row(self):
        doc = TagsProcessor().transform(_record(metrics=[{"postCount": 7, "imageCount": None}]))
        assert doc["metrics"]["postCount"] == 7
        assert doc["metrics"]["imageCount"] == 0

    def test_only_first_metric_row_used(self):
        doc = TagsProcessor().transform(_record(metrics=[{"postCount": 1}, {"postCount": 99}]))
        assert doc["metrics"]["postCount"] == 1

    def test_flags_coerced_to_bool(self):
        doc = TagsProcessor().transform(_record(nsfw=None, isCategory=1))
        assert doc["nsfw"] is False
        assert doc["isCategory"] is True

    def test_missing_creation_time(self):
        assert TagsProcessor().transform(_record(createdAt=None))["createdAt"] is None

    def test_deterministic(self):
        processor = TagsProcessor()
        assert processor.transform(_record()) == processor.transform(_record())


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_delegates_with_timeframe(self, mock_store):
        since = datetime(2024, 1, 1, tzinfo=UTC)
        processor = TagsProcessor(timeframe=MetricTimeframe.WEEK)

        with patch(
            "searchsync.services.indices.tags.fetch_tags_page",
            new_callable=AsyncMock,
            return_value=[],
        ) as query:
            await processor.fetch_page(mock_store, since, {3}, 100, 50)

        query.assert_awaited_once_with(
            mock_store, since, {3}, offset=100, limit=50, timeframe=MetricTimeframe.WEEK
        )

    def test_default_timeframe(self):
        assert TagsProcessor().timeframe is MetricTimeframe.ALL_TIME
