"""Domain-specific database queries for searchsync services.

All SQL used by services is centralized here. Each function accepts a
[Store][searchsync.core.store.Store] and returns plain Python values or
``asyncpg.Record`` rows. Services import from this module instead of
writing inline SQL.

- **Pending-change queue**: ``fetch_pending_ids``, ``enqueue_pending``,
  ``delete_pending``
- **Clock**: ``fetch_store_time``
- **Tags index source**: ``fetch_tags_page``

Warning:
    Reads use ``timeouts.query`` and writes ``timeouts.batch`` from
    [StoreTimeoutsConfig][searchsync.core.store.StoreTimeoutsConfig]. The
    PostgreSQL ``statement_timeout`` acts as a server-side safety net.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from searchsync.models.constants import MetricTimeframe


if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    import asyncpg

    from searchsync.core.store import Store

logger = logging.getLogger(__name__)


# =============================================================================
# Pending-change queue
# =============================================================================


async def fetch_pending_ids(store: Store, index_name: str) -> set[int]:
    """Return the distinct entity ids queued for ``index_name``.

    Duplicate queue rows collapse into a single id.
    """
    rows = await store.fetch(
        """
        SELECT DISTINCT id
        FROM "SearchIndexUpdateQueue"
        WHERE type = $1
        """,
        index_name,
    )
    return {row["id"] for row in rows}


async def enqueue_pending(store: Store, index_name: str, ids: Iterable[int]) -> int:
    """Queue entity ids for re-indexing regardless of their timestamps.

    Returns:
        Number of ids submitted.
    """
    id_list = sorted(set(ids))
    if not id_list:
        return 0
    await store.execute(
        """
        INSERT INTO "SearchIndexUpdateQueue" (type, id, "createdAt")
        SELECT $1, unnest($2::int[]), now()
        """,
        index_name,
        id_list,
        timeout=store.config.timeouts.batch,
    )
    return len(id_list)


async def delete_pending(
    store: Store,
    index_name: str,
    ids: Iterable[int],
    before: datetime,
) -> int:
    """Remove queue rows for ``ids`` enqueued at or before ``before``.

    Rows added after ``before`` (that is, during the run that consumed the
    snapshot) are kept for the next run.

    Returns:
        Number of queue rows deleted.
    """
    id_list = sorted(set(ids))
    if not id_list:
        return 0
    status = await store.execute(
        """
        DELETE FROM "SearchIndexUpdateQueue"
        WHERE type = $1
          AND id = ANY($2::int[])
          AND "createdAt" <= $3
        """,
        index_name,
        id_list,
        before,
        timeout=store.config.timeouts.batch,
    )
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        logger.warning("Unexpected DELETE status for %s queue: %r", index_name, status)
        return 0


# =============================================================================
# Clock
# =============================================================================


async def fetch_store_time(store: Store) -> datetime:
    """Return the current time according to the database server.

    Run start times are compared against row timestamps written by the same
    server, so they come from its clock rather than the local one.
    """
    value: datetime = await store.fetchval("SELECT now()")
    return value


# =============================================================================
# Tags index source
# =============================================================================


async def fetch_tags_page(  # noqa: PLR0913
    store: Store,
    since: datetime | None,
    pending_ids: Iterable[int],
    *,
    offset: int,
    limit: int,
    timeframe: MetricTimeframe = MetricTimeframe.ALL_TIME,
) -> list[asyncpg.Record]:
    """Fetch one page of indexable tags ordered by id.

    A tag is indexable when it is neither unlisted nor admin-only. With
    ``since=None`` every indexable tag is eligible (full backfill);
    otherwise a tag is eligible when it was created or updated after
    ``since`` or its id is in ``pending_ids``.

    Each row carries ``metrics``: a JSON array of the tag's metric rows for
    ``timeframe`` (empty when none exist).
    """
    return await store.fetch(
        """
        SELECT
            t.id,
            t.name,
            t.nsfw,
            t."isCategory",
            t."createdAt",
            COALESCE(
                (
                    SELECT json_agg(json_build_object(
                        'postCount', m."postCount",
                        'articleCount', m."articleCount",
                        'followerCount', m."followerCount",
                        'modelCount', m."modelCount",
                        'imageCount', m."imageCount",
                        'hiddenCount', m."hiddenCount"
                    ))
                    FROM "TagMetric" m
                    WHERE m."tagId" = t.id
                      AND m.timeframe::text = $2
                ),
                '[]'::json
            ) AS metrics
        FROM "Tag" t
        WHERE NOT t.unlisted
          AND NOT t."adminOnly"
          AND (
              $1::timestamptz IS NULL
              OR t."createdAt" > $1::timestamptz
              OR t."updatedAt" > $1::timestamptz
              OR t.id = ANY($3::int[])
          )
        ORDER BY t.id
        OFFSET $4
        LIMIT $5
        """,
        since,
        str(timeframe),
        sorted(set(pending_ids)),
        offset,
        limit,
    )
