"""Index processors and their registry.

``PROCESSORS`` maps every known index name to its processor class. The
[Indexer][searchsync.services.indexer.Indexer] instantiates the processors
named in its configuration.
"""

from .base import IndexProcessor, IndexSettings
from .tags import TagsProcessor


PROCESSORS: dict[str, type[IndexProcessor]] = {
    TagsProcessor.INDEX_NAME: TagsProcessor,
}


__all__ = [
    "PROCESSORS",
    "IndexProcessor",
    "IndexSettings",
    "TagsProcessor",
]
