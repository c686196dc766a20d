"""Site context caching, local indexing and refresh."""

from sitebot.context.cache import CacheStats, ContextCache, ContextService, RefreshReport
from sitebot.context.index import IndexService, IndexStats, LocalIndexSource

__all__ = [
    "CacheStats",
    "ContextCache",
    "ContextService",
    "IndexService",
    "IndexStats",
    "LocalIndexSource",
    "RefreshReport",
]
