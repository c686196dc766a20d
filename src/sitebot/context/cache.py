"""Context cache and the service that fills it.

ContextCache holds the formatted context blob under a fixed key with a
configurable TTL. Replacement is a single reference swap under a lock, so
readers never see a partial write; the last writer wins.

ContextService owns the refresh path. Cache misses are single-flight: one
caller aggregates while concurrent callers wait on the same lock and then
read its result instead of fetching upstream again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sitebot.errors import NoContentError
from sitebot.ingest.formatter import DEFAULT_MAX_PAGE_CHARS, format_context
from sitebot.ingest.wordpress import AggregationResult, ContentAggregator

CACHE_KEY = "site_context"


@dataclass
class CacheEntry:
    blob: str
    stored_at: float
    expires_at: float


@dataclass
class RefreshReport:
    """Metrics from a forced refresh."""

    page_count: int
    source_count: int
    byte_size: int
    duration_seconds: float
    pages_by_source: dict[str, int] = field(default_factory=dict)
    failed_sources: dict[str, str] = field(default_factory=dict)
    cached: bool = True


@dataclass
class CacheStats:
    cached: bool
    byte_size: int = 0
    age_seconds: float | None = None
    expires_in_seconds: float | None = None
    ttl_seconds: int = 0


class ContextCache:
    """In-process TTL cache for context blobs.

    Args:
        ttl_seconds: Lifetime of an entry; 0 disables caching.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str = CACHE_KEY) -> str | None:
        """Return the blob for *key*, or None when absent or expired."""
        entry = self.entry(key)
        return entry.blob if entry is not None else None

    def entry(self, key: str = CACHE_KEY) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry

    def put(self, blob: str, key: str = CACHE_KEY) -> None:
        if self.ttl_seconds <= 0:
            return
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                blob=blob, stored_at=now, expires_at=now + self.ttl_seconds
            )

    def invalidate(self, key: str = CACHE_KEY) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def now(self) -> float:
        return self._clock()


class ContextService:
    """Serve the site context blob, aggregating on cache miss.

    Args:
        aggregator: Fetches pages from the configured sources.
        cache: Shared ContextCache.
        site_name: Name for the context header.
        site_url: URL for the context header.
        max_page_chars: Per-page content ceiling.
        min_cacheable_chars: Blobs shorter than this are served but not cached.
        logger: Logger for cache checkpoints.
    """

    def __init__(
        self,
        aggregator: ContentAggregator,
        cache: ContextCache,
        *,
        site_name: str = "",
        site_url: str = "",
        max_page_chars: int = DEFAULT_MAX_PAGE_CHARS,
        min_cacheable_chars: int = 500,
        logger: logging.Logger | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.cache = cache
        self.site_name = site_name
        self.site_url = site_url
        self.max_page_chars = max_page_chars
        self.min_cacheable_chars = min_cacheable_chars
        self._log = logger or logging.getLogger(__name__)
        self._refresh_lock = threading.Lock()

    def get_context(self) -> str | None:
        """Return the cached blob, refreshing transparently on a miss.

        Returns None when no source produced any page.
        """
        blob = self._cached()
        if blob is not None:
            return blob

        with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            blob = self._cached(log=False)
            if blob is not None:
                return blob
            self._log.info("context cache miss", extra={"cache_key": CACHE_KEY})
            blob, _ = self._rebuild()
            return blob

    def force_refresh(self) -> RefreshReport:
        """Bypass the cache, re-aggregate and re-cache.

        Raises:
            NoContentError: No source returned any page.
        """
        with self._refresh_lock:
            start = time.perf_counter()
            self.cache.invalidate()
            blob, result = self._rebuild()
            duration = time.perf_counter() - start

        if blob is None:
            raise NoContentError(
                "No pages were retrieved from any content source. "
                "Check the configured source URLs."
            )
        return RefreshReport(
            page_count=len(result.pages),
            source_count=result.source_count,
            byte_size=len(blob.encode("utf-8")),
            duration_seconds=round(duration, 2),
            pages_by_source=result.pages_by_source,
            failed_sources=dict(result.failures),
            cached=self.cache.get() is not None,
        )

    def invalidate(self) -> None:
        self.cache.invalidate()

    def stats(self) -> CacheStats:
        entry = self.cache.entry()
        if entry is None:
            return CacheStats(cached=False, ttl_seconds=self.cache.ttl_seconds)
        now = self.cache.now()
        return CacheStats(
            cached=True,
            byte_size=len(entry.blob.encode("utf-8")),
            age_seconds=round(now - entry.stored_at, 1),
            expires_in_seconds=round(entry.expires_at - now, 1),
            ttl_seconds=self.cache.ttl_seconds,
        )

    # ------------------------------------------------------------------

    def _cached(self, log: bool = True) -> str | None:
        blob = self.cache.get()
        if blob is not None and len(blob) < self.min_cacheable_chars:
            self.cache.invalidate()
            blob = None
        if blob is not None and log:
            self._log.debug("context cache hit", extra={"cache_key": CACHE_KEY})
        return blob

    def _rebuild(self) -> tuple[str | None, AggregationResult]:
        result = self.aggregator.aggregate()
        if not result.pages:
            return None, result

        blob = format_context(
            result.pages,
            site_name=self.site_name,
            site_url=self.site_url,
            source_count=result.source_count,
            max_page_chars=self.max_page_chars,
        )
        if len(blob) >= self.min_cacheable_chars:
            self.cache.put(blob)
            self._log.info(
                "context cached (%d bytes)",
                len(blob.encode("utf-8")),
                extra={"cache_key": CACHE_KEY, "page_count": len(result.pages)},
            )
        else:
            self._log.warning(
                "context too small to cache (%d chars)",
                len(blob),
                extra={"cache_key": CACHE_KEY},
            )
        return blob, result
