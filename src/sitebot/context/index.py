"""Persisted local index: the alternative to the live TTL cache.

With ``context.strategy: index`` the formatted context is written to disk
once and served from there until an explicit reindex. Two files live in the
index directory:

  index.txt    the context blob exactly as given to the model
  index.json   one record per page with breadcrumb and parent title

Page content in the index is capped at 4000 characters. The index never
expires; ``sitebot context refresh`` or the admin refresh route rebuilds it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sitebot.context.cache import RefreshReport
from sitebot.errors import NoContentError, SourceError
from sitebot.ingest.base import BaseSource, ContentPage
from sitebot.ingest.formatter import build_breadcrumb, format_context, index_pages, order_pages
from sitebot.ingest.html_clean import truncate_chars
from sitebot.ingest.wordpress import AggregationResult, ContentAggregator

LOCAL_INDEX_PAGE_CHARS = 4000
INDEX_TEXT_NAME = "index.txt"
INDEX_JSON_NAME = "index.json"


@dataclass
class IndexStats:
    exists: bool
    page_count: int = 0
    generated_at: str | None = None
    byte_size: int = 0
    json_byte_size: int = 0


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class LocalIndexStore:
    """Read and write the two index files under *index_dir*."""

    def __init__(self, index_dir: str | Path) -> None:
        self.index_dir = Path(index_dir)
        self.text_path = self.index_dir / INDEX_TEXT_NAME
        self.json_path = self.index_dir / INDEX_JSON_NAME

    def exists(self) -> bool:
        return self.text_path.exists()

    def read_text(self) -> str:
        if not self.text_path.exists():
            return ""
        return self.text_path.read_text(encoding="utf-8")

    def read_document(self) -> dict[str, Any]:
        """Return the parsed index.json.

        Raises:
            SourceError: The file is missing or is not a JSON object.
        """
        try:
            data = json.loads(self.json_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise SourceError(f"Local index not found at {self.json_path}") from exc
        except ValueError as exc:
            raise SourceError(f"Local index {self.json_path} is not valid JSON.") from exc
        if not isinstance(data, dict):
            raise SourceError(f"Local index {self.json_path} is not a JSON object.")
        return data

    def write(self, blob: str, document: dict[str, Any]) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.text_path, blob)
        _atomic_write(self.json_path, json.dumps(document, ensure_ascii=False, indent=2))

    def clear(self) -> None:
        self.text_path.unlink(missing_ok=True)
        self.json_path.unlink(missing_ok=True)


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def page_records(pages: list[ContentPage]) -> list[dict[str, Any]]:
    """Serialise *pages* for index.json, content capped per page."""
    ordered = order_pages(pages)
    index = index_pages(ordered)
    records = []
    for page in ordered:
        parent = index.get(page.parent_key) if page.parent_key else None
        records.append(
            {
                "id": page.id,
                "source_id": page.source_id,
                "title": page.title,
                "parent_id": page.parent_id,
                "parent_title": parent.title if parent is not None else "",
                "breadcrumb": build_breadcrumb(page, index),
                "url": page.url,
                "menu_order": page.menu_order,
                "content": truncate_chars(page.cleaned_content, LOCAL_INDEX_PAGE_CHARS, "..."),
            }
        )
    return records


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class LocalIndexSource(BaseSource):
    """Content source backed by a previously written index.json."""

    def __init__(self, index_dir: str | Path) -> None:
        self.store = LocalIndexStore(index_dir)
        self.source_id = f"index:{self.store.index_dir}"

    def fetch_pages(self) -> list[ContentPage]:
        document = self.store.read_document()
        try:
            return [
                ContentPage(
                    id=int(record["id"]),
                    title=str(record.get("title") or ""),
                    raw_content=str(record.get("content") or ""),
                    cleaned_content=str(record.get("content") or ""),
                    url=str(record.get("url") or ""),
                    parent_id=int(record.get("parent_id") or 0),
                    source_id=str(record.get("source_id") or ""),
                    menu_order=int(record.get("menu_order") or 0),
                )
                for record in document.get("content") or []
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise SourceError(f"Local index holds a malformed page record: {exc}") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class IndexService:
    """Serve the site context from the local index, building it when missing.

    Exposes the same get_context / force_refresh / invalidate / stats surface
    as ContextService so callers do not care which strategy is configured.

    Args:
        aggregator: Fetches pages when the index is (re)built.
        index_dir: Directory holding index.txt and index.json.
        site_name: Name for the context header and site_info.
        site_url: URL for the context header and site_info.
        logger: Logger for index checkpoints.
    """

    def __init__(
        self,
        aggregator: ContentAggregator,
        index_dir: str | Path,
        *,
        site_name: str = "",
        site_url: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.store = LocalIndexStore(index_dir)
        self.site_name = site_name
        self.site_url = site_url
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()

    def get_context(self) -> str | None:
        """Return the indexed blob, generating the index on first use.

        An empty index falls back to a live aggregation that is not persisted.
        Returns None when no source produced any page.
        """
        with self._lock:
            if not self.store.exists():
                self._log.info("local index missing, generating")
                generated, _ = self._generate()
                if generated is None:
                    return None
            blob = self.store.read_text()
        if blob.strip():
            return blob

        self._log.warning("local index empty, using live content")
        result = self.aggregator.aggregate()
        if not result.pages:
            return None
        return self._format(result)

    def force_reindex(self) -> RefreshReport:
        """Rebuild both index files from the sources.

        Raises:
            NoContentError: No source returned any page; the old index is kept.
        """
        with self._lock:
            start = time.perf_counter()
            blob, result = self._generate()
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
            cached=True,
        )

    force_refresh = force_reindex

    def invalidate(self) -> None:
        self.store.clear()

    def stats(self) -> IndexStats:
        if not self.store.exists():
            return IndexStats(exists=False)
        try:
            document = self.store.read_document()
        except SourceError:
            document = {}
        json_size = self.store.json_path.stat().st_size if self.store.json_path.exists() else 0
        return IndexStats(
            exists=True,
            page_count=len(document.get("content") or []),
            generated_at=document.get("generated_at"),
            byte_size=self.store.text_path.stat().st_size,
            json_byte_size=json_size,
        )

    # ------------------------------------------------------------------

    def _format(self, result: AggregationResult) -> str:
        return format_context(
            result.pages,
            site_name=self.site_name,
            site_url=self.site_url,
            source_count=result.source_count,
            max_page_chars=LOCAL_INDEX_PAGE_CHARS,
        )

    def _generate(self) -> tuple[str | None, AggregationResult]:
        result = self.aggregator.aggregate()
        if not result.pages:
            self._log.warning("no pages to index")
            return None, result

        blob = self._format(result)
        document = {
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "site_info": {"name": self.site_name, "url": self.site_url},
            "content": page_records(result.pages),
        }
        self.store.write(blob, document)
        self._log.info(
            "local index written (%d pages, %d bytes)",
            len(result.pages),
            len(blob.encode("utf-8")),
            extra={"index_dir": str(self.store.index_dir), "page_count": len(result.pages)},
        )
        return blob, result
