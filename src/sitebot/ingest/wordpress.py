"""WordPress REST content source and multi-source aggregation.

Each source is a REST base such as ``https://example.org/wp-json/wp/v2``.
Pages are requested published-only, in menu order, 100 per request, and
pagination follows the ``X-WP-TotalPages`` response header.

A failing source never aborts aggregation: it is logged and skipped, and the
pages of the remaining sources are still returned.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from sitebot.errors import SourceError
from sitebot.ingest.base import BaseSource, ContentPage
from sitebot.ingest.html_clean import clean_html

_USER_AGENT = "sitebot/0.1 (site content indexer)"
_TIMEOUT = 30  # seconds
_FIELDS = "id,title,content,link,parent,slug,menu_order"

EMPTY_PAGE_CHARS = 50  # cleaned pages at or under this count as empty
PREVIEW_CHARS = 200


class WordPressSource(BaseSource):
    """Fetch every published page from one WordPress REST API.

    Args:
        base_url: Normalised REST base (no trailing ``/pages``).
        per_page: Page size per request (the API caps it at 100).
        timeout: Per-request timeout in seconds.
        http_client: Optional httpx.Client (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        *,
        per_page: int = 100,
        timeout: float = _TIMEOUT,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.source_id = base_url.rstrip("/")
        self.per_page = per_page
        self.timeout = timeout
        self._client = http_client if http_client is not None else httpx.Client(
            timeout=timeout, follow_redirects=True
        )

    def fetch_pages(self) -> list[ContentPage]:
        """Walk every result page and return all pages in source order.

        Raises:
            SourceError: Transport failure, non-200 status, or a body that is
                not a JSON list of page objects.
        """
        pages: list[ContentPage] = []
        page_number = 1
        while True:
            items, total_pages = self._fetch_page(page_number)
            pages.extend(self._to_page(item) for item in items)
            if not items or page_number >= total_pages:
                break
            page_number += 1
        return pages

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _fetch_page(self, page_number: int) -> tuple[list[dict[str, Any]], int]:
        params = {
            "per_page": self.per_page,
            "page": page_number,
            "status": "publish",
            "orderby": "menu_order",
            "order": "asc",
            "_fields": _FIELDS,
        }
        try:
            response = self._client.get(
                f"{self.source_id}/pages",
                params=params,
                headers={"Accept": "application/json", "User-Agent": _USER_AGENT},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise SourceError(f"Failed to fetch '{self.source_id}': {exc}") from exc

        if response.status_code != 200:
            raise SourceError(
                f"Source '{self.source_id}' returned HTTP {response.status_code}."
            )
        try:
            items = response.json()
        except ValueError as exc:
            raise SourceError(f"Source '{self.source_id}' returned invalid JSON.") from exc
        if not isinstance(items, list):
            raise SourceError(
                f"Source '{self.source_id}' returned an unexpected payload (expected a list)."
            )

        try:
            total_pages = int(response.headers.get("x-wp-totalpages", "1"))
        except ValueError:
            total_pages = 1
        return items, total_pages

    def _to_page(self, item: Any) -> ContentPage:
        try:
            raw = _rendered(item.get("content"))
            return ContentPage(
                id=int(item["id"]),
                title=clean_html(_rendered(item.get("title"))),
                raw_content=raw,
                cleaned_content=clean_html(raw),
                url=str(item.get("link") or ""),
                parent_id=int(item.get("parent") or 0),
                source_id=self.source_id,
                menu_order=int(item.get("menu_order") or 0),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise SourceError(
                f"Source '{self.source_id}' returned a malformed page: {exc}"
            ) from exc


def _rendered(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("rendered") or "")
    return str(value or "")


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass
class AggregationResult:
    """Pages from every source that answered, plus the ones that did not."""

    pages: list[ContentPage] = field(default_factory=list)
    source_count: int = 0
    failures: dict[str, str] = field(default_factory=dict)  # source_id → reason

    @property
    def pages_by_source(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for page in self.pages:
            counts[page.source_id] = counts.get(page.source_id, 0) + 1
        return counts


class ContentAggregator:
    """Fetch and flatten pages from several content sources."""

    def __init__(
        self,
        sources: Sequence[BaseSource],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sources = list(sources)
        self._log = logger or logging.getLogger(__name__)

    def aggregate(self) -> AggregationResult:
        result = AggregationResult(source_count=len(self.sources))
        for source in self.sources:
            try:
                pages = source.fetch_pages()
            except SourceError as exc:
                result.failures[source.source_id] = exc.message
                self._log.warning(
                    "content source failed, skipping: %s",
                    exc.message,
                    extra={"source_id": source.source_id},
                )
                continue
            result.pages.extend(pages)

        self._log.info(
            "aggregated %d pages from %d/%d sources",
            len(result.pages),
            result.source_count - len(result.failures),
            result.source_count,
            extra={"page_count": len(result.pages), "failed_sources": len(result.failures)},
        )
        return result

    def fetch_all_sources(self) -> list[ContentPage]:
        return self.aggregate().pages

    def diagnose(self) -> list[SourceDiagnostics]:
        """Fetch every source once and report what its content cleans down to.

        Unlike aggregate(), nothing is formatted or cached; the report is meant
        for an administrator checking why a source contributes little context.
        """
        reports: list[SourceDiagnostics] = []
        for source in self.sources:
            start = time.perf_counter()
            try:
                pages = source.fetch_pages()
            except SourceError as exc:
                reports.append(
                    SourceDiagnostics(
                        source_id=source.source_id,
                        success=False,
                        duration_seconds=round(time.perf_counter() - start, 2),
                        error=exc.message,
                    )
                )
                continue

            page_reports = [_diagnose_page(page) for page in pages]
            reports.append(
                SourceDiagnostics(
                    source_id=source.source_id,
                    success=True,
                    count=len(pages),
                    duration_seconds=round(time.perf_counter() - start, 2),
                    total_content_chars=sum(p.content_chars for p in page_reports),
                    empty_pages=sum(1 for p in page_reports if not p.has_content),
                    pages=page_reports,
                )
            )

        self._log.info(
            "diagnosed %d sources",
            len(reports),
            extra={"failed_sources": sum(1 for r in reports if not r.success)},
        )
        return reports


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass
class PageDiagnostics:
    title: str
    content_chars: int
    has_content: bool
    preview: str
    warning: str | None = None


@dataclass
class SourceDiagnostics:
    """Per-source fetch outcome and content totals."""

    source_id: str
    success: bool
    count: int = 0
    duration_seconds: float = 0.0
    total_content_chars: int = 0
    empty_pages: int = 0
    error: str | None = None
    pages: list[PageDiagnostics] = field(default_factory=list)


def _diagnose_page(page: ContentPage) -> PageDiagnostics:
    cleaned = page.cleaned_content
    if not cleaned:
        preview = "(empty)"
    elif len(cleaned) > PREVIEW_CHARS:
        preview = cleaned[:PREVIEW_CHARS] + "..."
    else:
        preview = cleaned

    warning = None
    if page.raw_content and not cleaned:
        warning = (
            f"Raw content present ({len(page.raw_content)} chars) "
            "but nothing survived HTML cleaning."
        )
    return PageDiagnostics(
        title=page.title,
        content_chars=len(cleaned),
        has_content=len(cleaned) > EMPTY_PAGE_CHARS,
        preview=preview,
        warning=warning,
    )
