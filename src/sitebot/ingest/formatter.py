"""Render aggregated pages into the context blob given to the model.

Layout:
  === SITE INFORMATION ===   name, URL, source and page counts
  Navigation:                indented title tree from the parent graph
  === SITE PAGES ===         one block per page, menu order then source order

Parent lookups are keyed by (source_id, page_id): ids are source-scoped.
Every walk over the parent graph tracks visited keys and stops on a repeat.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from sitebot.ingest.base import ContentPage
from sitebot.ingest.html_clean import truncate_chars

PAGE_RULE = "-" * 50
DEFAULT_MAX_PAGE_CHARS = 15_000

PageKey = tuple[str, int]


def order_pages(pages: Sequence[ContentPage]) -> list[ContentPage]:
    """Sort by menu order; equal orders keep source order (stable sort)."""
    return sorted(pages, key=lambda p: p.menu_order)


def index_pages(pages: Sequence[ContentPage]) -> dict[PageKey, ContentPage]:
    return {page.key: page for page in pages}


def build_breadcrumb(page: ContentPage, index: Mapping[PageKey, ContentPage]) -> str:
    """Return 'Root > ... > Page', or '' when the page has no known ancestor."""
    parts = [page.title]
    seen = {page.key}
    parent = page.parent_key
    while parent is not None and parent in index and parent not in seen:
        seen.add(parent)
        ancestor = index[parent]
        parts.append(ancestor.title)
        parent = ancestor.parent_key

    if len(parts) <= 1:
        return ""
    return " > ".join(reversed(parts))


def build_navigation(pages: Sequence[ContentPage]) -> list[str]:
    """Return the page tree as indented '- Title' lines."""
    ordered = order_pages(pages)
    index = index_pages(ordered)
    children: dict[PageKey, list[ContentPage]] = {}
    roots: list[ContentPage] = []
    for page in ordered:
        parent = page.parent_key
        if parent is not None and parent in index and parent != page.key:
            children.setdefault(parent, []).append(page)
        else:
            roots.append(page)

    lines: list[str] = []
    visited: set[PageKey] = set()

    def _walk(page: ContentPage, depth: int) -> None:
        if page.key in visited:
            return
        visited.add(page.key)
        lines.append(f"{'  ' * depth}- {page.title}")
        for child in children.get(page.key, []):
            _walk(child, depth + 1)

    for root in roots:
        _walk(root, 0)
    # Pages caught in a parent cycle have no root; list them flat.
    for page in ordered:
        _walk(page, 0)
    return lines


def format_page(
    page: ContentPage,
    index: Mapping[PageKey, ContentPage],
    max_chars: int = DEFAULT_MAX_PAGE_CHARS,
) -> str:
    lines = [f"[Page] {page.title}"]
    breadcrumb = build_breadcrumb(page, index)
    if breadcrumb:
        lines.append(f"Section: {breadcrumb}")
    parent = index.get(page.parent_key) if page.parent_key else None
    if parent is not None and parent.key != page.key:
        lines.append(f"Parent page: {parent.title}")
    lines.append(f"URL: {page.url}")
    if page.cleaned_content:
        lines.append("Content:")
        lines.append(truncate_chars(page.cleaned_content, max_chars))
    lines.append(PAGE_RULE)
    return "\n".join(lines) + "\n\n"


def format_context(
    pages: Sequence[ContentPage],
    *,
    site_name: str = "",
    site_url: str = "",
    source_count: int = 1,
    max_page_chars: int = DEFAULT_MAX_PAGE_CHARS,
) -> str:
    """Build the full context blob for *pages*.

    Args:
        pages: Pages from every source, in source order.
        site_name: Name shown in the header.
        site_url: URL shown in the header.
        source_count: Number of configured content sources.
        max_page_chars: Per-page content ceiling.

    Returns:
        The context blob (deterministic for a given input).
    """
    ordered = order_pages(pages)
    index = index_pages(ordered)

    out = [
        "=== SITE INFORMATION ===\n",
        f"Name: {site_name}\n",
        f"URL: {site_url}\n",
        f"Sources: {source_count} content API(s)\n",
        f"Pages: {len(ordered)}\n\n",
    ]
    navigation = build_navigation(ordered)
    if navigation:
        out.append("Navigation:\n" + "\n".join(navigation) + "\n\n")

    out.append("=== SITE PAGES ===\n\n")
    for page in ordered:
        out.append(format_page(page, index, max_page_chars))
    return "".join(out)
