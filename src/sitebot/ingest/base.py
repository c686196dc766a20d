"""Content-source interface and the page record every source produces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ContentPage:
    """One retrievable page of site content.

    Attributes:
        id: Page id, unique within its source only.
        title: Plain-text title, HTML entities decoded.
        raw_content: Original markup as delivered by the source.
        cleaned_content: Plain text produced by clean_html().
        url: Canonical link.
        parent_id: Parent page id within the same source; 0 means none.
        source_id: Base URL of the source that produced the page.
        menu_order: Position among siblings, used for deterministic ordering.
    """

    id: int
    title: str
    raw_content: str
    cleaned_content: str
    url: str
    parent_id: int = 0
    source_id: str = ""
    menu_order: int = 0

    @property
    def key(self) -> tuple[str, int]:
        """Globally unique key: ids collide across sources."""
        return (self.source_id, self.id)

    @property
    def parent_key(self) -> tuple[str, int] | None:
        return (self.source_id, self.parent_id) if self.parent_id else None


class BaseSource(ABC):
    """Abstract base for all content sources.

    Subclasses implement ``fetch_pages()``; failures raise SourceError so the
    aggregator can skip the source and keep the others.
    """

    source_id: str = ""

    @abstractmethod
    def fetch_pages(self) -> list[ContentPage]:
        """Return every published page of this source, in source order."""
