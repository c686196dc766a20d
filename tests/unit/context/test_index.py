"""Tests for the persisted local index strategy."""

from __future__ import annotations

import json

import pytest

from sitebot.context.index import (
    INDEX_JSON_NAME,
    INDEX_TEXT_NAME,
    LOCAL_INDEX_PAGE_CHARS,
    IndexService,
    LocalIndexSource,
)
from sitebot.errors import NoContentError, SourceError
from sitebot.ingest.base import ContentPage
from sitebot.ingest.wordpress import AggregationResult

SOURCE = "https://example.org/wp-json/wp/v2"


class ListAggregator:
    """Returns whatever .pages holds and counts aggregate() calls."""

    def __init__(self, pages: list[ContentPage]) -> None:
        self.pages = pages
        self.calls = 0

    def aggregate(self) -> AggregationResult:
        self.calls += 1
        return AggregationResult(pages=list(self.pages), source_count=1)


def _tree() -> list[ContentPage]:
    return [
        ContentPage(
            id=1, title="Workshops", raw_content="", cleaned_content="Weekly classes.",
            url="https://example.org/workshops/", source_id=SOURCE,
        ),
        ContentPage(
            id=2, title="Wheel throwing", raw_content="", cleaned_content="w" * 5000,
            url="https://example.org/workshops/wheel/", parent_id=1, source_id=SOURCE,
            menu_order=1,
        ),
    ]


def _service(tmp_path, pages=None) -> tuple[IndexService, ListAggregator]:
    aggregator = ListAggregator(_tree() if pages is None else pages)
    service = IndexService(
        aggregator, tmp_path / "index", site_name="Clay Studio", site_url="https://example.org"
    )
    return service, aggregator


# ------------------------------------------------------------------
# Generation and reads
# ------------------------------------------------------------------


def test_first_read_generates_both_files(tmp_path) -> None:
    service, aggregator = _service(tmp_path)

    blob = service.get_context()

    assert blob is not None
    assert "Name: Clay Studio" in blob
    assert (tmp_path / "index" / INDEX_TEXT_NAME).read_text(encoding="utf-8") == blob
    assert (tmp_path / "index" / INDEX_JSON_NAME).exists()
    assert aggregator.calls == 1


def test_index_never_expires_without_reindex(tmp_path) -> None:
    service, aggregator = _service(tmp_path)
    first = service.get_context()

    aggregator.pages = []
    assert service.get_context() == first
    assert aggregator.calls == 1


def test_json_records_carry_breadcrumb_and_parent(tmp_path) -> None:
    service, _ = _service(tmp_path)
    service.force_reindex()

    document = json.loads((tmp_path / "index" / INDEX_JSON_NAME).read_text(encoding="utf-8"))

    assert document["site_info"] == {"name": "Clay Studio", "url": "https://example.org"}
    assert document["generated_at"]
    child = document["content"][1]
    assert child["title"] == "Wheel throwing"
    assert child["parent_title"] == "Workshops"
    assert child["breadcrumb"] == "Workshops > Wheel throwing"
    assert child["source_id"] == SOURCE


def test_page_content_is_capped(tmp_path) -> None:
    service, _ = _service(tmp_path)
    blob = service.get_context()

    document = json.loads((tmp_path / "index" / INDEX_JSON_NAME).read_text(encoding="utf-8"))
    content = document["content"][1]["content"]

    assert content == "w" * LOCAL_INDEX_PAGE_CHARS + "..."
    assert "w" * (LOCAL_INDEX_PAGE_CHARS + 1) not in blob


def test_empty_index_falls_back_to_live_content(tmp_path) -> None:
    service, aggregator = _service(tmp_path)
    service.force_reindex()
    (tmp_path / "index" / INDEX_TEXT_NAME).write_text("", encoding="utf-8")

    blob = service.get_context()

    assert blob is not None and "Wheel throwing" in blob
    assert aggregator.calls == 2
    # The fallback is served, not persisted.
    assert (tmp_path / "index" / INDEX_TEXT_NAME).read_text(encoding="utf-8") == ""


def test_no_pages_means_no_context_and_no_files(tmp_path) -> None:
    service, aggregator = _service(tmp_path, pages=[])

    assert service.get_context() is None
    assert not (tmp_path / "index" / INDEX_TEXT_NAME).exists()
    assert aggregator.calls == 1


# ------------------------------------------------------------------
# Reindex, stats, invalidate
# ------------------------------------------------------------------


def test_force_reindex_reports_metrics(tmp_path) -> None:
    service, _ = _service(tmp_path)

    report = service.force_reindex()

    assert report.page_count == 2
    assert report.source_count == 1
    assert report.byte_size == (tmp_path / "index" / INDEX_TEXT_NAME).stat().st_size
    assert report.duration_seconds >= 0
    assert report.pages_by_source == {SOURCE: 2}


def test_force_reindex_picks_up_new_content(tmp_path) -> None:
    service, aggregator = _service(tmp_path)
    service.get_context()
    aggregator.pages = aggregator.pages + [
        ContentPage(id=3, title="Gift cards", raw_content="", cleaned_content="Buy one.",
                    url="https://example.org/gift/", source_id=SOURCE, menu_order=2),
    ]

    service.force_refresh()

    assert "Gift cards" in service.get_context()


def test_force_reindex_without_pages_keeps_old_index(tmp_path) -> None:
    service, aggregator = _service(tmp_path)
    before = service.get_context()
    aggregator.pages = []

    with pytest.raises(NoContentError):
        service.force_reindex()
    assert service.get_context() == before


def test_stats_before_and_after_generation(tmp_path) -> None:
    service, _ = _service(tmp_path)
    assert service.stats().exists is False

    service.force_reindex()
    stats = service.stats()

    assert stats.exists is True
    assert stats.page_count == 2
    assert stats.generated_at is not None
    assert stats.byte_size == (tmp_path / "index" / INDEX_TEXT_NAME).stat().st_size
    assert stats.json_byte_size == (tmp_path / "index" / INDEX_JSON_NAME).stat().st_size


def test_invalidate_removes_files(tmp_path) -> None:
    service, aggregator = _service(tmp_path)
    service.get_context()

    service.invalidate()

    assert service.stats().exists is False
    service.get_context()
    assert aggregator.calls == 2


# ------------------------------------------------------------------
# LocalIndexSource
# ------------------------------------------------------------------


def test_index_source_reads_pages_back(tmp_path) -> None:
    service, _ = _service(tmp_path)
    service.force_reindex()

    pages = LocalIndexSource(tmp_path / "index").fetch_pages()

    assert [p.key for p in pages] == [(SOURCE, 1), (SOURCE, 2)]
    assert pages[1].parent_key == (SOURCE, 1)
    assert pages[0].cleaned_content == "Weekly classes."


def test_index_source_without_index_raises(tmp_path) -> None:
    with pytest.raises(SourceError, match="not found"):
        LocalIndexSource(tmp_path / "missing").fetch_pages()


def test_index_source_rejects_corrupt_json(tmp_path) -> None:
    (tmp_path / INDEX_JSON_NAME).write_text("{not json", encoding="utf-8")
    with pytest.raises(SourceError, match="not valid JSON"):
        LocalIndexSource(tmp_path).fetch_pages()
