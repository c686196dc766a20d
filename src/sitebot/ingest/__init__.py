"""Sitebot ingest pipeline — content sources, HTML cleaning, context formatting."""

from sitebot.ingest.base import BaseSource, ContentPage
from sitebot.ingest.html_clean import clean_html
from sitebot.ingest.wordpress import ContentAggregator, WordPressSource

__all__ = [
    "BaseSource",
    "ContentAggregator",
    "ContentPage",
    "WordPressSource",
    "clean_html",
]
