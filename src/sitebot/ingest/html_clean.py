"""HTML → plain text for page content.

The steps run in a fixed order so output is reproducible byte for byte:
  1. drop <script> and <style> blocks (case-insensitive, multi-line)
  2. drop HTML comments (including block-editor markers)
  3. closing block tags and <br> become newlines
  4. strip remaining tags, then decode entities
  5. collapse space/tab runs, cap blank lines at one, trim each line, trim
"""

from __future__ import annotations

import html
import re

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_BLOCK_CLOSE_RE = re.compile(
    r"</(?:p|div|h[1-6]|li|tr|br|blockquote|figure|figcaption)\s*>", re.IGNORECASE
)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_LINE_EDGE_RE = re.compile(r"^ +| +$", re.MULTILINE)


def clean_html(markup: str) -> str:
    """Return the plain-text rendering of *markup*."""
    text = _SCRIPT_RE.sub("", markup)
    text = _STYLE_RE.sub("", text)
    text = _COMMENT_RE.sub("", text)
    text = _BLOCK_CLOSE_RE.sub("\n", text)
    text = _BR_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    text = _SPACES_RE.sub(" ", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    text = _LINE_EDGE_RE.sub("", text)
    return text.strip()


def truncate_chars(text: str, limit: int, marker: str = "... [content truncated]") -> str:
    """Cap *text* at *limit* characters, appending *marker* when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker
