"""Tests for HTML cleaning."""

from __future__ import annotations

import pytest

from sitebot.ingest.html_clean import clean_html, truncate_chars


def test_drops_scripts_styles_and_comments() -> None:
    markup = (
        "<!-- wp:paragraph --><p>Hello</p><!-- /wp:paragraph -->"
        "<SCRIPT type='text/javascript'>\nalert('x');\n</SCRIPT>"
        "<style>\n.a { color: red; }\n</style>"
    )
    assert clean_html(markup) == "Hello"


def test_block_tags_become_line_breaks() -> None:
    markup = "<h2>Opening hours</h2><p>Mon to Fri</p><ul><li>9:00</li><li>17:00</li></ul>"
    assert clean_html(markup) == "Opening hours\nMon to Fri\n9:00\n17:00"


def test_br_variants_become_newlines() -> None:
    assert clean_html("one<br>two<br/>three<BR />four") == "one\ntwo\nthree\nfour"


def test_entities_are_decoded() -> None:
    assert clean_html("<p>Caf&eacute; &amp; Bar &#8211; &quot;open&quot;</p>") == 'Café & Bar – "open"'


def test_whitespace_is_normalised() -> None:
    markup = "<p>  lots \t of   space  </p>\n\n\n\n<p>next</p>"
    assert clean_html(markup) == "lots of space\n\nnext"


def test_inline_tags_are_removed_without_breaks() -> None:
    assert clean_html('<p>A <a href="/x">link</a> and <strong>bold</strong>.</p>') == "A link and bold."


def test_empty_input() -> None:
    assert clean_html("") == ""


@pytest.mark.parametrize(
    ("text", "limit", "expected"),
    [
        ("short", 10, "short"),
        ("exactly10!", 10, "exactly10!"),
        ("a" * 12, 10, "a" * 10 + "... [content truncated]"),
    ],
)
def test_truncate_chars(text: str, limit: int, expected: str) -> None:
    assert truncate_chars(text, limit) == expected


def test_clean_html_is_idempotent_on_clean_text() -> None:
    once = clean_html("<h1>Title</h1>\n\n\n<p>Tom &amp; Jerry  run.</p><script>evil()</script>")
    assert clean_html(once) == once
    assert clean_html("<p>Hello</p><script>evil()</script>") == "Hello"
