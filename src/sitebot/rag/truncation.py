"""Token-budget enforcement for context blobs.

Token estimate: ceil(utf8_bytes / 4). Over-budget text is sliced to
``max_tokens * 4`` bytes, cut back to the last '.' if one falls in the final
20% of the slice, and suffixed with TRUNCATION_NOTICE.
"""

from __future__ import annotations

import math

TRUNCATION_NOTICE = "\n\n[Content truncated to fit the context limit]"

_SENTENCE_WINDOW = 0.8


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text.encode("utf-8")) / 4)


def truncate(text: str, max_tokens: int) -> str:
    """Return *text* cut down to roughly *max_tokens* tokens.

    Already-truncated output (body within budget, ending in the notice) is
    returned unchanged, so truncate(truncate(t, n), n) == truncate(t, n).
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    max_bytes = max(0, max_tokens) * 4
    if text.endswith(TRUNCATION_NOTICE):
        body = text[: -len(TRUNCATION_NOTICE)]
        if len(body.encode("utf-8")) <= max_bytes:
            return text

    sliced = text.encode("utf-8")[:max_bytes]
    last_period = sliced.rfind(b".")
    if last_period > max_bytes * _SENTENCE_WINDOW:
        sliced = sliced[: last_period + 1]

    # A multi-byte character split by the slice is dropped.
    return sliced.decode("utf-8", errors="ignore") + TRUNCATION_NOTICE
