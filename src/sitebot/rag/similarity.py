"""Cosine similarity and top-k ranking over embedding vectors.

Pure functions, no I/O. Vectors of different lengths are compared over their
common prefix so a model mismatch degrades the score instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Hashable, TypeVar

K = TypeVar("K", bound=Hashable)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine of the angle between *a* and *b*, in [-1, 1].

    Returns 0.0 when either vector has zero norm (including empty vectors).
    """
    n = min(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for i in range(n):
        x = a[i]
        y = b[i]
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Rounding can push |score| a hair past 1.0.
    return max(-1.0, min(1.0, score))


def find_most_similar(
    query: Sequence[float],
    candidates: Mapping[K, Sequence[float]],
    top_k: int = 5,
) -> list[tuple[K, float]]:
    """Rank *candidates* by similarity to *query*, best first.

    Ties keep the insertion order of *candidates* (sorted() is stable).

    Args:
        query: The query vector.
        candidates: Mapping of id → vector.
        top_k: Maximum number of results; all candidates if it exceeds their count.

    Returns:
        List of (id, score) tuples, at most *top_k* long.
    """
    if top_k <= 0:
        return []
    scored = [(key, cosine_similarity(query, vec)) for key, vec in candidates.items()]
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored[:top_k]
