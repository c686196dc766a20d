"""Tests for cosine similarity and top-k ranking."""

from __future__ import annotations

import math

import pytest

from sitebot.rag.similarity import cosine_similarity, find_most_similar


# ------------------------------------------------------------------
# cosine_similarity
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "vec",
    [[1.0, 0.0], [0.3, -0.7, 2.5], [1e-3] * 1536, [-4.0, 4.0, 0.5, 9.0]],
)
def test_self_similarity_is_one(vec) -> None:
    assert cosine_similarity(vec, vec) == pytest.approx(1.0)


def test_zero_vector_gives_zero() -> None:
    assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_empty_vectors_give_zero() -> None:
    assert cosine_similarity([], []) == 0.0


def test_orthogonal_and_opposite() -> None:
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)


def test_known_angle() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 1.0]) == pytest.approx(math.sqrt(0.5))


def test_length_mismatch_uses_common_prefix() -> None:
    assert cosine_similarity([1.0, 0.0, 99.0], [1.0, 0.0]) == pytest.approx(1.0)


def test_result_stays_in_range() -> None:
    vec = [0.1, 0.2, 0.3]
    score = cosine_similarity(vec, [x * 3 for x in vec])
    assert -1.0 <= score <= 1.0


# ------------------------------------------------------------------
# find_most_similar
# ------------------------------------------------------------------


def test_results_sorted_descending_and_capped() -> None:
    candidates = {
        "far": [0.0, 1.0],
        "close": [1.0, 0.1],
        "exact": [2.0, 0.0],
        "mid": [1.0, 1.0],
    }
    results = find_most_similar([1.0, 0.0], candidates, top_k=3)

    assert [key for key, _ in results] == ["exact", "close", "mid"]
    scores = [score for _, score in results]
    assert scores == sorted(scores, reverse=True)


def test_default_top_k_is_five() -> None:
    candidates = {i: [1.0, float(i)] for i in range(10)}
    assert len(find_most_similar([1.0, 0.0], candidates)) == 5


def test_top_k_larger_than_candidates_returns_all() -> None:
    candidates = {"a": [1.0], "b": [2.0]}
    assert len(find_most_similar([1.0], candidates, top_k=50)) == 2


def test_ties_keep_insertion_order() -> None:
    candidates = {"first": [1.0, 0.0], "second": [2.0, 0.0], "third": [3.0, 0.0]}
    results = find_most_similar([1.0, 0.0], candidates, top_k=3)
    assert [key for key, _ in results] == ["first", "second", "third"]


def test_empty_candidates_and_non_positive_k() -> None:
    assert find_most_similar([1.0], {}) == []
    assert find_most_similar([1.0], {"a": [1.0]}, top_k=0) == []
