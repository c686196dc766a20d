"""Semantic page search: embed a query and the pages, rank by cosine similarity.

Page text for embedding is 'title\\n\\ncleaned content'. Query and pages go
out in one batch so they share the same model and a single request.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sitebot.ingest.base import ContentPage
from sitebot.rag.embeddings import EmbeddingClient
from sitebot.rag.similarity import find_most_similar


@dataclass
class ScoredPage:
    """A page together with its similarity to the query.

    Attributes:
        page: The ranked page.
        score: Cosine similarity in [-1, 1] (higher = more relevant).
        rank: 1-based position in the result list.
    """

    page: ContentPage
    score: float
    rank: int


class PageRanker:
    """Rank site pages against a free-text query."""

    def __init__(self, embedder: EmbeddingClient) -> None:
        self.embedder = embedder

    def rank(
        self, query: str, pages: Sequence[ContentPage], top_k: int = 5
    ) -> list[ScoredPage]:
        """Return the *top_k* pages most similar to *query*, best first."""
        if not pages or not query.strip():
            return []

        texts = [query] + [f"{p.title}\n\n{p.cleaned_content}" for p in pages]
        vectors = self.embedder.embed_batch(texts)
        query_vec, page_vecs = vectors[0], vectors[1:]

        candidates = {idx: vec for idx, vec in enumerate(page_vecs)}
        ranked = find_most_similar(query_vec, candidates, top_k)
        return [
            ScoredPage(page=pages[idx], score=score, rank=pos)
            for pos, (idx, score) in enumerate(ranked, start=1)
        ]
