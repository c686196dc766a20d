"""Embedding client: text → 1536-dim vectors via the remote embeddings endpoint.

Batching:
  - Inputs are preprocessed (whitespace collapsed, trimmed, cut to 32000 chars).
  - At most 2048 texts per remote call (provider batch limit).
  - Each batch response is re-sorted by its reported ``index`` before
    concatenation; output order always matches input order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from sitebot.errors import InvalidResponseError, NotConfiguredError
from sitebot.rag.transport import ApiTransport, error_from_response, json_body


MAX_BATCH = 2048
MAX_INPUT_CHARS = 32_000

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class EmbeddingConfig:
    """Settings for the embedding client.

    Attributes:
        api_key: Bearer credential; None means not configured.
        model: Embedding model name.
        base_url: API root.
        dimensions: Expected vector length (informational; not enforced).
        timeout: Per-batch timeout in seconds.
        batch_size: Texts per remote call, capped at 2048.
    """

    api_key: str | None = None
    model: str = "text-embedding-3-small"
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 1536
    timeout: float = 120.0
    batch_size: int = MAX_BATCH


def preprocess(text: str) -> str:
    """Collapse whitespace runs to one space, trim, and cap at 32000 chars."""
    return _WHITESPACE_RE.sub(" ", text).strip()[:MAX_INPUT_CHARS]


class EmbeddingClient:
    """Batched, order-preserving embedding client."""

    def __init__(
        self,
        config: EmbeddingConfig,
        *,
        http_client: httpx.Client | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._http_client = http_client
        self._transport: ApiTransport | None = None
        self._log = logger or logging.getLogger(__name__)

    def _get_transport(self) -> ApiTransport:
        if not self.config.api_key:
            raise NotConfiguredError(
                "No API key configured for embeddings. Set SITEBOT_API_KEY."
            )
        if self._transport is None:
            self._transport = ApiTransport(
                self.config.base_url,
                self.config.api_key,
                self.config.timeout,
                client=self._http_client,
            )
        return self._transport

    def embed_one(self, text: str) -> list[float]:
        vectors = self.embed_batch([text])
        if not vectors:
            raise InvalidResponseError("Embedding response contained no vectors.")
        return vectors[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        Empty input returns an empty list without touching the network.

        Raises:
            NotConfiguredError: No API key configured.
            SitebotError: Remote failure (see sitebot.errors).
        """
        if not texts:
            return []
        transport = self._get_transport()

        size = max(1, min(self.config.batch_size, MAX_BATCH))
        cleaned = [preprocess(t) for t in texts]
        vectors: list[list[float]] = []
        for start in range(0, len(cleaned), size):
            batch = cleaned[start : start + size]
            vectors.extend(self._embed_remote(transport, batch))
        return vectors

    def _embed_remote(self, transport: ApiTransport, batch: list[str]) -> list[list[float]]:
        response = transport.post(
            "/embeddings", {"model": self.config.model, "input": batch}
        )
        if response.status_code != 200:
            raise error_from_response(response)

        body = json_body(response)
        data = body.get("data")
        if not isinstance(data, list) or len(data) != len(batch):
            raise InvalidResponseError(
                "Invalid embedding response: expected one item per input."
            )

        try:
            ordered = sorted(data, key=lambda item: int(item["index"]))
            result = [list(item["embedding"]) for item in ordered]
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidResponseError(
                f"Invalid embedding response: malformed item ({exc})."
            ) from exc

        usage = body.get("usage") or {}
        self._log.debug(
            "embedded %d texts (%s tokens)",
            len(batch),
            usage.get("total_tokens", "?"),
            extra={"batch_size": len(batch), "total_tokens": usage.get("total_tokens")},
        )
        return result
