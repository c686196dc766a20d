"""Build service objects from a SitebotConfig.

Clients and the context service are stateless apart from the context cache
and are built once per process. Database-backed objects (Repository,
ImageStore, ChatOrchestrator) are built per request around a fresh
connection.
"""

from __future__ import annotations

from dataclasses import dataclass

from sitebot.chat.orchestrator import ChatOrchestrator
from sitebot.config import SitebotConfig
from sitebot.context.cache import ContextCache, ContextService
from sitebot.context.index import IndexService
from sitebot.db.repository import Repository
from sitebot.images import ImageStore
from sitebot.ingest.wordpress import ContentAggregator, WordPressSource
from sitebot.rag.embeddings import EmbeddingClient, EmbeddingConfig
from sitebot.rag.llm_client import ChatClient, ChatConfig, context_budget


def chat_config(cfg: SitebotConfig) -> ChatConfig:
    return ChatConfig(
        api_key=cfg.api_key,
        model=cfg.chat.model,
        base_url=cfg.chat.base_url,
        max_tokens=cfg.chat.max_tokens,
        temperature=cfg.chat.temperature,
        timeout=cfg.chat.timeout,
        site_name=cfg.site.name,
        language=cfg.site.language,
        instructions=cfg.site.instructions,
        answer_level=cfg.site.answer_level,
    )


def embedding_config(cfg: SitebotConfig) -> EmbeddingConfig:
    return EmbeddingConfig(
        api_key=cfg.api_key,
        model=cfg.embedding.model,
        base_url=cfg.chat.base_url,
        dimensions=cfg.embedding.dimensions,
        timeout=cfg.embedding.timeout,
        batch_size=cfg.embedding.batch_size,
    )


def build_aggregator(cfg: SitebotConfig) -> ContentAggregator:
    sources = [
        WordPressSource(url, per_page=cfg.sources.per_page, timeout=cfg.sources.timeout)
        for url in cfg.sources.urls
    ]
    return ContentAggregator(sources)


def build_context_service(
    cfg: SitebotConfig, aggregator: ContentAggregator | None = None
) -> ContextService | IndexService:
    """Return the context provider selected by ``context.strategy``."""
    aggregator = aggregator if aggregator is not None else build_aggregator(cfg)
    if cfg.context.strategy == "index":
        return IndexService(
            aggregator,
            cfg.storage.index_dir,
            site_name=cfg.site.name,
            site_url=cfg.site.url,
        )
    return ContextService(
        aggregator,
        ContextCache(cfg.cache.ttl_seconds),
        site_name=cfg.site.name,
        site_url=cfg.site.url,
        max_page_chars=cfg.sources.max_page_chars,
        min_cacheable_chars=cfg.cache.min_chars,
    )


@dataclass
class Services:
    """Process-wide services shared by every request."""

    config: SitebotConfig
    chat_client: ChatClient
    embedding_client: EmbeddingClient
    context: ContextService | IndexService

    @classmethod
    def from_config(cls, cfg: SitebotConfig) -> Services:
        return cls(
            config=cfg,
            chat_client=ChatClient(chat_config(cfg)),
            embedding_client=EmbeddingClient(embedding_config(cfg)),
            context=build_context_service(cfg),
        )

    def image_store(self, repo: Repository) -> ImageStore:
        st = self.config.storage
        return ImageStore(
            repo,
            st.image_dir,
            st.image_base_url,
            max_bytes=st.max_image_bytes,
            max_dimension=st.max_image_dimension,
            ttl_hours=st.image_ttl_hours,
        )

    def orchestrator(self, repo: Repository) -> ChatOrchestrator:
        return ChatOrchestrator(
            repo,
            self.image_store(repo),
            self.context,
            self.chat_client,
            context_tokens=context_budget(
                self.config.chat.model, self.config.context.max_tokens
            ),
        )
