"""
Knowledge service.

Server side of the knowledge base. Wires together:
- EmbeddingProvider + DimensionGuard + VectorStore for writes
- QueryEmbeddingCache + HybridRetriever for reads
- Existence checks and bulk deletion by source
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from knowledge_rag.config import KnowledgeConfig, get_settings
from knowledge_rag.core.dedup import compute_content_hash
from knowledge_rag.core.dimension_guard import DimensionGuard
from knowledge_rag.core.embedder import EmbeddingProvider
from knowledge_rag.core.embedding_cache import QueryEmbeddingCache, build_backend
from knowledge_rag.errors import DuplicateError, ValidationError
from knowledge_rag.retrieval.hybrid import HybridRetriever
from knowledge_rag.store.base import VectorStore
from knowledge_rag.types import CONTENT_HASH_KEY, KnowledgeChunk, SearchResult

logger = logging.getLogger(__name__)


def build_context(results: List[SearchResult]) -> str:
    """Render retrieved chunks as a source-tagged context block for answer generation."""
    return "\n\n".join(f"[FUENTE: {r.source}] {r.content}" for r in results)


class KnowledgeService:
    """
    Add, look up, search and clear knowledge chunks.

    Notes:
        - Every write is embedded and dimension-checked before it reaches the store.
        - Search never raises for store failures (see HybridRetriever).
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        query_cache: Optional[QueryEmbeddingCache] = None,
        config: Optional[KnowledgeConfig] = None,
    ) -> None:
        self.config = config or get_settings()
        self.store = store
        self.embedder = embedder
        self.guard = DimensionGuard(self.config.embedding_dim)
        self.query_cache = query_cache or QueryEmbeddingCache(
            embedder,
            backend=build_backend(
                self.config.query_cache_backend,
                max_size=self.config.query_cache_max_size,
                ttl=self.config.query_cache_ttl,
                redis_url=self.config.query_cache_redis_url,
            ),
            enabled=self.config.query_cache_enabled,
            sweep_interval=self.config.query_cache_sweep_interval,
        )
        self.retriever = HybridRetriever(
            store,
            self.query_cache,
            alpha=self.config.hybrid_alpha,
            top_k=self.config.retrieval_top_k,
            store_timeout=self.config.store_timeout,
        )

    @classmethod
    def from_config(cls, config: Optional[KnowledgeConfig] = None) -> "KnowledgeService":
        """Build the production service (PostgreSQL store, HTTP embedder)."""
        from knowledge_rag.store.pgvector import PgVectorStore

        config = config or get_settings()
        return cls(PgVectorStore(config), EmbeddingProvider(config), config=config)

    async def start(self) -> None:
        if self.config.query_cache_enabled:
            await self.query_cache.start()

    async def close(self) -> None:
        await self.query_cache.close()
        await self.embedder.close()
        await self.store.close()

    async def add_entry(
        self,
        content: str,
        source: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> KnowledgeChunk:
        """
        Embed and persist one chunk.

        A missing content hash is computed from the content; a supplied one
        must match it.

        Raises:
            ValidationError: Empty content/source or mismatched content hash
            DuplicateError: Content already stored
            ConfigurationError: Missing credentials or embedding dimension mismatch
            UpstreamError: Embedding provider failure
        """
        if not content or not content.strip():
            raise ValidationError("content must not be empty")
        if not source or not source.strip():
            raise ValidationError("source must not be empty")

        metadata = dict(metadata or {})
        content_hash = compute_content_hash(content)
        supplied = metadata.get(CONTENT_HASH_KEY)
        if supplied is None:
            metadata[CONTENT_HASH_KEY] = content_hash
        elif supplied != content_hash:
            raise ValidationError("contentHash does not match content")

        if await self.store.exists_by_hash(content_hash):
            raise DuplicateError(content_hash)

        embedding = await self.embedder.embed_text(content)
        self.guard.check(embedding)

        chunk = KnowledgeChunk(
            content=content,
            source=source,
            metadata=metadata,
            embedding=embedding,
        )
        saved = await self.store.insert(chunk)
        logger.info(f"Chunk saved (source={source}, hash={content_hash[:12]})")
        return saved

    async def exists(self, content_hash: str) -> bool:
        return await self.store.exists_by_hash(content_hash)

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return await self.retriever.search(query, limit=limit)

    async def clear_source(self, source: str) -> int:
        deleted = await self.store.delete_by_source(source)
        logger.info(f"Cleared source {source}: {deleted} chunks")
        return deleted
