"""
Hybrid Retrieval Module

Answers one question with the top-K knowledge chunks:
- Query embedding through the query embedding cache
- Fused semantic + lexical ranking in the store
- Degradation chain: hybrid -> semantic-only -> empty list

Retrieval never raises for store or provider failures; callers get fewer
(or no) results instead.
"""

import asyncio
import logging
import time
from typing import List, Optional

from knowledge_rag.core.embedding_cache import QueryEmbeddingCache
from knowledge_rag.core.fusion import validate_alpha
from knowledge_rag.store.base import VectorStore
from knowledge_rag.types import RetrievalMethod, SearchResult

logger = logging.getLogger(__name__)


class HybridRetriever:
    """
    Ranks stored chunks against a free-text question.

    The semantic weight ``alpha`` is fixed per retriever; the lexical
    weight is ``1 - alpha``.
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_cache: QueryEmbeddingCache,
        alpha: float = 0.6,
        top_k: int = 5,
        store_timeout: float = 10.0,
    ):
        """
        Initialize the retriever.

        Args:
            store: Vector store to query
            embedding_cache: Read-through cache for query embeddings
            alpha: Semantic weight in [0, 1]
            top_k: Default number of results
            store_timeout: Seconds allowed per store query
        """
        self.store = store
        self.embedding_cache = embedding_cache
        self.alpha = validate_alpha(alpha)
        self.top_k = top_k
        self.store_timeout = store_timeout
        self.last_method = RetrievalMethod.NONE

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """
        Return up to ``limit`` chunks ordered by relevance.

        Args:
            query: The user's question
            limit: Number of results (defaults to top_k)

        Returns:
            Ranked results, possibly empty
        """
        self.last_method = RetrievalMethod.NONE
        if limit is None:
            limit = self.top_k
        if not query or not query.strip() or limit <= 0:
            return []

        start_time = time.perf_counter()

        try:
            embedding = await self.embedding_cache.get_or_embed(query)
        except Exception as e:
            logger.error(f"Query embedding failed, returning no results: {e}")
            return []

        try:
            results = await asyncio.wait_for(
                self.store.hybrid_search(query, embedding, self.alpha, limit),
                timeout=self.store_timeout,
            )
            self.last_method = RetrievalMethod.HYBRID
        except Exception as e:
            logger.warning(f"Hybrid search failed, falling back to semantic search: {e}")
            try:
                results = await asyncio.wait_for(
                    self.store.semantic_search(embedding, limit),
                    timeout=self.store_timeout,
                )
                self.last_method = RetrievalMethod.SEMANTIC
            except Exception as e2:
                logger.error(f"Semantic search failed, returning no results: {e2}")
                return []

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Retrieved {len(results)} chunks via {self.last_method.value} in {duration_ms:.1f}ms"
        )
        return results
