"""
Tests for HybridRetriever

Covers ranking through the in-process store and the degradation chain
(hybrid -> semantic-only -> empty).
"""
import asyncio

import pytest

from conftest import FakeEmbedder
from knowledge_rag.core.dedup import compute_content_hash
from knowledge_rag.core.embedding_cache import QueryEmbeddingCache
from knowledge_rag.errors import StoreUnavailableError
from knowledge_rag.retrieval.hybrid import HybridRetriever
from knowledge_rag.store.memory import InMemoryVectorStore
from knowledge_rag.types import KnowledgeChunk, RetrievalMethod


class FlakyStore(InMemoryVectorStore):
    """In-process store whose channels can be switched off."""

    def __init__(self, hybrid_fails=False, semantic_fails=False, hybrid_delay=0.0):
        super().__init__()
        self.hybrid_fails = hybrid_fails
        self.semantic_fails = semantic_fails
        self.hybrid_delay = hybrid_delay

    async def hybrid_search(self, query, embedding, alpha, limit):
        if self.hybrid_delay:
            await asyncio.sleep(self.hybrid_delay)
        if self.hybrid_fails:
            raise StoreUnavailableError("lexical index unavailable")
        return await super().hybrid_search(query, embedding, alpha, limit)

    async def semantic_search(self, embedding, limit):
        if self.semantic_fails:
            raise StoreUnavailableError("store down")
        return await super().semantic_search(embedding, limit)


TEXTS = [
    "Límite de velocidad en zona urbana: 40 km/h.",
    "Prohibido estacionar frente a garajes.",
    "Tasa de alcoholemia máxima para conductores: 0,5 g/l.",
]


async def _populate(store, embedder):
    for i, text in enumerate(TEXTS):
        await store.insert(
            KnowledgeChunk(
                content=text,
                source="reglas_locales",
                metadata={"contentHash": compute_content_hash(text)},
                embedding=embedder.vector(text),
                id=f"chunk-{i}",
            )
        )


def _retriever(store, embedder, **kwargs):
    return HybridRetriever(store, QueryEmbeddingCache(embedder), **kwargs)


@pytest.fixture
def embedder():
    return FakeEmbedder()


class TestRanking:
    async def test_semantic_paraphrase_ranks_first(self, embedder):
        store = FlakyStore()
        await _populate(store, embedder)
        retriever = _retriever(store, embedder)

        results = await retriever.search("velocidad en la ciudad")

        assert results[0].id == "chunk-0"
        assert retriever.last_method is RetrievalMethod.HYBRID

    async def test_exact_term_ranks_first(self, embedder):
        store = FlakyStore()
        await _populate(store, embedder)
        results = await _retriever(store, embedder).search("garajes")
        assert results[0].id == "chunk-1"

    async def test_limit(self, embedder):
        store = FlakyStore()
        await _populate(store, embedder)
        results = await _retriever(store, embedder).search("velocidad alcoholemia garajes", limit=2)
        assert len(results) == 2

    async def test_blank_query_returns_nothing(self, embedder):
        store = FlakyStore()
        await _populate(store, embedder)
        retriever = _retriever(store, embedder)
        assert await retriever.search("   ") == []
        assert embedder.calls == []
        assert retriever.last_method is RetrievalMethod.NONE

    async def test_zero_limit_returns_nothing(self, embedder):
        store = FlakyStore()
        await _populate(store, embedder)
        retriever = _retriever(store, embedder, top_k=5)
        assert await retriever.search("velocidad", limit=0) == []
        assert embedder.calls == []
        assert len(await retriever.search("velocidad")) > 0

    async def test_invalid_alpha_rejected(self, embedder):
        with pytest.raises(ValueError):
            _retriever(FlakyStore(), embedder, alpha=1.2)


class TestDegradation:
    async def test_hybrid_failure_falls_back_to_semantic(self, embedder):
        store = FlakyStore(hybrid_fails=True)
        await _populate(store, embedder)
        retriever = _retriever(store, embedder)

        results = await retriever.search("velocidad en la ciudad")

        assert results
        assert results[0].id == "chunk-0"
        assert retriever.last_method is RetrievalMethod.SEMANTIC
        assert all(r.retrieval_method is RetrievalMethod.SEMANTIC for r in results)

    async def test_hybrid_timeout_falls_back_to_semantic(self, embedder):
        store = FlakyStore(hybrid_delay=1.0)
        await _populate(store, embedder)
        retriever = _retriever(store, embedder, store_timeout=0.01)

        results = await retriever.search("velocidad en la ciudad")

        assert results
        assert retriever.last_method is RetrievalMethod.SEMANTIC

    async def test_both_channels_down_returns_empty(self, embedder):
        store = FlakyStore(hybrid_fails=True, semantic_fails=True)
        await _populate(store, embedder)
        retriever = _retriever(store, embedder)

        assert await retriever.search("velocidad") == []
        assert retriever.last_method is RetrievalMethod.NONE

    async def test_embedding_failure_returns_empty(self):
        store = FlakyStore()
        retriever = _retriever(store, FakeEmbedder(fail=True))
        assert await retriever.search("velocidad") == []
