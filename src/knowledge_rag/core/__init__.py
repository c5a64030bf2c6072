"""
Knowledge-RAG Core Module

Contains core components: normalizer, deduplication, embedder, query cache,
dimension guard and score fusion.
"""

from knowledge_rag.core.dedup import Deduplicator, compute_content_hash
from knowledge_rag.core.dimension_guard import DimensionGuard
from knowledge_rag.core.embedder import EmbeddingProvider
from knowledge_rag.core.embedding_cache import (
    InMemoryEmbeddingCache,
    QueryEmbeddingCache,
    RedisEmbeddingCache,
)
from knowledge_rag.core.fusion import ScoredCandidate, fuse
from knowledge_rag.core.normalizer import TextChunker, clean_raw_text, is_valid_chunk

__all__ = [
    "Deduplicator",
    "compute_content_hash",
    "DimensionGuard",
    "EmbeddingProvider",
    "InMemoryEmbeddingCache",
    "QueryEmbeddingCache",
    "RedisEmbeddingCache",
    "ScoredCandidate",
    "fuse",
    "TextChunker",
    "clean_raw_text",
    "is_valid_chunk",
]
