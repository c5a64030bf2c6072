"""
Knowledge-RAG: knowledge ingestion and hybrid retrieval

The knowledge base behind a retrieval-augmented question-answering bot:
- Ingestion: text cleaning, chunking, quality filtering, content-hash dedup,
  retried delivery to the knowledge API
- Storage: PostgreSQL + pgvector with a full-text index
- Retrieval: alpha-weighted fusion of semantic and lexical relevance with a
  hybrid -> semantic -> empty degradation chain

Usage:
    from knowledge_rag import KnowledgeService

    service = KnowledgeService.from_config()
    await service.start()
    results = await service.search("¿Cuál es la velocidad máxima en zona urbana?")
"""

__version__ = "1.0.0"

from knowledge_rag.config import KnowledgeConfig, get_settings, reset_settings
from knowledge_rag.knowledge import KnowledgeService, build_context
from knowledge_rag.types import (
    ChunkPayload,
    KnowledgeChunk,
    RetrievalMethod,
    SearchResult,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "KnowledgeConfig",
    "get_settings",
    "reset_settings",
    # Service
    "KnowledgeService",
    "build_context",
    # Types
    "ChunkPayload",
    "KnowledgeChunk",
    "RetrievalMethod",
    "SearchResult",
]
