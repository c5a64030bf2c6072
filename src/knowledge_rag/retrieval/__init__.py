"""Knowledge-RAG Retrieval Module."""

from knowledge_rag.retrieval.hybrid import HybridRetriever

__all__ = ["HybridRetriever"]
