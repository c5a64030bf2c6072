"""
Knowledge-RAG Ingestion Module

Provides the write path of the knowledge base:
- Source loading (PDF, TXT/Markdown, Q&A JSON)
- Cleaning, chunking and quality filtering
- Content-hash deduplication
- Batched delivery to the knowledge API with retry
"""

from knowledge_rag.ingestion.client import IngestionClient
from knowledge_rag.ingestion.loaders import (
    DEFAULT_DOCUMENTS,
    SourceDocument,
    load_document_text,
    load_qa_items,
    select_documents,
)
from knowledge_rag.ingestion.pipeline import (
    DeliveryErrorInfo,
    IngestStats,
    KnowledgeIngestor,
)

__all__ = [
    "IngestionClient",
    "DEFAULT_DOCUMENTS",
    "SourceDocument",
    "load_document_text",
    "load_qa_items",
    "select_documents",
    "DeliveryErrorInfo",
    "IngestStats",
    "KnowledgeIngestor",
]
