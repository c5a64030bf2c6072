"""Vector stores: PostgreSQL + pgvector and an in-process equivalent."""

from knowledge_rag.store.base import VectorStore
from knowledge_rag.store.memory import InMemoryVectorStore
from knowledge_rag.store.pgvector import PgVectorStore

__all__ = ["VectorStore", "InMemoryVectorStore", "PgVectorStore"]
