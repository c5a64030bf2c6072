"""Vector store contract shared by the PostgreSQL and in-process stores."""

from abc import ABC, abstractmethod
from typing import List

from knowledge_rag.types import KnowledgeChunk, SearchResult


class VectorStore(ABC):
    """
    Persistent home of knowledge chunks.

    Implementations keep at most one chunk per content hash and maintain a
    lexical index over chunk content.
    """

    @abstractmethod
    async def insert(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        """
        Persist a chunk.

        Raises:
            DuplicateError: A chunk with the same content hash exists
            StoreUnavailableError: The store could not be reached
        """

    @abstractmethod
    async def exists_by_hash(self, content_hash: str) -> bool:
        """Return whether a chunk with this content hash is stored."""

    @abstractmethod
    async def delete_by_source(self, source: str) -> int:
        """Delete every chunk of a source, returning the number removed."""

    @abstractmethod
    async def hybrid_search(
        self,
        query: str,
        embedding: List[float],
        alpha: float,
        limit: int,
    ) -> List[SearchResult]:
        """Rank chunks by alpha * semantic + (1 - alpha) * normalized lexical relevance."""

    @abstractmethod
    async def semantic_search(self, embedding: List[float], limit: int) -> List[SearchResult]:
        """Rank chunks by vector similarity only."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored chunks."""

    async def close(self) -> None:
        """Release store resources."""
