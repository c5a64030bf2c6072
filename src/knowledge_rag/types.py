"""
Knowledge-RAG Data Types

Shared data classes and types used throughout the library.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

CONTENT_HASH_KEY = "contentHash"


def utcnow() -> datetime:
    """Get current UTC time with timezone awareness."""
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class RetrievalMethod(Enum):
    """How a result set was produced."""
    HYBRID = "hybrid"
    SEMANTIC = "semantic"
    NONE = "none"


class ItemOutcome(Enum):
    """Outcome of ingesting a single item."""
    SAVED = "saved"
    FILTERED = "filtered"
    DUPLICATE = "duplicate"
    FAILED = "failed"


# ═══════════════════════════════════════════════════════════════════════════════
# CHUNK TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class KnowledgeChunk:
    """
    A stored knowledge chunk.

    Immutable once written. The lexical index over ``content`` is kept by the
    store and never travels with the record.
    """
    content: str
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def content_hash(self) -> Optional[str]:
        return self.metadata.get(CONTENT_HASH_KEY)

    def to_public_dict(self) -> Dict[str, Any]:
        """External representation (no embedding)."""
        return {
            "id": self.id,
            "content": self.content,
            "source": self.source,
            "metadata": dict(self.metadata),
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class ChunkPayload:
    """Content submission payload sent by ingestion."""
    content: str
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "source": self.source, "metadata": self.metadata}


# ═══════════════════════════════════════════════════════════════════════════════
# SEARCH TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SearchResult:
    """
    A ranked chunk with its scores.

    Scores are internal; only ``to_public_dict()`` crosses the API boundary.
    """
    chunk: KnowledgeChunk
    semantic_score: float = 0.0
    lexical_score: float = 0.0
    hybrid_score: float = 0.0
    retrieval_method: RetrievalMethod = RetrievalMethod.HYBRID

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def content(self) -> str:
        return self.chunk.content

    @property
    def source(self) -> str:
        return self.chunk.source

    def to_public_dict(self) -> Dict[str, Any]:
        return self.chunk.to_public_dict()
