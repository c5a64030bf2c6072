"""
Hybrid score fusion for Knowledge-RAG

Implements:
- Cosine similarity between query and chunk vectors
- Per-query max-normalization of lexical scores
- Convex combination of semantic and lexical relevance
- Deterministic ordering (hybrid score desc, id asc)
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from knowledge_rag.types import KnowledgeChunk, RetrievalMethod, SearchResult

logger = logging.getLogger(__name__)


@dataclass
class ScoredCandidate:
    """A chunk with raw per-channel scores, before fusion."""
    chunk: KnowledgeChunk
    semantic_score: float = 0.0
    lexical_score: float = 0.0


def validate_alpha(alpha: float) -> float:
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be between 0 and 1, got {alpha}")
    return alpha


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """1 - cosine distance. Zero vectors score 0."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def normalize_lexical(scores: Sequence[float]) -> List[float]:
    """
    Divide lexical scores by the per-query maximum.

    All-zero input stays all-zero.
    """
    if not scores:
        return []
    max_score = max(scores)
    if max_score <= 0:
        return [0.0 for _ in scores]
    return [max(s, 0.0) / max_score for s in scores]


def fuse(
    candidates: Sequence[ScoredCandidate],
    alpha: float,
    top_k: int,
    method: RetrievalMethod = RetrievalMethod.HYBRID,
) -> List[SearchResult]:
    """
    Rank the union of semantic and lexical candidates.

    Args:
        candidates: Chunks with raw semantic and lexical scores
        alpha: Semantic weight; lexical weight is 1 - alpha
        top_k: Maximum results to return

    Returns:
        Results sorted by hybrid score descending, ties broken by id
    """
    validate_alpha(alpha)
    if top_k <= 0:
        return []

    pool = [c for c in candidates if c.semantic_score > 0 or c.lexical_score > 0]
    if not pool:
        return []

    lexical = normalize_lexical([c.lexical_score for c in pool])

    results = []
    for candidate, lex in zip(pool, lexical):
        hybrid = alpha * candidate.semantic_score + (1.0 - alpha) * lex
        results.append(
            SearchResult(
                chunk=candidate.chunk,
                semantic_score=candidate.semantic_score,
                lexical_score=lex,
                hybrid_score=hybrid,
                retrieval_method=method,
            )
        )

    results.sort(key=lambda r: (-r.hybrid_score, r.id))
    return results[:top_k]
