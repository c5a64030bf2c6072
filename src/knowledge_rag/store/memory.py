"""
In-process vector store.

Implements the same ranking contract as the PostgreSQL store without a
database: cosine similarity over stored vectors, a ts_rank-like lexical
score, and the shared fusion in core.fusion. Used for local runs and tests.
"""

import asyncio
import logging
import math
import re
import unicodedata
from collections import Counter
from typing import Dict, List, Optional

from knowledge_rag.core.fusion import ScoredCandidate, cosine_similarity, fuse
from knowledge_rag.errors import DuplicateError
from knowledge_rag.store.base import VectorStore
from knowledge_rag.types import CONTENT_HASH_KEY, KnowledgeChunk, RetrievalMethod, SearchResult

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+(?:/\w+)*")

STOPWORDS = frozenset(
    """
    a al algo ante antes como con contra cual cuando de del desde donde durante e el ella
    ellos en entre era es esa ese eso esta este esto fue ha hay la las le les lo los mas
    me mi muy no nos o os para pero por que quien se sea ser si sin sobre son su sus
    tambien te tiene tu un una uno unos y ya
    an and are as at be by for from in is it of on or that the this to was with
    """.split()
)


def fold(text: str) -> str:
    """Lower-case and strip accents ("Límite" -> "limite")."""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _stem(token: str) -> str:
    # Light plural folding so "señales" and "señal" share a lexeme
    if len(token) > 4 and token.endswith("es"):
        return token[:-2]
    if len(token) > 3 and token.endswith("s"):
        return token[:-1]
    return token


def lexemes(text: str) -> List[str]:
    """Tokenize into folded, stemmed, stopword-free terms."""
    return [_stem(t) for t in _TOKEN_RE.findall(fold(text)) if t not in STOPWORDS]


def lexical_rank(query_terms: List[str], doc_terms: List[str]) -> float:
    """
    OR-match query terms against a document.

    Each matched distinct term contributes 1 + log(tf); the sum is divided
    by a log of the document length.
    """
    if not query_terms or not doc_terms:
        return 0.0
    tf = Counter(doc_terms)
    score = sum(1.0 + math.log(tf[t]) for t in set(query_terms) if tf[t] > 0)
    if score == 0:
        return 0.0
    return score / (1.0 + math.log(1 + len(doc_terms)))


class InMemoryVectorStore(VectorStore):
    """Dictionary-backed store with a unique content-hash index."""

    def __init__(self, candidate_pool: int = 50):
        self.candidate_pool = candidate_pool
        self._chunks: Dict[str, KnowledgeChunk] = {}
        self._by_hash: Dict[str, str] = {}
        self._terms: Dict[str, List[str]] = {}
        self._lock = asyncio.Lock()

    async def insert(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        content_hash = chunk.metadata.get(CONTENT_HASH_KEY)
        async with self._lock:
            if content_hash and content_hash in self._by_hash:
                raise DuplicateError(content_hash)
            self._chunks[chunk.id] = chunk
            self._terms[chunk.id] = lexemes(chunk.content)
            if content_hash:
                self._by_hash[content_hash] = chunk.id
        return chunk

    async def exists_by_hash(self, content_hash: str) -> bool:
        return content_hash in self._by_hash

    async def delete_by_source(self, source: str) -> int:
        async with self._lock:
            doomed = [c for c in self._chunks.values() if c.source == source]
            for chunk in doomed:
                del self._chunks[chunk.id]
                del self._terms[chunk.id]
                if chunk.content_hash:
                    self._by_hash.pop(chunk.content_hash, None)
        logger.info(f"Deleted {len(doomed)} chunks from source {source}")
        return len(doomed)

    async def count(self) -> int:
        return len(self._chunks)

    def get(self, chunk_id: str) -> Optional[KnowledgeChunk]:
        return self._chunks.get(chunk_id)

    def _semantic_scores(self, embedding: List[float]) -> Dict[str, float]:
        return {
            chunk_id: cosine_similarity(embedding, chunk.embedding)
            for chunk_id, chunk in self._chunks.items()
            if chunk.embedding is not None
        }

    async def hybrid_search(
        self,
        query: str,
        embedding: List[float],
        alpha: float,
        limit: int,
    ) -> List[SearchResult]:
        semantic = self._semantic_scores(embedding)
        # The nearest-neighbour pool only decides candidacy; word matches
        # outside it still carry their real similarity.
        pool_size = max(self.candidate_pool, limit)
        nearest = sorted(semantic.items(), key=lambda kv: (-kv[1], kv[0]))[:pool_size]
        nearest_ids = {chunk_id for chunk_id, score in nearest if score > 0}

        query_terms = lexemes(query)
        candidates = []
        for chunk_id, chunk in self._chunks.items():
            lexical = lexical_rank(query_terms, self._terms[chunk_id])
            if chunk_id in nearest_ids or lexical > 0:
                candidates.append(
                    ScoredCandidate(chunk=chunk, semantic_score=semantic.get(chunk_id, 0.0), lexical_score=lexical)
                )

        return fuse(candidates, alpha=alpha, top_k=limit)

    async def semantic_search(self, embedding: List[float], limit: int) -> List[SearchResult]:
        scored = sorted(self._semantic_scores(embedding).items(), key=lambda kv: (-kv[1], kv[0]))
        return [
            SearchResult(
                chunk=self._chunks[chunk_id],
                semantic_score=score,
                hybrid_score=score,
                retrieval_method=RetrievalMethod.SEMANTIC,
            )
            for chunk_id, score in scored[:limit]
        ]
