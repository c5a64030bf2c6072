"""
PostgreSQL + pgvector store for Knowledge-RAG

- asyncpg connection pool (lazy)
- Hybrid ranking computed in one SQL statement (semantic CTE + lexical CTE,
  FULL OUTER JOIN, per-query lexical max-normalization)
- Idempotent schema bootstrap (table, tsvector trigger, HNSW/GIN indexes)
"""

import asyncio
import json
import logging
import re
from typing import Any, List, Optional

import asyncpg

from knowledge_rag.config import KnowledgeConfig, get_settings
from knowledge_rag.errors import ConfigurationError, DuplicateError, StoreUnavailableError
from knowledge_rag.store.base import VectorStore
from knowledge_rag.types import CONTENT_HASH_KEY, KnowledgeChunk, RetrievalMethod, SearchResult

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Driver-level failures that mean "store unavailable" on the query path
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS {table} (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    content text NOT NULL,
    source varchar(255) NOT NULL,
    metadata jsonb NOT NULL DEFAULT '{{}}'::jsonb,
    embedding vector({dim}),
    search_vector tsvector,
    "createdAt" timestamptz NOT NULL DEFAULT now()
);

CREATE OR REPLACE FUNCTION {table}_search_vector_update() RETURNS trigger AS $$
BEGIN
    NEW.search_vector := to_tsvector('{language}', COALESCE(NEW.content, ''));
    RETURN NEW;
END
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS {table}_search_vector_trigger ON {table};
CREATE TRIGGER {table}_search_vector_trigger
    BEFORE INSERT OR UPDATE OF content ON {table}
    FOR EACH ROW EXECUTE FUNCTION {table}_search_vector_update();

CREATE UNIQUE INDEX IF NOT EXISTS {table}_content_hash_idx
    ON {table} ((metadata->>'contentHash'));
CREATE INDEX IF NOT EXISTS {table}_embedding_hnsw_idx
    ON {table} USING hnsw (embedding vector_cosine_ops)
    WITH (m = 16, ef_construction = 64);
CREATE INDEX IF NOT EXISTS {table}_search_vector_idx
    ON {table} USING GIN (search_vector);
CREATE INDEX IF NOT EXISTS {table}_source_idx ON {table} (source);
"""

# $1 vector, $2 query text, $3 alpha, $4 semantic candidate pool, $5 text search config, $6 limit
HYBRID_SEARCH_SQL = """
WITH semantic AS (
    SELECT id, 1 - (embedding <=> $1::vector) AS semantic_score
    FROM {table}
    WHERE embedding IS NOT NULL
    ORDER BY embedding <=> $1::vector
    LIMIT $4
),
q AS (
    SELECT (
        SELECT string_agg(quote_literal(lexeme), ' | ')
        FROM unnest(tsvector_to_array(to_tsvector($5::regconfig, $2))) AS lexeme
    )::tsquery AS query
),
lexical AS (
    SELECT e.id,
           1 - (e.embedding <=> $1::vector) AS semantic_score,
           ts_rank(e.search_vector, q.query) AS lexical_score
    FROM {table} e, q
    WHERE q.query IS NOT NULL AND e.search_vector @@ q.query
),
combined AS (
    SELECT COALESCE(s.id, l.id) AS id,
           COALESCE(s.semantic_score, l.semantic_score, 0) AS semantic_score,
           COALESCE(l.lexical_score, 0) AS lexical_score
    FROM semantic s
    FULL OUTER JOIN lexical l ON s.id = l.id
),
scored AS (
    SELECT id,
           semantic_score,
           CASE WHEN MAX(lexical_score) OVER () > 0
                THEN lexical_score / MAX(lexical_score) OVER ()
                ELSE 0 END AS lexical_score
    FROM combined
)
SELECT e.id::text AS id, e.content, e.source, e.metadata::text AS metadata,
       e."createdAt" AS created_at,
       s.semantic_score, s.lexical_score,
       $3::float8 * s.semantic_score + (1 - $3::float8) * s.lexical_score AS hybrid_score
FROM scored s
JOIN {table} e ON e.id = s.id
WHERE s.semantic_score > 0 OR s.lexical_score > 0
ORDER BY hybrid_score DESC, e.id ASC
LIMIT $6
"""

SEMANTIC_SEARCH_SQL = """
SELECT id::text AS id, content, source, metadata::text AS metadata,
       "createdAt" AS created_at,
       1 - (embedding <=> $1::vector) AS semantic_score
FROM {table}
WHERE embedding IS NOT NULL
ORDER BY embedding <=> $1::vector, id
LIMIT $2
"""


def _vector_literal(values: List[float]) -> str:
    return "[" + ",".join(f"{v:.8f}" for v in values) + "]"


def _parse_metadata(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_chunk(row: Any) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=str(row["id"]),
        content=row["content"],
        source=row["source"],
        metadata=_parse_metadata(row["metadata"]),
        created_at=row["created_at"],
    )


class PgVectorStore(VectorStore):
    """Knowledge store backed by PostgreSQL with the pgvector extension."""

    def __init__(self, config: Optional[KnowledgeConfig] = None, pool: Optional[Any] = None):
        self.config = config or get_settings()
        self.table = self.config.knowledge_table
        if not _IDENTIFIER_RE.match(self.table):
            raise ConfigurationError(f"Invalid table name: {self.table!r}")
        self.language = self.config.fts_language
        self.candidate_pool = self.config.semantic_candidate_pool
        self.timeout = self.config.store_timeout
        self._pool = pool

    async def _get_pool(self) -> Any:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.config.database_url,
                min_size=1,
                max_size=self.config.database_pool_size,
                command_timeout=self.timeout,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        """Create the table, trigger and indexes if missing."""
        if not _IDENTIFIER_RE.match(self.language):
            raise ConfigurationError(f"Invalid text search configuration: {self.language!r}")
        sql = SCHEMA_SQL.format(
            table=self.table,
            dim=self.config.embedding_dim,
            language=self.language,
        )
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(sql)
        logger.info(f"Schema ready for table {self.table} (dim={self.config.embedding_dim})")

    async def insert(self, chunk: KnowledgeChunk) -> KnowledgeChunk:
        sql = f"""
            INSERT INTO {self.table} (id, content, source, metadata, embedding)
            VALUES ($1::uuid, $2, $3, $4::jsonb, $5::vector)
            RETURNING "createdAt" AS created_at
        """
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    sql,
                    chunk.id,
                    chunk.content,
                    chunk.source,
                    json.dumps(chunk.metadata, ensure_ascii=False),
                    _vector_literal(chunk.embedding) if chunk.embedding is not None else None,
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateError(chunk.metadata.get(CONTENT_HASH_KEY, "")) from e
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Insert failed: {e}") from e

        return KnowledgeChunk(
            id=chunk.id,
            content=chunk.content,
            source=chunk.source,
            metadata=chunk.metadata,
            embedding=chunk.embedding,
            created_at=row["created_at"],
        )

    async def exists_by_hash(self, content_hash: str) -> bool:
        sql = f"SELECT EXISTS(SELECT 1 FROM {self.table} WHERE metadata->>'contentHash' = $1)"
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                return bool(await conn.fetchval(sql, content_hash))
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Existence check failed: {e}") from e

    async def delete_by_source(self, source: str) -> int:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                status = await conn.execute(f"DELETE FROM {self.table} WHERE source = $1", source)
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Delete failed: {e}") from e
        # asyncpg returns the command tag, e.g. "DELETE 12"
        deleted = int(status.split()[-1]) if status else 0
        logger.info(f"Deleted {deleted} chunks from source {source}")
        return deleted

    async def count(self) -> int:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                return int(await conn.fetchval(f"SELECT COUNT(*) FROM {self.table}"))
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Count failed: {e}") from e

    async def hybrid_search(
        self,
        query: str,
        embedding: List[float],
        alpha: float,
        limit: int,
    ) -> List[SearchResult]:
        sql = HYBRID_SEARCH_SQL.format(table=self.table)
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    sql,
                    _vector_literal(embedding),
                    query,
                    alpha,
                    max(self.candidate_pool, limit),
                    self.language,
                    limit,
                )
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Hybrid search failed: {e}") from e
        return [
            SearchResult(
                chunk=_row_to_chunk(row),
                semantic_score=float(row["semantic_score"]),
                lexical_score=float(row["lexical_score"]),
                hybrid_score=float(row["hybrid_score"]),
                retrieval_method=RetrievalMethod.HYBRID,
            )
            for row in rows
        ]

    async def semantic_search(self, embedding: List[float], limit: int) -> List[SearchResult]:
        sql = SEMANTIC_SEARCH_SQL.format(table=self.table)
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(sql, _vector_literal(embedding), limit)
        except STORE_ERRORS as e:
            raise StoreUnavailableError(f"Semantic search failed: {e}") from e
        results = []
        for row in rows:
            score = float(row["semantic_score"])
            results.append(
                SearchResult(
                    chunk=_row_to_chunk(row),
                    semantic_score=score,
                    hybrid_score=score,
                    retrieval_method=RetrievalMethod.SEMANTIC,
                )
            )
        return results
