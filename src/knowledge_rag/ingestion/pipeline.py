"""
Knowledge Ingestor

Write-path orchestration for one ingestion run:
- Cleans, chunks and filters document text
- Formats Q&A pairs
- Deduplicates by content hash (in-run set + remote existence check)
- Delivers in small concurrent batches with a pause between batches
- Tracks per-run counters and the first delivery error

Failures are local to the item: a run never aborts because one chunk failed.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from knowledge_rag.config import KnowledgeConfig, get_settings
from knowledge_rag.core.dedup import Deduplicator, compute_content_hash
from knowledge_rag.core.normalizer import (
    TextChunker,
    clean_chunk_text,
    clean_raw_text,
    format_qa_content,
    is_valid_chunk,
    is_valid_qa_item,
    qa_category,
)
from knowledge_rag.errors import (
    DuplicateError,
    UpstreamError,
    truncate_body,
)
from knowledge_rag.ingestion.client import IngestionClient
from knowledge_rag.ingestion.loaders import SourceDocument, load_document_text
from knowledge_rag.types import CONTENT_HASH_KEY, ChunkPayload, ItemOutcome, utcnow

logger = logging.getLogger(__name__)

QA_SOURCE = "reglas_locales"


@dataclass
class DeliveryErrorInfo:
    """Diagnostics kept for the first failed delivery of a run."""
    status_code: Optional[int]
    message: str
    response_body: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "DeliveryErrorInfo":
        if isinstance(exc, UpstreamError):
            return cls(
                status_code=exc.status_code,
                message=exc.message,
                response_body=truncate_body(exc.response_body),
            )
        return cls(status_code=None, message=f"{type(exc).__name__}: {exc}")

    def __str__(self) -> str:
        status = self.status_code if self.status_code is not None else "NO_STATUS"
        text = f"{status} {self.message}"
        if self.response_body:
            text += f" | response={self.response_body}"
        return text


@dataclass
class IngestStats:
    """Statistics from an ingestion run."""
    saved: int = 0
    failed: int = 0
    filtered: int = 0
    duplicates: int = 0
    total_chunks: int = 0
    first_error: Optional[DeliveryErrorInfo] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def skipped(self) -> int:
        """Items not delivered because they were filtered or already stored."""
        return self.filtered + self.duplicates

    @property
    def duration_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.SAVED:
            self.saved += 1
        elif outcome is ItemOutcome.DUPLICATE:
            self.duplicates += 1
        elif outcome is ItemOutcome.FILTERED:
            self.filtered += 1
        else:
            self.failed += 1

    def record_error(self, exc: BaseException) -> None:
        if self.first_error is None:
            self.first_error = DeliveryErrorInfo.from_exception(exc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saved": self.saved,
            "skipped": self.skipped,
            "failed": self.failed,
            "filtered": self.filtered,
            "duplicates": self.duplicates,
            "total_chunks": self.total_chunks,
            "duration_seconds": round(self.duration_seconds, 3),
            "first_error": str(self.first_error) if self.first_error else None,
        }


class KnowledgeIngestor:
    """
    Ingestion pipeline for the knowledge base.

    One ingestor owns one Deduplicator, so hashes seen earlier in the run
    (across documents) are skipped without a remote call.
    """

    def __init__(
        self,
        client: IngestionClient,
        config: Optional[KnowledgeConfig] = None,
        chunker: Optional[TextChunker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the ingestor.

        Args:
            client: Client used for existence checks and delivery
            config: Settings (batch size, batch delay, chunking)
            chunker: Text splitter (defaults to configured size/overlap)
            sleep: Awaitable sleep used between batches
        """
        self.config = config or get_settings()
        self.client = client
        self.chunker = chunker or TextChunker(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
        )
        self.batch_size = max(1, self.config.ingest_batch_size)
        self.batch_delay = self.config.ingest_batch_delay
        self.dedup = Deduplicator(client.exists)
        self._sleep = sleep

    # ═══════════════════════════════════════════════════════════════════════════
    # Entry points
    # ═══════════════════════════════════════════════════════════════════════════

    async def ingest_text(
        self,
        raw_text: str,
        source: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestStats:
        """
        Clean, chunk, filter and deliver one document's text.

        Chunks keep their position in ``chunkIndex`` even when earlier
        chunks were filtered out.
        """
        stats = IngestStats(start_time=utcnow())
        chunks = self.chunker.split_text(clean_raw_text(raw_text))
        stats.total_chunks = len(chunks)
        logger.info(f"{source}: {len(chunks)} chunks generated")

        items: List[ChunkPayload] = []
        for index, chunk in enumerate(chunks):
            content = clean_chunk_text(chunk)
            if not is_valid_chunk(content):
                stats.record(ItemOutcome.FILTERED)
                continue
            items.append(
                ChunkPayload(
                    content=content,
                    source=source,
                    metadata={**(metadata or {}), "chunkIndex": index},
                )
            )

        await self._deliver_all(items, stats)
        return self._finish(stats, source)

    async def ingest_document(
        self,
        document: SourceDocument,
        docs_dir: Union[str, Path] = ".",
    ) -> IngestStats:
        """Load a registered document from disk and ingest it."""
        path = Path(docs_dir) / document.name
        logger.info(f"Processing {document.description or document.name} ({document.name})")
        raw_text = await asyncio.to_thread(load_document_text, path)
        return await self.ingest_text(
            raw_text,
            source=document.source,
            metadata={"filename": document.name, "priority": document.priority},
        )

    async def ingest_qa(self, items: Iterable[Any], source: str = QA_SOURCE) -> IngestStats:
        """Ingest Q&A pairs; invalid items are counted as filtered."""
        stats = IngestStats(start_time=utcnow())
        payloads: List[ChunkPayload] = []
        for item in items:
            stats.total_chunks += 1
            if not is_valid_qa_item(item):
                stats.record(ItemOutcome.FILTERED)
                continue
            payloads.append(
                ChunkPayload(
                    content=format_qa_content(item),
                    source=source,
                    metadata={"original_category": qa_category(item), "type": "qa_pair"},
                )
            )

        await self._deliver_all(payloads, stats)
        return self._finish(stats, source)

    async def ingest_entries(self, entries: Iterable[ChunkPayload]) -> IngestStats:
        """Deliver ready-made entries as-is (no chunk quality filter)."""
        stats = IngestStats(start_time=utcnow())
        payloads = list(entries)
        stats.total_chunks = len(payloads)
        await self._deliver_all(payloads, stats)
        return self._finish(stats, "entries")

    # ═══════════════════════════════════════════════════════════════════════════
    # Delivery
    # ═══════════════════════════════════════════════════════════════════════════

    async def _deliver_all(self, payloads: List[ChunkPayload], stats: IngestStats) -> None:
        for start in range(0, len(payloads), self.batch_size):
            if start > 0 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
            batch = payloads[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(self._ingest_item(p, stats) for p in batch))
            for outcome in outcomes:
                stats.record(outcome)

    async def _ingest_item(self, payload: ChunkPayload, stats: IngestStats) -> ItemOutcome:
        content_hash = compute_content_hash(payload.content)
        payload.metadata[CONTENT_HASH_KEY] = content_hash

        if await self.dedup.is_duplicate(content_hash):
            return ItemOutcome.DUPLICATE

        try:
            await self.client.deliver(payload.to_dict())
        except DuplicateError:
            return ItemOutcome.DUPLICATE
        except Exception as e:
            stats.record_error(e)
            logger.warning(f"Delivery failed (source={payload.source}, hash={content_hash[:12]}): {e}")
            return ItemOutcome.FAILED
        return ItemOutcome.SAVED

    def _finish(self, stats: IngestStats, label: str) -> IngestStats:
        stats.end_time = utcnow()
        logger.info(
            f"{label}: saved {stats.saved}, skipped {stats.skipped} "
            f"(filtered {stats.filtered}, duplicates {stats.duplicates}), failed {stats.failed}"
        )
        if stats.failed:
            logger.warning(f"{label}: {stats.failed} deliveries failed. First error: {stats.first_error}")
        return stats
