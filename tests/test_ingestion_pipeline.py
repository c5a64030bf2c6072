"""
Tests for KnowledgeIngestor

Covers per-run counters, filtering, deduplication, failure isolation and
batch pacing. Delivery goes to an in-memory fake client.
"""
from typing import Any, Dict, List, Optional, Set

import pytest

from conftest import no_sleep
from knowledge_rag.config import KnowledgeConfig
from knowledge_rag.core.dedup import compute_content_hash
from knowledge_rag.core.normalizer import TextChunker
from knowledge_rag.errors import DeliveryError, DuplicateError
from knowledge_rag.ingestion.loaders import SourceDocument
from knowledge_rag.ingestion.pipeline import DeliveryErrorInfo, IngestStats, KnowledgeIngestor
from knowledge_rag.types import ChunkPayload, ItemOutcome

P1 = "El conductor debe respetar siempre los límites de velocidad establecidos en cada zona de la ciudad."
P2 = "Los motociclistas deben usar casco homologado y mantener las luces encendidas durante todo el recorrido."
RAW = f"{P1}\n\nCapítulo 3\n\n{P2}"


class FakeClient:
    """Stands in for IngestionClient: remembers delivered hashes."""

    def __init__(
        self,
        existing: Optional[Set[str]] = None,
        conflicts: Optional[Set[str]] = None,
        failures: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.existing = set(existing or ())
        self.conflicts = set(conflicts or ())
        self.failures = failures or {}
        self.delivered: List[Dict[str, Any]] = []
        self.exists_calls: List[str] = []

    async def exists(self, content_hash: str) -> bool:
        self.exists_calls.append(content_hash)
        return content_hash in self.existing

    async def deliver(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload["content"] in self.failures:
            raise self.failures[payload["content"]]
        content_hash = payload["metadata"]["contentHash"]
        if content_hash in self.conflicts:
            raise DuplicateError(content_hash)
        self.delivered.append(payload)
        self.existing.add(content_hash)
        return payload


@pytest.fixture
def chunker():
    return TextChunker(chunk_size=105, chunk_overlap=0)


@pytest.fixture
def ingestor_factory(config, chunker):
    def build(client, **kwargs):
        return KnowledgeIngestor(client, config, chunker=chunker, **kwargs)
    return build


class TestIngestText:
    async def test_counts_saved_and_filtered(self, ingestor_factory):
        client = FakeClient()
        stats = await ingestor_factory(client).ingest_text(RAW, source="manual_pba", metadata={"priority": "media"})

        assert stats.total_chunks == 3
        assert stats.saved == 2
        assert stats.filtered == 1
        assert stats.skipped == 1
        assert stats.failed == 0
        assert [p["metadata"]["chunkIndex"] for p in client.delivered] == [0, 2]
        assert all(p["metadata"]["priority"] == "media" for p in client.delivered)
        assert client.delivered[0]["metadata"]["contentHash"] == compute_content_hash(P1)

    async def test_rerun_in_same_ingestor_skips_locally(self, ingestor_factory):
        client = FakeClient()
        ingestor = ingestor_factory(client)
        await ingestor.ingest_text(RAW, source="manual_pba")
        checks = len(client.exists_calls)

        stats = await ingestor.ingest_text(RAW, source="manual_pba")

        assert stats.saved == 0
        assert stats.duplicates == 2
        assert len(client.delivered) == 2
        assert len(client.exists_calls) == checks

    async def test_fresh_run_skips_remote_duplicates(self, ingestor_factory):
        client = FakeClient(existing={compute_content_hash(P1)})
        stats = await ingestor_factory(client).ingest_text(RAW, source="manual_pba")
        assert stats.saved == 1
        assert stats.duplicates == 1

    async def test_conflict_on_delivery_is_duplicate(self, ingestor_factory):
        client = FakeClient(conflicts={compute_content_hash(P2)})
        stats = await ingestor_factory(client).ingest_text(RAW, source="manual_pba")
        assert stats.saved == 1
        assert stats.duplicates == 1
        assert stats.failed == 0


class TestFailures:
    async def test_failure_is_isolated_and_first_error_kept(self, ingestor_factory):
        client = FakeClient(
            failures={
                P1: DeliveryError("Bad Request", status_code=400, response_body="invalid metadata"),
                P2: DeliveryError("Unprocessable", status_code=422),
            }
        )
        extra = ChunkPayload(content="Ceda el paso al peatón en la senda peatonal.", source="reglas_locales")
        ingestor = ingestor_factory(client)
        stats = await ingestor.ingest_entries(
            [ChunkPayload(content=P1, source="x"), ChunkPayload(content=P2, source="x"), extra]
        )

        assert stats.failed == 2
        assert stats.saved == 1
        assert stats.first_error.status_code == 400
        assert str(stats.first_error) == "400 Bad Request | response=invalid metadata"

    async def test_error_without_status(self, ingestor_factory):
        client = FakeClient(failures={P1: ConnectionError("reset by peer")})
        stats = await ingestor_factory(client).ingest_entries([ChunkPayload(content=P1, source="x")])
        assert stats.failed == 1
        assert str(stats.first_error) == "NO_STATUS ConnectionError: reset by peer"


class TestBatching:
    async def test_pause_between_batches_only(self, chunker):
        delays: List[float] = []

        async def record_sleep(seconds: float) -> None:
            delays.append(seconds)

        config = KnowledgeConfig(_env_file=None, ingest_batch_size=3, ingest_batch_delay=1.0)
        client = FakeClient()
        ingestor = KnowledgeIngestor(client, config, chunker=chunker, sleep=record_sleep)
        entries = [ChunkPayload(content=f"Regla número {i} del reglamento.", source="x") for i in range(7)]

        stats = await ingestor.ingest_entries(entries)

        assert stats.saved == 7
        assert delays == [1.0, 1.0]

    async def test_same_content_in_one_batch_delivered_once(self, ingestor_factory):
        client = FakeClient()
        entries = [ChunkPayload(content=P1, source="x") for _ in range(3)]
        stats = await ingestor_factory(client, sleep=no_sleep).ingest_entries(entries)
        assert stats.saved == 1
        assert stats.duplicates == 2
        assert len(client.delivered) == 1


class TestQA:
    async def test_qa_items(self, ingestor_factory):
        client = FakeClient()
        items = [
            {"question": "¿Cuál es la velocidad máxima en zona urbana?", "answer": "40 km/h.", "category": "Velocidad"},
            {"question": "¿Se puede estacionar frente a un garaje?", "answer": "No."},
            {"question": "", "answer": "Sin pregunta"},
            "not a dict",
        ]

        stats = await ingestor_factory(client).ingest_qa(items)

        assert stats.total_chunks == 4
        assert stats.saved == 2
        assert stats.filtered == 2
        first, second = client.delivered
        assert first["source"] == "reglas_locales"
        assert first["content"].startswith("PREGUNTA: ¿Cuál es la velocidad máxima")
        assert first["metadata"]["type"] == "qa_pair"
        assert first["metadata"]["original_category"] == "Velocidad"
        assert second["metadata"]["original_category"] == "General"


class TestIngestDocument:
    async def test_text_document(self, ingestor_factory, tmp_path):
        (tmp_path / "normas.txt").write_text(RAW, encoding="utf-8")
        client = FakeClient()
        document = SourceDocument(name="normas.txt", source="normas_locales", priority="alta")

        stats = await ingestor_factory(client).ingest_document(document, docs_dir=tmp_path)

        assert stats.saved == 2
        assert {p["source"] for p in client.delivered} == {"normas_locales"}
        assert client.delivered[0]["metadata"]["filename"] == "normas.txt"
        assert client.delivered[0]["metadata"]["priority"] == "alta"

    async def test_missing_document(self, ingestor_factory, tmp_path):
        with pytest.raises(FileNotFoundError):
            await ingestor_factory(FakeClient()).ingest_document(
                SourceDocument(name="nope.pdf", source="x"), docs_dir=tmp_path
            )


class TestIngestStats:
    def test_record_and_to_dict(self):
        stats = IngestStats()
        for outcome in (ItemOutcome.SAVED, ItemOutcome.FILTERED, ItemOutcome.DUPLICATE, ItemOutcome.FAILED):
            stats.record(outcome)
        data = stats.to_dict()
        assert data["saved"] == 1
        assert data["skipped"] == 2
        assert data["failed"] == 1
        assert data["first_error"] is None

    def test_first_error_is_not_overwritten(self):
        stats = IngestStats()
        stats.record_error(DeliveryError("first", status_code=400))
        stats.record_error(DeliveryError("second", status_code=500))
        assert stats.first_error == DeliveryErrorInfo(status_code=400, message="first")
