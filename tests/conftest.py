"""Shared fixtures for Knowledge-RAG tests."""
from __future__ import annotations

import hashlib
import re
from typing import List

import pytest

from knowledge_rag.config import KnowledgeConfig, reset_settings

TEST_DIM = 16

# Words mapped to shared "concept" dimensions so related phrasings embed close
# together ("velocidad en la ciudad" vs "Límite de velocidad en zona urbana").
CONCEPTS = {
    "velocidad": 0, "rapidez": 0, "km/h": 0, "maxima": 0, "limite": 0,
    "ciudad": 1, "urbana": 1, "urbano": 1, "zona": 1, "calle": 1,
    "estacionar": 2, "estacionamiento": 2, "garaje": 2, "garajes": 2,
    "alcohol": 3, "alcoholemia": 3, "g/l": 3,
    "licencia": 4, "carnet": 4, "registro": 4,
}

_ACCENTS = str.maketrans("áéíóúü", "aeiouu")


class FakeEmbedder:
    """Deterministic bag-of-concepts embedder with call accounting."""

    def __init__(self, dim: int = TEST_DIM, fail: bool = False) -> None:
        self.dim = dim
        self.fail = fail
        self.calls: List[str] = []

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in re.findall(r"\w+(?:/\w+)*", text.lower().translate(_ACCENTS)):
            if token in CONCEPTS:
                vec[CONCEPTS[token]] += 1.0
            elif len(token) > 3:
                bucket = int(hashlib.sha256(token.encode()).hexdigest(), 16)
                vec[5 + bucket % (self.dim - 5)] += 0.3
        return vec

    async def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding provider down")
        return self.vector(text)

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed_text(t) for t in texts]

    async def close(self) -> None:
        pass


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test starts from a freshly loaded settings singleton."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def config() -> KnowledgeConfig:
    return KnowledgeConfig(
        _env_file=None,
        openai_api_key="sk-test",
        embedding_dim=TEST_DIM,
        ingest_batch_delay=0.0,
        query_cache_sweep_interval=3600,
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
