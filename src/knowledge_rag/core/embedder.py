"""
Text Embedder for Knowledge-RAG

Calls an OpenAI-compatible /embeddings endpoint:
- Batch and single-text embedding
- Retries transient failures (timeouts, 429, 5xx) with tenacity
- Optional L2 normalization

The model is fixed at deployment time; its output size must equal the index
dimension (see DimensionGuard).
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import httpx
import numpy as np
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from knowledge_rag.config import KnowledgeConfig, get_settings
from knowledge_rag.errors import (
    ConfigurationError,
    TransientUpstreamError,
    UpstreamError,
    is_retryable_error,
    normalize_upstream_error,
    truncate_body,
)

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Async client for an OpenAI-compatible embeddings API."""

    def __init__(
        self,
        config: Optional[KnowledgeConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or get_settings()
        self.api_base = self.config.embed_api_base.rstrip("/")
        self.api_key = self.config.openai_api_key
        self.model = self.config.embed_model
        self.timeout = self.config.embed_timeout
        self.max_attempts = max_attempts
        self._sleep = sleep

        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def embed_texts(self, texts: List[str], normalize: bool = True) -> List[List[float]]:
        """
        Embed a list of texts in one request.

        Args:
            texts: Texts to embed
            normalize: Whether to L2 normalize embeddings

        Returns:
            Embedding vectors in input order

        Raises:
            ConfigurationError: No API key configured
            TransientUpstreamError: Retryable failure persisted across attempts
            UpstreamError: Terminal provider failure
        """
        if not texts:
            return []
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable_error),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        logger.warning(
                            f"Embedding retry {attempts - 1}/"
                            f"{self.max_attempts - 1}"
                        )
                    embeddings = await self._request(texts)
        except httpx.HTTPStatusError as e:
            info = normalize_upstream_error(e)
            error_cls = TransientUpstreamError if is_retryable_error(e) else UpstreamError
            logger.error(f"Embedding API error {info.status}: {info.message}")
            raise error_cls(
                info.message,
                status_code=info.status,
                public_error=info.public_error,
                response_body=truncate_body(e.response.text),
                attempts=attempts,
            ) from e
        except httpx.TransportError as e:
            logger.error(f"Embedding API unreachable: {e}")
            raise TransientUpstreamError(
                f"Embedding API unreachable: {e}",
                status_code=503,
                public_error="EMBEDDING_UNAVAILABLE",
                attempts=attempts,
            ) from e

        if normalize:
            embeddings = [self._normalize(e) for e in embeddings]
        return embeddings

    async def embed_text(self, text: str, normalize: bool = True) -> List[float]:
        """Embed a single text string."""
        embeddings = await self.embed_texts([text], normalize=normalize)
        return embeddings[0]

    async def _request(self, texts: List[str]) -> List[List[float]]:
        client = await self._get_client()
        response = await client.post(
            f"{self.api_base}/embeddings",
            json={
                "model": self.model,
                "input": texts,
                "encoding_format": "float",
            },
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )
        response.raise_for_status()

        data = response.json()
        items = sorted(data["data"], key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in items]

    @staticmethod
    def _normalize(embedding: List[float]) -> List[float]:
        """L2 normalize an embedding vector."""
        arr = np.array(embedding)
        norm = np.linalg.norm(arr)
        if norm > 0:
            arr = arr / norm
        return arr.tolist()
