"""
Ingestion client for the knowledge API.

- Delivers chunks with retry on transient failures (tenacity, linear
  backoff plus jitter)
- Short-timeout existence check used by deduplication
- Bulk delete by source and search passthrough for the CLI
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
    wait_random,
)

from knowledge_rag.config import KnowledgeConfig, get_settings
from knowledge_rag.errors import (
    DeliveryError,
    DuplicateError,
    TransientUpstreamError,
    is_retryable_error,
    normalize_upstream_error,
    truncate_body,
)
from knowledge_rag.types import CONTENT_HASH_KEY

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class IngestionClient:
    """
    HTTP client used by ingestion runs.

    Usage:
        async with IngestionClient("http://localhost:3000") as client:
            record = await client.deliver({"content": ..., "source": ..., "metadata": ...})
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30.0,
        exists_timeout: float = 5.0,
        max_attempts: int = 6,
        base_delay: float = 0.35,
        max_jitter: float = 0.2,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Knowledge API base URL
            timeout: Timeout for content submission
            exists_timeout: Timeout for the existence check
            max_attempts: Delivery attempts per chunk
            base_delay: Linear backoff step; attempt n waits base_delay * n
            max_jitter: Upper bound of the random jitter added to each wait
            sleep: Awaitable sleep used between attempts (injectable for tests)
            transport: Optional httpx transport (mock or ASGI in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.exists_timeout = exists_timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self._sleep = sleep
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: Optional[KnowledgeConfig] = None, **kwargs: Any) -> "IngestionClient":
        config = config or get_settings()
        params: Dict[str, Any] = dict(
            base_url=config.ingest_api_url,
            timeout=config.ingest_timeout,
            exists_timeout=config.exists_timeout,
            max_attempts=config.ingest_max_attempts,
            base_delay=config.ingest_base_delay,
            max_jitter=config.ingest_max_jitter,
        )
        params.update(kwargs)
        return cls(**params)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "IngestionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay)
            + wait_random(0, self.max_jitter),
            sleep=self._sleep,
            reraise=True,
        )

    async def deliver(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit one chunk, retrying transient failures.

        Args:
            payload: {"content", "source", "metadata"} with metadata.contentHash

        Returns:
            The persisted record as returned by the API

        Raises:
            DuplicateError: The store already holds this content (409)
            TransientUpstreamError: Retryable failure persisted for all attempts
            DeliveryError: Non-retryable failure (first attempt)
        """
        client = await self._get_client()
        content_hash = payload.get("metadata", {}).get(CONTENT_HASH_KEY, "")
        attempts = 0

        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        logger.warning(
                            f"Delivery retry {attempts - 1}/{self.max_attempts - 1} "
                            f"(hash={content_hash[:12]})"
                        )
                    response = await client.post("/knowledge/add-entry", json=payload)
                    if response.status_code == 409:
                        raise DuplicateError(content_hash)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            info = normalize_upstream_error(e)
            error_cls = TransientUpstreamError if is_retryable_error(e) else DeliveryError
            raise error_cls(
                info.message,
                status_code=e.response.status_code,
                public_error=info.public_error,
                response_body=truncate_body(e.response.text),
                attempts=attempts,
            ) from e
        except httpx.TransportError as e:
            raise TransientUpstreamError(
                f"{type(e).__name__}: {e}",
                status_code=None,
                public_error="TRANSPORT_ERROR",
                attempts=attempts,
            ) from e

        # Unreachable: the retry loop either returns or raises
        raise TransientUpstreamError("Delivery gave up without a response", attempts=attempts)

    async def exists(self, content_hash: str) -> bool:
        """
        Ask the store whether a content hash is already present.

        Raises on any failure; the Deduplicator decides the fail-open policy.
        """
        client = await self._get_client()
        response = await client.get(
            "/knowledge/exists",
            params={"hash": content_hash},
            timeout=self.exists_timeout,
        )
        response.raise_for_status()
        return bool(response.json().get("exists", False))

    async def clear_source(self, source: str) -> int:
        """Delete every chunk of a source."""
        client = await self._get_client()
        response = await client.delete(f"/knowledge/source/{quote(source, safe='')}")
        response.raise_for_status()
        return int(response.json().get("deleted", 0))

    async def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        client = await self._get_client()
        response = await client.get("/knowledge/search", params={"q": query, "limit": limit})
        response.raise_for_status()
        return response.json()
