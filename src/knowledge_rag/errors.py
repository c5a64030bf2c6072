"""
Knowledge-RAG Error Taxonomy

Groups ingestion and retrieval failures so callers can react to categories:
- ValidationError / DuplicateError: skipped items, never fatal
- UpstreamError family: provider, network and store failures (retryable or terminal)
- ConfigurationError: fatal for the affected write, logged loudly
- StoreUnavailableError: query-path failure that triggers degradation
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

RESPONSE_BODY_PREVIEW_CHARS = 300

# Statuses worth retrying (timeouts, rate limiting, gateway failures)
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class KnowledgeBaseError(Exception):
    """Base exception for the knowledge base."""


class ValidationError(KnowledgeBaseError):
    """Raised when a chunk or payload fails validation."""


class DuplicateError(KnowledgeBaseError):
    """Raised when content with the same hash already exists."""

    def __init__(self, content_hash: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Content already stored (hash={content_hash[:12]})")
        self.content_hash = content_hash


class UpstreamError(KnowledgeBaseError):
    """A provider, network or store call failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        public_error: str = "UPSTREAM_ERROR",
        response_body: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.public_error = public_error
        self.response_body = response_body
        self.attempts = attempts


class TransientUpstreamError(UpstreamError):
    """Retryable failure, surfaced only after retries are exhausted."""


class DeliveryError(UpstreamError):
    """Non-retryable failure while delivering content to the store."""


class ConfigurationError(KnowledgeBaseError):
    """Raised for invalid configuration (missing credentials, wrong dimension)."""


class DimensionMismatchError(ConfigurationError):
    """Embedding size does not match the configured index dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}. "
            "The embedding model changed without re-creating the index."
        )
        self.expected = expected
        self.actual = actual


class StoreUnavailableError(KnowledgeBaseError):
    """The vector store could not serve a query."""


@dataclass
class UpstreamErrorInfo:
    """Normalized view of an upstream failure for logging and API responses."""
    status: int
    message: str
    public_error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statusCode": self.status,
            "message": self.message,
            "error": self.public_error,
        }


def truncate_body(body: Optional[str], limit: int = RESPONSE_BODY_PREVIEW_CHARS) -> Optional[str]:
    """Keep response bodies short enough for diagnostics."""
    if body is None:
        return None
    return body[:limit]


def _nested_error(exc: BaseException) -> Dict[str, Any]:
    """Extract ``{"error": {...}}`` payloads returned by OpenAI-style APIs."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            payload = exc.response.json()
        except (json.JSONDecodeError, ValueError):
            return {}
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            return payload["error"]
        return {}
    body = getattr(exc, "body", None)
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def normalize_upstream_error(exc: BaseException) -> UpstreamErrorInfo:
    """
    Map an arbitrary upstream exception to a status, message and public code.

    Status resolution order: HTTP response status, ``status_code``/``status``
    attribute, message heuristics for rate limiting and quota exhaustion.
    """
    info = UpstreamErrorInfo(status=500, message=str(exc) or "Upstream error", public_error="INTERNAL_ERROR")

    if isinstance(exc, UpstreamError):
        if exc.status_code and exc.status_code >= 400:
            info.status = exc.status_code
        info.public_error = exc.public_error
    elif isinstance(exc, httpx.HTTPStatusError):
        info.status = exc.response.status_code
    else:
        status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
        if isinstance(status, int) and status >= 400:
            info.status = status

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        info.public_error = code

    nested = _nested_error(exc)
    if isinstance(nested.get("message"), str) and nested["message"]:
        info.message = nested["message"]
    nested_code = nested.get("code") or nested.get("type")
    if isinstance(nested_code, str) and nested_code:
        info.public_error = nested_code

    # Rate limiting and quota often arrive without a usable status
    msg = info.message.lower()
    if info.status == 500:
        if "rate limit" in msg or "429" in msg:
            info.status = 429
            info.public_error = "RATE_LIMITED"
        if "quota" in msg or "insufficient_quota" in msg:
            info.status = 402
            info.public_error = "QUOTA_EXCEEDED"

    return info


def is_retryable_error(exc: BaseException) -> bool:
    """
    Decide whether a failed HTTP call should be retried.

    Transport failures (no status) and RETRYABLE_STATUSES or any 5xx are
    retryable; every other status is terminal.
    """
    if isinstance(exc, TransientUpstreamError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status in RETRYABLE_STATUSES or status >= 500
    return isinstance(exc, httpx.TransportError)
