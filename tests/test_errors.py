"""Tests for upstream error normalization and retry classification."""
import httpx
import pytest

from knowledge_rag.errors import (
    DimensionMismatchError,
    DuplicateError,
    TransientUpstreamError,
    UpstreamError,
    is_retryable_error,
    normalize_upstream_error,
    truncate_body,
)


def _status_error(status, **kwargs):
    request = httpx.Request("POST", "http://api.test/embeddings")
    response = httpx.Response(status, request=request, **kwargs)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestNormalizeUpstreamError:
    def test_http_status_and_nested_error(self):
        exc = _status_error(401, json={"error": {"message": "Incorrect API key", "code": "invalid_api_key"}})
        info = normalize_upstream_error(exc)
        assert info.status == 401
        assert info.message == "Incorrect API key"
        assert info.public_error == "invalid_api_key"

    def test_status_attribute(self):
        class ProviderError(Exception):
            status_code = 503

        assert normalize_upstream_error(ProviderError("down")).status == 503

    def test_rate_limit_heuristic(self):
        info = normalize_upstream_error(RuntimeError("Rate limit exceeded, retry later"))
        assert info.status == 429
        assert info.public_error == "RATE_LIMITED"

    def test_quota_heuristic(self):
        info = normalize_upstream_error(RuntimeError("You exceeded your current quota"))
        assert info.status == 402
        assert info.public_error == "QUOTA_EXCEEDED"

    def test_unknown_defaults_to_500(self):
        info = normalize_upstream_error(RuntimeError("boom"))
        assert info.to_dict() == {"statusCode": 500, "message": "boom", "error": "INTERNAL_ERROR"}

    def test_upstream_error_keeps_public_code(self):
        exc = UpstreamError("bad", status_code=404, public_error="MODEL_NOT_FOUND")
        info = normalize_upstream_error(exc)
        assert (info.status, info.public_error) == (404, "MODEL_NOT_FOUND")


class TestIsRetryable:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 599])
    def test_retryable_statuses(self, status):
        assert is_retryable_error(_status_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_terminal_statuses(self, status):
        assert not is_retryable_error(_status_error(status))

    def test_transport_errors(self):
        request = httpx.Request("GET", "http://api.test")
        assert is_retryable_error(httpx.ConnectError("refused", request=request))
        assert is_retryable_error(httpx.ReadTimeout("slow", request=request))

    def test_other_exceptions(self):
        assert is_retryable_error(TransientUpstreamError("x"))
        assert not is_retryable_error(DuplicateError("h"))
        assert not is_retryable_error(ValueError("x"))


def test_truncate_body():
    assert truncate_body(None) is None
    assert truncate_body("x" * 500) == "x" * 300
    assert truncate_body("short") == "short"


def test_dimension_mismatch_message():
    error = DimensionMismatchError(1536, 3072)
    assert "expected 1536, got 3072" in str(error)
