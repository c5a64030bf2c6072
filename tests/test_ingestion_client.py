"""Tests for IngestionClient delivery retries and API helpers."""
from __future__ import annotations

from typing import Callable, List

import httpx
import pytest

from knowledge_rag.errors import DeliveryError, DuplicateError, TransientUpstreamError
from knowledge_rag.ingestion.client import IngestionClient

PAYLOAD = {
    "content": "Límite de velocidad en zona urbana: 40 km/h.",
    "source": "reglas_locales",
    "metadata": {"contentHash": "abc123"},
}
RECORD = {"id": "1", "content": PAYLOAD["content"], "source": "reglas_locales", "metadata": {}, "createdAt": "x"}


class SleepRecorder:
    """Collects backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _client(handler: Callable[[httpx.Request], httpx.Response], sleep: SleepRecorder) -> IngestionClient:
    return IngestionClient(
        base_url="http://knowledge.test",
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )


async def test_deliver_success_first_attempt() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json=RECORD)

    sleep = SleepRecorder()
    async with _client(handler, sleep) as client:
        record = await client.deliver(PAYLOAD)

    assert record == RECORD
    assert len(requests) == 1
    assert requests[0].url.path == "/knowledge/add-entry"
    assert sleep.delays == []


async def test_retryable_status_uses_all_six_attempts() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="upstream busy")

    sleep = SleepRecorder()
    async with _client(handler, sleep) as client:
        with pytest.raises(TransientUpstreamError) as exc_info:
            await client.deliver(PAYLOAD)

    assert calls == 6
    assert exc_info.value.status_code == 503
    assert exc_info.value.attempts == 6
    assert len(sleep.delays) == 5
    assert sleep.delays == sorted(sleep.delays)
    for n, delay in enumerate(sleep.delays, start=1):
        assert 0.35 * n <= delay <= 0.35 * n + 0.2 + 1e-9


async def test_bad_request_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, text="x" * 1000)

    sleep = SleepRecorder()
    async with _client(handler, sleep) as client:
        with pytest.raises(DeliveryError) as exc_info:
            await client.deliver(PAYLOAD)

    assert calls == 1
    assert sleep.delays == []
    assert exc_info.value.status_code == 400
    assert len(exc_info.value.response_body) == 300


async def test_conflict_becomes_duplicate() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(409, json={"statusCode": 409})

    async with _client(handler, SleepRecorder()) as client:
        with pytest.raises(DuplicateError) as exc_info:
            await client.deliver(PAYLOAD)

    assert calls == 1
    assert exc_info.value.content_hash == "abc123"


async def test_rate_limit_then_success() -> None:
    responses = [httpx.Response(429), httpx.Response(429), httpx.Response(201, json=RECORD)]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    sleep = SleepRecorder()
    async with _client(handler, sleep) as client:
        assert await client.deliver(PAYLOAD) == RECORD
    assert len(sleep.delays) == 2


async def test_transport_error_is_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler, SleepRecorder()) as client:
        with pytest.raises(TransientUpstreamError) as exc_info:
            await client.deliver(PAYLOAD)

    assert calls == 6
    assert exc_info.value.status_code is None


async def test_exists_sends_hash_and_parses_flag() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["hash"] = request.url.params["hash"]
        return httpx.Response(200, json={"exists": True})

    async with _client(handler, SleepRecorder()) as client:
        assert await client.exists("deadbeef") is True
    assert seen == {"path": "/knowledge/exists", "hash": "deadbeef"}


async def test_exists_raises_on_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with _client(handler, SleepRecorder()) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.exists("deadbeef")


async def test_clear_source_encodes_path() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.raw_path.decode()
        return httpx.Response(200, json={"deleted": 7})

    async with _client(handler, SleepRecorder()) as client:
        assert await client.clear_source("manual pba") == 7
    assert seen == {"method": "DELETE", "path": "/knowledge/source/manual%20pba"}
