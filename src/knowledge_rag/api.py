"""
FastAPI application for the knowledge base.

Endpoints:
- POST   /knowledge/add-entry        persist one chunk (201)
- GET    /knowledge/exists?hash=     content-hash existence check
- GET    /knowledge/search?q=&limit= hybrid retrieval
- DELETE /knowledge/source/{source}  bulk delete by source
- GET    /health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from knowledge_rag.errors import (
    ConfigurationError,
    DuplicateError,
    StoreUnavailableError,
    TransientUpstreamError,
    UpstreamError,
    UpstreamErrorInfo,
    ValidationError,
    normalize_upstream_error,
)
from knowledge_rag.knowledge import KnowledgeService

logger = logging.getLogger(__name__)


class AddEntryRequest(BaseModel):
    content: str
    source: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _error_response(info: UpstreamErrorInfo) -> JSONResponse:
    return JSONResponse(info.to_dict(), status_code=info.status)


def _upstream_status(exc: UpstreamError, info: UpstreamErrorInfo) -> int:
    """Rate limiting and quota pass through; other provider failures become gateway errors."""
    if info.status in (402, 429):
        return info.status
    if isinstance(exc, TransientUpstreamError):
        return 503
    return 502


def create_app(service: Optional[KnowledgeService] = None) -> FastAPI:
    """
    Build the API.

    Args:
        service: Service to expose (defaults to KnowledgeService.from_config())
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or KnowledgeService.from_config()
        app.state.service = svc
        await svc.start()
        logger.info("Knowledge API started")
        try:
            yield
        finally:
            await svc.close()
            logger.info("Knowledge API stopped")

    app = FastAPI(title="Knowledge RAG", lifespan=lifespan)
    if service is not None:
        app.state.service = service

    def get_service(request: Request) -> KnowledgeService:
        return request.app.state.service

    # ══════════════════════════════════════════════════════════════════════════
    # Error mapping
    # ══════════════════════════════════════════════════════════════════════════

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(UpstreamErrorInfo(422, str(exc), "VALIDATION_ERROR"))

    @app.exception_handler(DuplicateError)
    async def duplicate_error(request: Request, exc: DuplicateError) -> JSONResponse:
        return _error_response(UpstreamErrorInfo(409, str(exc), "DUPLICATE_CONTENT"))

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error(f"Configuration error: {exc}")
        return _error_response(UpstreamErrorInfo(412, str(exc), "CONFIGURATION_ERROR"))

    @app.exception_handler(UpstreamError)
    async def upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
        info = normalize_upstream_error(exc)
        info.status = _upstream_status(exc, info)
        logger.error(f"Upstream error (status={info.status}): {info.message}")
        return _error_response(info)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error(f"Store unavailable: {exc}")
        return _error_response(UpstreamErrorInfo(503, str(exc), "STORE_UNAVAILABLE"))

    # ══════════════════════════════════════════════════════════════════════════
    # Routes
    # ══════════════════════════════════════════════════════════════════════════

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"}, status_code=200)

    @app.post("/knowledge/add-entry", status_code=201)
    async def add_entry(body: AddEntryRequest, request: Request) -> Dict[str, Any]:
        chunk = await get_service(request).add_entry(body.content, body.source, body.metadata)
        return chunk.to_public_dict()

    @app.get("/knowledge/exists")
    async def exists(request: Request, hash: str = Query(..., min_length=1)) -> Dict[str, bool]:
        return {"exists": await get_service(request).exists(hash)}

    @app.get("/knowledge/search")
    async def search(
        request: Request,
        q: str = Query(...),
        limit: int = Query(5, ge=1, le=50),
    ) -> List[Dict[str, Any]]:
        results = await get_service(request).search(q, limit=limit)
        return [r.to_public_dict() for r in results]

    @app.delete("/knowledge/source/{source}")
    async def clear_source(source: str, request: Request) -> Dict[str, int]:
        return {"deleted": await get_service(request).clear_source(source)}

    return app
