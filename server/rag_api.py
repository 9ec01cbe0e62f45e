"""LinkVault HTTP API.

Capture submission, semantic search and knowledge queries over a user's
archive. The caller identity comes from :func:`get_principal`, which trusts
gateway headers and is meant to be overridden by the deployment's auth layer.
"""

import datetime
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings
from indexer.retrieval import RetrievalMode, SearchScope
from observability.metrics import render_metrics, setup_prometheus_metrics
from services.capture import CAPTURE_SCOPE, SEARCH_SCOPE, Principal
from services.shared.errors import (
    DuplicateError, EmbeddingError, GenerationError, QueueHandoffError, RecordNotFoundError, ValidationError,
)
from services.shared.store import RecordFilters

from .container import AppContainer
from .security.rate_limiting import DeepModeQuota, build_limiter, setup_rate_limiting

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


class CaptureRequest(BaseModel):
    url: str = Field(..., min_length=1)
    notes: Optional[str] = None


class SemanticSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    deep: bool = False


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1)
    deep: bool = False
    generate_answer: bool = Field(default=True, alias="generateAnswer")


def get_principal(request: Request) -> Principal:
    """Resolve the caller from gateway headers ``X-User-Id`` and ``X-Scopes``."""
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    request.state.user_id = user_id

    raw_scopes = request.headers.get("X-Scopes")
    if raw_scopes is None:
        return Principal(user_id=user_id)
    scopes = frozenset(scope.strip() for scope in raw_scopes.split(",") if scope.strip())
    return Principal(user_id=user_id, scopes=scopes)


def require_scope(scope: str):
    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_scope(scope):
            raise HTTPException(status_code=403, detail=f"Missing scope: {scope}")
        return principal
    return dependency


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, "VALIDATION", "Invalid request body", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(400, "VALIDATION", str(exc))

    @app.exception_handler(DuplicateError)
    async def duplicate_error_handler(request: Request, exc: DuplicateError):
        return _error(409, "DUPLICATE", str(exc), existingId=exc.existing_id)

    @app.exception_handler(QueueHandoffError)
    async def queue_error_handler(request: Request, exc: QueueHandoffError):
        logger.error(f"Queue handoff failed for capture {exc.capture_id}")
        return _error(503, "QUEUE_UNAVAILABLE", str(exc), id=exc.capture_id)

    @app.exception_handler(EmbeddingError)
    async def embedding_error_handler(request: Request, exc: EmbeddingError):
        logger.error(f"Embedding provider error: {exc}")
        return _error(502, "PROVIDER_ERROR", str(exc))

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError):
        logger.error(f"Generation provider error: {exc}")
        return _error(502, "PROVIDER_ERROR", str(exc))

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        return _error(404, "NOT_FOUND", str(exc))


def create_app(container: Optional[AppContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around ``container`` (a fresh one from env settings when omitted)."""
    if container is None:
        container = AppContainer(settings or Settings.from_env())
    api_settings = container.settings.api

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("LinkVault API starting")
        yield
        await container.close()
        logger.info("LinkVault API stopped")

    app = FastAPI(title="LinkVault API", version=API_VERSION, lifespan=lifespan)
    app.state.container = container

    limiter = build_limiter(container.settings.queue.redis_url)
    setup_rate_limiting(app, limiter)
    deep_quota = DeepModeQuota(per_minute=api_settings.deep_queries_per_minute)
    setup_prometheus_metrics(app)
    register_exception_handlers(app)

    @app.get("/")
    async def root():
        return {"message": "LinkVault API", "version": API_VERSION, "docs": "/docs", "health": "/health"}

    @app.get("/health")
    async def health():
        queue_ok = await container.queue.ping()
        return {
            "ok": queue_ok,
            "queue": "healthy" if queue_ok else "unavailable",
            "time": datetime.datetime.utcnow().isoformat() + "Z",
        }

    @app.get("/metrics")
    async def metrics():
        content, content_type = render_metrics()
        return Response(content=content, media_type=content_type)

    @app.post("/capture")
    @limiter.limit(api_settings.capture_rate_limit)
    async def capture(request: Request, body: CaptureRequest,
                      principal: Principal = Depends(require_scope(CAPTURE_SCOPE))):
        """Accept a URL for capture; processing happens on the worker."""
        receipt = await container.orchestrator.submit(body.url, body.notes, principal)
        return receipt.to_dict()

    @app.get("/captures")
    async def list_captures(principal: Principal = Depends(require_scope(SEARCH_SCOPE)),
                            source_type: Optional[str] = Query(default=None, alias="sourceType"),
                            status: Optional[str] = None,
                            topic: Optional[str] = None,
                            cursor: Optional[str] = None,
                            limit: int = Query(default=20, ge=1, le=100)):
        filters = RecordFilters(source_type=source_type, status=status, topic=topic)
        records, next_cursor = container.store.list_page(principal.user_id, filters, cursor=cursor, limit=limit)
        return {"items": [record.to_dict() for record in records], "nextCursor": next_cursor}

    @app.get("/captures/{capture_id}")
    async def get_capture(capture_id: str, principal: Principal = Depends(require_scope(SEARCH_SCOPE))):
        record = container.store.get(capture_id)
        if record is None or record.user_id != principal.user_id:
            raise RecordNotFoundError(capture_id)
        return record.to_dict(include_body=True)

    @app.post("/search/semantic")
    @limiter.limit(api_settings.query_rate_limit)
    async def semantic_search(request: Request, body: SemanticSearchRequest,
                              principal: Principal = Depends(require_scope(SEARCH_SCOPE))):
        mode = RetrievalMode.DEEP if body.deep else RetrievalMode.STANDARD
        if mode == RetrievalMode.DEEP:
            deep_quota.check(f"user:{principal.user_id}")
        results = await container.retriever.search_text(
            body.query, SearchScope(user_id=principal.user_id), mode=mode,
            top_k=body.limit, threshold=body.threshold)
        return {
            "results": [{**item.record.to_dict(), "similarity": round(item.similarity, 4)} for item in results],
            "mode": mode.value,
        }

    @app.post("/query")
    @limiter.limit(api_settings.query_rate_limit)
    async def query(request: Request, body: QueryRequest,
                    principal: Principal = Depends(require_scope(SEARCH_SCOPE))):
        """Search the archive and optionally synthesize an answer."""
        mode = RetrievalMode.DEEP if body.deep else RetrievalMode.STANDARD
        if mode == RetrievalMode.DEEP:
            deep_quota.check(f"user:{principal.user_id}")
        return await container.query_service.query(body.query, principal.user_id, mode=mode,
                                                   generate=body.generate_answer)

    return app

