from __future__ import annotations

"""FastAPI application entrypoint for the agency chatbot RAG service."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.app.dependencies import (
    get_document_store,
    get_ingestor,
    get_pipeline,
    get_query_cache,
    get_rate_limiter,
)
from src.app.metrics import metrics_middleware, metrics_response
from src.app.ratelimit import client_identifier
from src.app.schemas import (
    CacheInvalidateResponse,
    CacheStatsResponse,
    ChatRequest,
    ChatResponse,
    DocumentCreate,
    DocumentListResponse,
    DocumentOut,
    DocumentRecord,
    DocumentUpdate,
    ErrorResponse,
    StoreHealthResponse,
    StoreStatsResponse,
)
from src.app.security import AuthContext, require_api_key
from src.app.settings import settings
from src.rag.catalog import seed_documents
from src.rag.embeddings import EmbeddingError
from src.rag.guardrails import SERVICE_ERROR_MESSAGE
from src.rag.pipeline import OUTCOME_ERROR, InvalidQueryError
from src.rag.types import Document
from src.vectorstore.base import (
    DocumentNotFoundError,
    DocumentStoreError,
    DocumentValidationError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Has enviado demasiadas solicitudes. Espera un momento e inténtalo de nuevo."


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


async def seed_knowledge_base() -> int:
    """Load the starter catalogue when the store is empty."""
    store = get_document_store()
    current = await store.stats()
    if current.get("document_count", 0) > 0:
        logger.info("knowledge_base_seed_skipped", extra={"documents": current["document_count"]})
        return 0
    stored = await get_ingestor().ingest_many(seed_documents())
    logger.info("knowledge_base_seeded", extra={"documents": len(stored)})
    return len(stored)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_knowledge_base:
        await seed_knowledge_base()
    yield


app = FastAPI(title="Agency Chatbot RAG", version="0.1.0", lifespan=lifespan)


def _error_response(
    status_code: int, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def _to_record(document: Document) -> DocumentRecord:
    return DocumentRecord(
        id=document.doc_id,
        content=document.content,
        source=document.source,
        metadata=document.metadata,
        is_public=document.is_public,
        has_embedding=document.embedding is not None,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        f"{location}: {message}" if location else message,
    )


@app.exception_handler(DocumentValidationError)
async def handle_document_validation(request: Request, exc: DocumentValidationError) -> JSONResponse:
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))


@app.exception_handler(DocumentNotFoundError)
async def handle_document_missing(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, f"Document not found: {exc}")


@app.exception_handler(DocumentStoreError)
async def handle_store_error(request: Request, exc: DocumentStoreError) -> JSONResponse:
    logger.error(
        "document_store_failed",
        extra={"request_id": getattr(request.state, "request_id", None), "detail": type(exc).__name__},
    )
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, SERVICE_ERROR_MESSAGE)


@app.exception_handler(EmbeddingError)
async def handle_embedding_error(request: Request, exc: EmbeddingError) -> JSONResponse:
    logger.error(
        "document_embedding_failed",
        extra={"request_id": getattr(request.state, "request_id", None), "detail": type(exc).__name__},
    )
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, SERVICE_ERROR_MESSAGE)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_error",
        extra={"request_id": getattr(request.state, "request_id", None), "detail": type(exc).__name__},
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, SERVICE_ERROR_MESSAGE)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/health/store", response_model=StoreHealthResponse)
async def store_health() -> StoreHealthResponse:
    """Report whether the document store is reachable."""
    return StoreHealthResponse(**await get_document_store().health())


@app.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def chat(request: ChatRequest, http_request: Request, response: Response):
    """Answer one user query from the knowledge base."""
    limiter = get_rate_limiter()
    identifier = client_identifier(http_request)
    if not limiter.allow(identifier):
        return _error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            RATE_LIMIT_MESSAGE,
            headers={
                "Retry-After": str(limiter.retry_after(identifier)),
                "X-RateLimit-Remaining": "0",
            },
        )
    quota = {"X-RateLimit-Remaining": str(limiter.remaining(identifier))}
    response.headers.update(quota)
    request_id = getattr(http_request.state, "request_id", None) or str(uuid.uuid4())
    history = [message.model_dump() for message in request.conversationHistory]
    try:
        result = await get_pipeline().run(
            request.userQuery or "", history=history, request_id=request_id
        )
    except InvalidQueryError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), headers=quota)
    if result.outcome == OUTCOME_ERROR:
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, result.response, headers=quota
        )
    return ChatResponse(
        response=result.response,
        documents=[
            DocumentOut(
                source=item.document.source,
                content=item.document.content,
                relevance_score=item.relevance_score,
            )
            for item in result.documents
        ],
        metadata=result.metadata(),
    )


@app.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_api_key),
) -> DocumentListResponse:
    """List knowledge-base documents, newest first."""
    documents = await get_document_store().list_documents(limit=limit, offset=offset)
    return DocumentListResponse(
        documents=[_to_record(document) for document in documents],
        limit=limit,
        offset=offset,
    )


@app.post("/documents", response_model=DocumentRecord, status_code=status.HTTP_201_CREATED)
async def create_document(
    payload: DocumentCreate,
    auth: AuthContext = Depends(require_api_key),
) -> DocumentRecord:
    """Embed and store a new document."""
    document = await get_ingestor().create(
        content=payload.content,
        source=payload.source,
        metadata=payload.metadata,
        is_public=payload.is_public,
        embedding=payload.embedding,
        doc_id=payload.id,
    )
    return _to_record(document)


@app.get("/documents/stats", response_model=StoreStatsResponse)
async def document_stats(auth: AuthContext = Depends(require_api_key)) -> StoreStatsResponse:
    """Return document counts for admins."""
    return StoreStatsResponse(**await get_document_store().stats())


@app.get("/documents/{doc_id}", response_model=DocumentRecord)
async def get_document(doc_id: str, auth: AuthContext = Depends(require_api_key)) -> DocumentRecord:
    return _to_record(await get_document_store().get(doc_id))


@app.put("/documents/{doc_id}", response_model=DocumentRecord)
async def update_document(
    doc_id: str,
    payload: DocumentUpdate,
    auth: AuthContext = Depends(require_api_key),
) -> DocumentRecord:
    """Update document fields, re-embedding changed content."""
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if not changes:
        raise DocumentValidationError("No fields to update")
    return _to_record(await get_ingestor().update(doc_id, changes))


@app.delete("/documents/{doc_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(doc_id: str, auth: AuthContext = Depends(require_api_key)) -> None:
    await get_document_store().delete(doc_id)
    logger.info("document_deleted", extra={"doc_id": doc_id})


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(auth: AuthContext = Depends(require_api_key)) -> CacheStatsResponse:
    """Return query embedding cache statistics."""
    return CacheStatsResponse(**get_query_cache().stats().__dict__)


@app.delete("/cache", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    pattern: str | None = Query(default=None, min_length=1),
    auth: AuthContext = Depends(require_api_key),
) -> CacheInvalidateResponse:
    """Invalidate matching query cache entries, or all of them without a pattern."""
    cache = get_query_cache()
    if pattern is None:
        removed = len(cache)
        cache.clear()
        logger.info("embedding_cache_cleared", extra={"removed": removed})
        return CacheInvalidateResponse(removed=removed, cleared=True)
    removed = cache.invalidate(pattern)
    logger.info("embedding_cache_invalidated", extra={"pattern": pattern, "removed": removed})
    return CacheInvalidateResponse(removed=removed)
