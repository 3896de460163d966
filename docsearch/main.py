"""
FastAPI Application — Entry Point

PDF content search API

Architecture:
  - All routes are versioned under /api/v1/
  - Bearer JWT verified per request; owner_id scopes every query
  - Upload only records + enqueues; extraction and indexing run in workers
  - Structured ErrorResponse envelope on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. GZip — compress responses > 1 KB
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from docsearch.api.v1.documents import router as documents_router
from docsearch.api.v1.search import router as search_router
from docsearch.core.config import settings
from docsearch.core.errors import DocSearchError, IndexingError
from docsearch.db.session import check_db_health, dispose_engine
from docsearch.schemas.documents import ErrorDetail, ErrorResponse
from docsearch.search.indexer import build_indexer, create_es_client
from docsearch.search.service import SearchService
from docsearch.services.documents import DocumentRepository

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: check the database, create the Elasticsearch client and make
    sure the index exists. Shutdown: close the client and the DB pool.
    """
    logger.info(
        "Starting docsearch | env=%s index=%s",
        settings.app_env, settings.elasticsearch_index,
    )

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    client = create_es_client(settings)
    indexer = build_indexer(client, settings)
    try:
        await indexer.ensure_index()
    except IndexingError as exc:
        # /ready reports it; search requests fail with 503 until it recovers
        logger.error("Index setup failed at startup: %s", exc)

    app.state.es_client = client
    app.state.indexer = indexer
    app.state.search_service = SearchService(
        client,
        index_name=settings.elasticsearch_index,
        lookup=DocumentRepository(),
    )

    yield

    logger.info("Shutting down docsearch")
    await client.close()
    await dispose_engine()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


def _error_response(
    request:     Request,
    status_code: int,
    error_code:  str,
    message:     str,
    details:     list[ErrorDetail] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="PDF Content Search",
        description=(
            "Upload PDFs, extract paragraphs, tables and image captions, "
            "and search them with full-text queries and structured filters."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code,
            duration_ms, request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(DocSearchError)
    async def domain_exception_handler(request: Request, exc: DocSearchError):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, "%s | path=%s message=%s", exc.code, request.url.path, exc.message)
        details = [
            ErrorDetail(
                field=item.get("field"),
                message=str(item.get("message", "")),
                code=item.get("code") or exc.code,
            )
            for item in exc.details
        ]
        return _error_response(request, exc.status_code, exc.code, exc.message, details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed.",
            details,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        codes = {
            status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
            status.HTTP_403_FORBIDDEN:    "FORBIDDEN",
            status.HTTP_404_NOT_FOUND:    "NOT_FOUND",
        }
        return _error_response(
            request,
            exc.status_code,
            codes.get(exc.status_code, "HTTP_ERROR"),
            str(exc.detail),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all — never expose stack traces."""
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, _request_id(request),
        )
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred.",
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(search_router,    prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth)
    # ----------------------------------------------------------------

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {"status": "ok", "service": "docsearch-api"}

    @app.get("/ready", tags=["Operations"], summary="Readiness probe")
    async def readiness(request: Request) -> JSONResponse:
        db_status = await check_db_health()
        indexer = getattr(request.app.state, "indexer", None)
        es_status: dict = {"status": "error"}
        if indexer is not None and await indexer.ping():
            try:
                es_status = {"status": "ok", **await indexer.index_stats()}
            except IndexingError as exc:
                es_status = {"status": "error", "error": str(exc)}
        ready = db_status["status"] == "ok" and es_status["status"] == "ok"
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status":        "ready" if ready else "not_ready",
                "database":      db_status,
                "elasticsearch": es_status,
            },
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docsearch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
