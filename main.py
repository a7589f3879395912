"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application().
  2. lifespan context manager runs on startup / shutdown.
  3. Routers are registered; each carries its own URL prefix.
  4. Global exception handlers normalise validation and unexpected errors.

Storage is injected: create_application(storage_provider=...) uses the given
provider (the test suite passes a MemoryStorageProvider); otherwise one is
built from STORAGE_BACKEND at startup.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from propertypro.api.audit_route import attach_pending_audit
from propertypro.api.routes import audit_logs, auth, communications, users
from propertypro.core.config import settings
from propertypro.core.logging import configure_logging, get_logger
from propertypro.storage.base import StorageProvider
from propertypro.storage.provider import build_storage_provider

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup:
      - Configure structured logging
      - Build the storage provider unless one was injected

    Shutdown:
      - Close the provider (graceful connection pool drain)
    """
    configure_logging()
    if getattr(app.state, "storage_provider", None) is None:
        app.state.storage_provider = build_storage_provider()
    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
        storage=settings.STORAGE_BACKEND,
    )
    yield
    logger.info("Shutting down, closing storage")
    await app.state.storage_provider.close()


def _field_name(loc: tuple) -> str:
    # Drop the "body"/"query"/"path" source marker
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def create_application(storage_provider: Optional[StorageProvider] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Property management backend: role-scoped communication threads, "
            "account management and a request-level audit trail."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.storage_provider = storage_provider

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(communications.router)
    app.include_router(audit_logs.router)

    # ── Global Exception Handlers ─────────────────────────────────────────────

    # Handler errors inside audited routes arrive here with their entry parked
    # on request.state; the write runs after this response is sent.

    @app.exception_handler(StarletteHTTPException)
    async def audited_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> Response:
        return attach_pending_audit(request, await http_exception_handler(request, exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        response = JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Validation failed",
                "errors": [
                    {"field": _field_name(tuple(err.get("loc", ()))), "message": err.get("msg")}
                    for err in exc.errors()
                ],
            },
        )
        return attach_pending_audit(request, response)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
