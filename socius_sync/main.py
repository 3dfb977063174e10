"""
Socius Sync — Reference Server Application Factory
====================================================

What:  FastAPI application implementing the collection REST API the sync
       engine consumes.
How:   create_app() wires middleware, exception handlers and routers.
Who:   uvicorn (uvicorn socius_sync.main:app); integration tests through
       httpx.ASGITransport.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Request ID → Access Log → GZip → CORS      │
    │                                                          │
    │  Routes:                                                 │
    │    /calories  /workouts/activities  /passwords           │
    │    /workouts/stats  /health                              │
    │                                                          │
    │  Exception Handlers:                                     │
    │    ValidationError→400  RecordNotFound→404               │
    │    Database→500                                          │
    └──────────────────────────────────────────────────────────┘

Schema:
    Tables are created by Alembic (`alembic upgrade head`), not at startup.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from socius_sync import __version__
from socius_sync.config import settings
from socius_sync.database import dispose_engine
from socius_sync.exceptions import (
    DatabaseError,
    RecordNotFoundError,
    SociusSyncError,
    ValidationError,
)
from socius_sync.middleware.logging import RequestLoggingMiddleware
from socius_sync.middleware.request_id import RequestIDMiddleware, request_id_var
from socius_sync.routes import health, records, stats

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure root logging for the server process.

    Library modules only create loggers; this is the one place handlers
    are installed.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Socius Sync reference server %s starting up...", __version__)
    logger.info("Database: %s", settings.database_url.split("@")[-1])
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Socius Sync reference server shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to JSON error bodies.

    Handler hierarchy:
        ValidationError         → 400
        RecordNotFoundError     → 404
        DatabaseError           → 500 (details logged, never returned)
        SociusSyncError         → 500
        Exception               → 500
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(RecordNotFoundError)
    async def handle_not_found(request: Request, exc: RecordNotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": exc.message,
                "details": {"collection": exc.collection},
                "request_id": rid,
            },
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(SociusSyncError)
    async def handle_app_error(request: Request, exc: SociusSyncError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Socius Sync API",
        description=(
            "Reference collection server for the Socius local-first sync engine: "
            "calorie entries, workout activities, password accounts and physical stats."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # Last added runs first: Request ID → Access Log → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    for router in records.routers:
        app.include_router(router)
    app.include_router(stats.router)
    app.include_router(health.router)

    return app


app = create_app()
