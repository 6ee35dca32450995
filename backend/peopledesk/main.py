"""
PeopleDesk Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes app configuration, middleware registration, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn peopledesk.main:app).

Application Architecture:
    ┌───────────────────────────────────────────────────────────────┐
    │                          FastAPI App                          │
    │                                                               │
    │  Middleware Chain:                                            │
    │  ┌──────────┐ ┌─────────────────┐                             │
    │  │ Req ID   │→│  Logging        │                             │
    │  └──────────┘ └─────────────────┘                             │
    │                                                               │
    │  Routes:                                                      │
    │  ┌───────────────────────────┐ ┌──────────────┐ ┌───────────┐ │
    │  │ /api/users/{id}/profile-  │ │ /api/files/* │ │ /health   │ │
    │  │ picture (POST/GET/DELETE) │ └──────────────┘ └───────────┘ │
    │  └───────────────────────────┘ ┌──────────────────────────┐   │
    │                                │ /api/maintenance/*       │   │
    │                                └──────────────────────────┘   │
    │                                                               │
    │  Exception Handlers:                                          │
    │  ┌─────────────────────────────────────────────────────────┐  │
    │  │ InvalidInput→400 │ NotFound→404 │ Stale→409 │           │  │
    │  │ ProcessingFailed→422 │ Storage/Link/DB→500              │  │
    │  └─────────────────────────────────────────────────────────┘  │
    └───────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Create the storage root
    3. Log startup complete

    Shutdown:
    1. Dispose database engine (close all connections)
    2. Log shutdown complete
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from peopledesk import __version__
from peopledesk.config import settings
from peopledesk.database import dispose_engine
from peopledesk.exceptions import (
    DatabaseError,
    InvalidInputError,
    LinkFailedError,
    NotFoundError,
    PeopleDeskError,
    ProcessingFailedError,
    StaleReferenceError,
    StorageUnavailableError,
)
from peopledesk.middleware.logging import RequestLoggingMiddleware
from peopledesk.middleware.request_id import RequestIDMiddleware, request_id_var
from peopledesk.routes import files, health, maintenance, profile_pictures

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    Called once during app startup and by the maintenance command.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("PeopleDesk Backend starting up...")

    storage = Path(settings.storage_root)
    try:
        storage.mkdir(parents=True, exist_ok=True)
        logger.info("Storage directory: %s", storage.resolve())
    except OSError as e:
        # Keep serving: health reports storage as unavailable, uploads fail with 500
        logger.error("Could not create storage directory %s: %s", storage, e)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("PeopleDesk Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    content = {
        "error": error,
        "message": message,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        InvalidInputError       → 400 Bad Request (error = the specific code)
        NotFoundError           → 404 Not Found
        StaleReferenceError     → 409 Conflict
        ProcessingFailedError   → 422 Unprocessable Entity
        StorageUnavailableError → 500 Internal Server Error
        LinkFailedError         → 500 Internal Server Error
        DatabaseError           → 500 Internal Server Error
        PeopleDeskError (base)  → 500 Internal Server Error
        Exception (fallback)    → 500 Internal Server Error

    Responses never include filesystem paths or driver errors; `context`
    is logged server-side only.
    """

    @app.exception_handler(InvalidInputError)
    async def handle_invalid_input(request: Request, exc: InvalidInputError):
        logger.warning("[%s] Invalid input (%s): %s", request_id_var.get(""), exc.code, exc.message)
        return _error_response(400, exc.code, exc.message, exc.details)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message, {"resource": exc.resource})

    @app.exception_handler(StaleReferenceError)
    async def handle_stale_reference(request: Request, exc: StaleReferenceError):
        logger.warning("[%s] Stale reference: %s", request_id_var.get(""), exc.context)
        return _error_response(409, "stale_reference", exc.message)

    @app.exception_handler(ProcessingFailedError)
    async def handle_processing_failed(request: Request, exc: ProcessingFailedError):
        logger.warning(
            "[%s] Image processing failed: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(422, "processing_failed", exc.message)

    @app.exception_handler(StorageUnavailableError)
    async def handle_storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error(
            "[%s] Storage unavailable: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "storage_unavailable", exc.message)

    @app.exception_handler(LinkFailedError)
    async def handle_link_failed(request: Request, exc: LinkFailedError):
        logger.error(
            "[%s] Link failed: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "link_failed", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(PeopleDeskError)
    async def handle_application_error(request: Request, exc: PeopleDeskError):
        logger.error(
            "[%s] Application error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns: Fully configured FastAPI instance ready to receive requests.
    """
    app = FastAPI(
        title="PeopleDesk API",
        description=(
            "HR backend: employee profile-picture ingestion. Uploads are validated, "
            "normalized to a square JPEG with a thumbnail, stored on local disk and "
            "linked to the employee record."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(profile_pictures.router)
    app.include_router(files.router)
    app.include_router(maintenance.router)
    app.include_router(health.router)

    return app


app = create_app()
