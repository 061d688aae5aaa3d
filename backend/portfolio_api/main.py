"""
Portfolio API — FastAPI Application Factory
============================================

What:  Assembles settings, storage, database, services, routes and the
       middleware chain, and hosts them in a FastAPI application.
How:   FastAPI is the ASGI host only: a single catch-all route hands every
       request to the Application Driver, which runs the project's own
       middleware chain and router.
Who:   uvicorn (`uvicorn portfolio_api.main:app`), tests (`create_app(settings)`).

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │ FastAPI (ASGI host)          GZip                            │
    │   /{full_path:path} ──▶ Application.run                      │
    │                                                              │
    │   MiddlewareChain:                                           │
    │   ErrorHandler → RequestID → CORS → Security → RateLimit     │
    │                                                              │
    │   Router:                                                    │
    │   GET /  ·  GET /health  ·  /api/contact/...                 │
    │                                                              │
    │   Injected state: Settings · RateLimitStore · Database       │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config validation → storage dir → tables
    Shutdown: dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware

from portfolio_api import __version__
from portfolio_api.config import Settings
from portfolio_api.core.application import Application
from portfolio_api.core.middleware import MiddlewareChain
from portfolio_api.core.routing import HandlerRegistry, Router
from portfolio_api.database import Database
from portfolio_api.middleware import (
    CORSMiddleware,
    ErrorHandlerMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    request_id_var,
)
from portfolio_api.routes import contact, health
from portfolio_api.services.contact_service import ContactService
from portfolio_api.services.email_service import EmailService
from portfolio_api.services.rate_limiter import RateLimiter, RateLimitStore

logger = logging.getLogger(__name__)

PIPELINE_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"]


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

class RequestIDLogFilter(logging.Filter):
    """Stamps every record with the current request id ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("") or "-"
        return True


def setup_logging(settings: Settings) -> None:
    """
    Configure the root logger once per process.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    database: Database = app.state.database

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("%s %s starting up (%s)", settings.app_name, __version__, settings.app_env)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and error responses still work
        logger.error("Configuration error: %s", e)

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    await database.create_tables()
    logger.info("Database ready")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("%s shutting down...", settings.app_name)
    await database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Pipeline Assembly
# ══════════════════════════════════════════════════════════════════════════

def build_chain(
    settings: Settings,
    limiter: RateLimiter,
    error_handler: ErrorHandlerMiddleware,
) -> MiddlewareChain:
    """Default middleware order; see portfolio_api.middleware."""
    return (
        MiddlewareChain(translator=error_handler)
        .add(error_handler)
        .add(RequestIDMiddleware())
        .add(CORSMiddleware.from_settings(settings))
        .add(SecurityHeadersMiddleware())
        .add(RateLimitMiddleware(limiter))
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    email_service: Optional[EmailService] = None,
) -> FastAPI:
    """
    Create and configure the application.

    Every collaborator is built here and passed down explicitly; tests pass
    their own settings (and optionally database or e-mail service).
    """
    settings = settings or Settings()
    database = database or Database.from_settings(settings)
    email_service = email_service or EmailService(settings)

    store = RateLimitStore(settings.rate_limit_storage_path)
    limiter = RateLimiter.from_settings(settings, store)
    error_handler = ErrorHandlerMiddleware.from_settings(settings)

    router = Router(HandlerRegistry())
    health.register(router, health.HealthController(settings, database, router))
    contact.register(
        router,
        contact.ContactController(ContactService(database), email_service),
        settings,
    )

    application = Application(
        router=router,
        chain=build_chain(settings, limiter, error_handler),
        translator=error_handler,
    )

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.rate_limit_store = store
    app.state.router = router
    app.state.application = application

    # Compress larger JSON payloads (listing, stats)
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.api_route("/{full_path:path}", methods=PIPELINE_METHODS, include_in_schema=False)
    async def pipeline(request: Request, full_path: str):
        return await application.run(request)

    return app


# uvicorn expects `portfolio_api.main:app` to be importable
app = create_app()
