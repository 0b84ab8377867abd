"""FastAPI application factory for the storefront backend.

Startup (skipped when TESTING=1):
1. Create tables if missing
2. Start the weekly retention scheduler (when an archive bucket is set)

Run with: ``uvicorn storefront.app:app``
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from storefront.analytics.routes import router as analytics_router
from storefront.config import settings
from storefront.db import Database
from storefront.deps import get_database
from storefront.ecommerce.routes import router as ecommerce_router
from storefront.errors import install_error_handlers
from storefront.middleware import install_middleware
from storefront.retention.jobs import build_retention_job, start_scheduler
from storefront.webhooks.handlers import router as webhook_router

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Single stream handler on the root logger."""
    root = logging.getLogger()
    if not any(getattr(h, "_storefront", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._storefront = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if os.environ.get("TESTING") == "1":
        yield
        return

    db = get_database()
    db.init_schema()

    scheduler = None
    if settings.scheduler_enabled and settings.archive_bucket:
        scheduler = start_scheduler(build_retention_job(db, settings))
    elif settings.scheduler_enabled:
        logger.warning("Retention scheduler disabled: STOREFRONT_ARCHIVE_BUCKET not set")

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


def create_app() -> FastAPI:
    configure_logging(settings.log_level)

    app = FastAPI(title="Storefront Backend", lifespan=lifespan)
    install_error_handlers(app)

    app.include_router(webhook_router)
    app.include_router(ecommerce_router)
    app.include_router(analytics_router)

    @app.get("/api/health")
    def health(db: Database = Depends(get_database)) -> JSONResponse:
        database_ok = db.ping()
        return JSONResponse(
            {
                "status": "ok" if database_ok else "degraded",
                "database": database_ok,
                "environment": settings.environment,
            },
            status_code=200 if database_ok else 503,
        )

    install_middleware(app)
    logger.info("Storefront app created (environment=%s)", settings.environment)
    return app


app = create_app()
