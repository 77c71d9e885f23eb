from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import get_settings
from app.core.logging import configure_logging, request_id_middleware
from app.db.base import get_database_url
from app.db.init import create_tables
from app.ledger.router import router as ledger_router

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.ENV, settings.DEBUG)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup
    logger.info("=" * 70)
    logger.info("Starting expense ledger...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Database: {get_database_url().split('/')[-1]}")
    logger.info(f"Reference currency: {settings.REFERENCE_CURRENCY}")
    logger.info("=" * 70)

    if settings.AUTO_CREATE_TABLES and settings.ENV != "production":
        await create_tables()
        logger.info("✓ Tables ready")

    if not (settings.RATE_API_URL and settings.RATE_API_KEY):
        logger.warning("⚠ Live rate provider not configured, using static rates")

    yield

    # Shutdown
    logger.info("✓ Expense ledger shutdown complete")


app = FastAPI(title="Expense Ledger", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(ledger_router)


@app.get("/")
def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
    return {"status": "healthy", "env": settings.ENV}
