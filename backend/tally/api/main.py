"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and sets
up logging and Sentry on startup. Run with:

    uvicorn tally.api.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from tally.api.error_handlers import generic_exception_handler, validation_exception_handler
from tally.api.routes.events import router as events_router
from tally.api.routes.health import router as health_router
from tally.api.routes.receipts import router as receipts_router
from tally.core.config import settings
from tally.core.observability import configure_logging, init_sentry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting up (provider=%s)", settings.extraction_provider)
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)

# Status streams are read by browser EventSource clients from other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "HEAD"],
    allow_headers=["*"],
)

# Register custom exception handlers
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
app.include_router(health_router)
app.include_router(events_router)
app.include_router(receipts_router)
