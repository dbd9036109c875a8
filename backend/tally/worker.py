"""Dramatiq worker configuration.

This module configures logging and Sentry, then imports the tasks so
they are registered when the worker starts.

Run with:
    dramatiq tally.worker --processes 1 --threads 5
"""

import logging

from tally.core.config import settings
from tally.core.observability import configure_logging, init_sentry

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

if init_sentry("worker"):
    logger.info("Sentry SDK initialized for worker")

# Import tasks to register them
from tally.core.tasks import broker, process_receipt  # noqa: E402,F401

logger.info(
    "Worker ready (provider=%s, concurrency=%d)", settings.extraction_provider, settings.WORKER_CONCURRENCY
)
