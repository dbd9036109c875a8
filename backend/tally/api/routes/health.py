"""Health check endpoints for monitoring."""

import asyncio
from typing import Any, Dict

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text

from tally.api.dependencies import get_extractor
from tally.core.config import settings
from tally.core.database import get_session_factory
from tally.services.extractors import ReceiptExtractor

router = APIRouter()


@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check(extractor: ReceiptExtractor = Depends(get_extractor)) -> Dict[str, Any]:
    """Basic health check, including reachability of the extraction provider."""
    provider_ok = await extractor.health_check()
    return {
        "status": "healthy" if provider_ok else "degraded",
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0",
        "provider": {"name": extractor.name, "description": extractor.describe(), "healthy": provider_ok},
    }


def _check_database() -> None:
    with get_session_factory()() as db:
        db.execute(text("SELECT 1"))


def _check_redis() -> None:
    client = redis.Redis.from_url(settings.REDIS_URL)
    try:
        client.ping()
    finally:
        client.close()


@router.get("/health/detailed")
async def detailed_health_check(extractor: ReceiptExtractor = Depends(get_extractor)) -> Dict[str, Any]:
    """Detailed health check with service status."""
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "services": {}
    }

    for name, check in (("database", _check_database), ("redis", _check_redis)):
        try:
            await asyncio.to_thread(check)
            health_status["services"][name] = "healthy"
        except Exception as e:
            health_status["services"][name] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

    if await extractor.health_check():
        health_status["services"]["provider"] = "healthy"
    else:
        health_status["services"]["provider"] = f"unhealthy: {extractor.name} unreachable"
        health_status["status"] = "degraded"

    return health_status
