"""Health check endpoint with storage and object-store checks.

Each check has a short timeout. A dependency reporting "disconnected" does
not change the overall status: the endpoint always returns 200 so load
balancers keep routing.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

from concierge.config import settings
from concierge.storage.sql import SqlStore
from concierge.utils import r2

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check
VERSION = "0.1.0"


async def _check_database(store: object) -> str:
    if not isinstance(store, SqlStore):
        return "memory"
    try:
        await asyncio.wait_for(store.ping(), timeout=_CHECK_TIMEOUT)
        return "connected"
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        logger.debug("health_database_failed", error=str(exc))
        return "disconnected"


async def _check_r2() -> str:
    """Check R2 bucket accessibility via head_bucket."""
    if not r2.r2_configured():
        return "not_configured"

    def _head_bucket() -> None:
        r2._get_client().head_bucket(Bucket=settings.r2_bucket_name)

    try:
        await asyncio.wait_for(asyncio.to_thread(_head_bucket), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_r2_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Confirms the API process is alive and reports provider configuration."""
    compiler = request.app.state.compiler
    database, object_store = await asyncio.gather(
        _check_database(compiler.store),
        _check_r2(),
    )
    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "database": database,
        "r2": object_store,
        "providers": {
            "default": "mock" if settings.use_mock_providers else "live",
            "gemini": "configured" if settings.google_ai_api_key else "not_configured",
            "anthropic": "configured" if settings.anthropic_api_key else "not_configured",
        },
    }
