"""
PeopleDesk Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks critical dependencies (database, storage root) and returns status.
Who:   Called by Docker health checks, load balancers, and monitoring systems.

Status levels:
    - healthy:   Database reachable and storage root writable (HTTP 200)
    - unhealthy: Either dependency down (HTTP 503, stop routing traffic)
"""

import asyncio
import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from peopledesk import __version__
from peopledesk.config import settings
from peopledesk.database import engine
from peopledesk.dependencies import get_asset_store
from peopledesk.schemas.profile_picture import HealthResponse, StorageStatsResponse
from peopledesk.services.asset_store import AssetStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "A dependency is down"}},
    summary="Service health check",
)
async def health_check(
    response: Response,
    store: AssetStore = Depends(get_asset_store),
) -> HealthResponse:
    """
    Probe the database with SELECT 1 and the storage root with a write
    check, and report profile-picture storage usage.
    """
    db_status = "connected"
    storage_status = "writable"
    stats = None
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Storage ─────────────────────────────────────────────────────
    if await asyncio.to_thread(store.is_writable):
        try:
            stats = StorageStatsResponse(
                **await asyncio.to_thread(store.storage_stats, settings.profile_picture_category)
            )
        except OSError as e:
            logger.warning("Health check: could not collect storage stats: %s", e)
    else:
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: storage root not writable: %s", store.storage_root)

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        storage_stats=stats,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
