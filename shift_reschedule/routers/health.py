import time
from collections.abc import Awaitable

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.db import get_db_session, redis_client
from shift_reschedule.schemas import HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


async def _probe(check: Awaitable) -> HealthStatus:
    start = time.perf_counter()
    try:
        await check
    except Exception as exc:  # noqa: BLE001
        return HealthStatus(
            status="fail",
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            last_error=str(exc),
        )
    return HealthStatus(status="ok", latency_ms=round((time.perf_counter() - start) * 1000, 2))


@router.get("", response_model=HealthStatus)
async def health() -> HealthStatus:
    return HealthStatus(status="ok")


@router.get("/db", response_model=HealthStatus)
async def health_db(session: AsyncSession = Depends(get_db_session)) -> HealthStatus:
    return await _probe(session.execute(text("SELECT 1")))


@router.get("/cache", response_model=HealthStatus)
async def health_cache() -> HealthStatus:
    """Redis backs the open-broadcast markers; a failure here means markers are stale."""
    return await _probe(redis_client.ping())
