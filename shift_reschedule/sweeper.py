import asyncio
import logging

from shift_reschedule.config import get_settings
from shift_reschedule.db import SessionLocal
from shift_reschedule.services.reschedule_service import RescheduleService

logger = logging.getLogger(__name__)


async def sweep_once(service: RescheduleService | None = None) -> int:
    service = service or RescheduleService()
    async with SessionLocal() as session:
        return await service.sweep_expired(session)


async def run_sweeper(interval_seconds: float | None = None) -> None:
    """Expire overdue requests forever; cancelled by the app lifespan on shutdown."""
    interval = interval_seconds if interval_seconds is not None else get_settings().reschedule_sweep_interval_seconds
    service = RescheduleService()
    logger.info("reschedule_sweeper_started", extra={"interval_seconds": interval})
    while True:
        try:
            await sweep_once(service)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            # A failed pass is retried on the next tick.
            logger.exception("reschedule_sweep_failed")
        await asyncio.sleep(interval)
