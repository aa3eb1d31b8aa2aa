"""
Periodic housekeeping started by the application lifespan.

Each pass:
  - clears temporary-password expiry markers that have already passed
  - purges audit events older than AUDIT.retention_days
  - drops idle rate-limit entries
"""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import async_sessionmaker

from mowesport.services.container import Services

logger = logging.getLogger(__name__)


async def run_maintenance_once(session_factory: async_sessionmaker, services: Services) -> tuple[int, int]:
    """Returns (markers_cleared, audit_events_purged)."""
    async with session_factory() as db:
        cleared = await services.passwords.sweep_expired(db)
        purged = await services.audit.purge_expired(db)
        await db.commit()

    dropped = services.admission.limiter.sweep()
    if dropped:
        logger.debug(f"Dropped {dropped} idle rate-limit entries")
    return cleared, purged


async def maintenance_loop(session_factory: async_sessionmaker, services: Services, interval: timedelta) -> None:
    while True:
        try:
            await run_maintenance_once(session_factory, services)
        except Exception:
            # Keep the loop alive; the next pass retries
            logger.exception("Maintenance pass failed")
        await asyncio.sleep(interval.total_seconds())
