"""
tasks/booking_tasks.py
Celery tasks that drive the booking timers.

Each run builds its own engine, performs one scan through TimerService and
disposes the engine. Scans are idempotent: a booking that was already moved
is skipped by the status guard, so overlapping runs are harmless.
"""

import asyncio
import logging
from dataclasses import asdict

from config.container import build_container
from config.database import build_engine, build_session_factory, close_db
from config.settings import get_settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_scan(scan_name: str) -> dict:
    settings = get_settings()
    engine = build_engine(settings)
    try:
        container = build_container(build_session_factory(engine), settings)
        scan = getattr(container.timer, scan_name)
        result = await scan()
        return asdict(result)
    finally:
        await close_db(engine)


@celery_app.task(name="tasks.booking_tasks.auto_complete_due_bookings")
def auto_complete_due_bookings() -> dict:
    """Auto-release every booking whose confirmation deadline has passed."""
    result = asyncio.run(_run_scan("scan_once"))
    if result["found"]:
        logger.info(f"auto_complete_due_bookings: {result}")
    return result


@celery_app.task(name="tasks.booking_tasks.escalate_stalled_check_ins")
def escalate_stalled_check_ins() -> dict:
    """Move confirmed bookings with an incomplete check-in past the grace period into dispute."""
    result = asyncio.run(_run_scan("escalate_stalled_check_ins"))
    if result["found"]:
        logger.info(f"escalate_stalled_check_ins: {result}")
    return result
