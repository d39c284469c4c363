"""
Expiry Sweep Scheduler

Runs the booking expiry sweep inside the API process every
SWEEP_INTERVAL_MINUTES, next to the external cron trigger and worker.py.

Uses APScheduler for interval scheduling.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import SessionLocal
from ..utils.timeutils import utcnow
from .expiry_sweep import BookingExpirySweeper

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_run_time: Optional[datetime] = None
_last_run_result: Optional[Dict] = None

JOB_ID = "booking_expiry_sweep"


def run_expiry_sweep() -> Dict:
    """
    Run one sweep with its own database session.

    Returns:
        Dict with keys: checked, expired, released, failed, expired_ids
    """
    global _last_run_time, _last_run_result

    db = SessionLocal()
    try:
        result = BookingExpirySweeper(db).run().to_dict()
    finally:
        db.close()

    _last_run_time = utcnow()
    _last_run_result = result
    return result


async def run_sweep_job():
    """
    Async job function called by the scheduler.

    The sweep does blocking database work, so it runs in a worker thread.
    """
    try:
        result = await asyncio.to_thread(run_expiry_sweep)
        if result["expired"] or result["failed"]:
            logger.info(f"Scheduled expiry sweep result: {result}")
    except Exception as e:
        logger.error(f"Scheduled expiry sweep failed: {e}")


def start_sweep_scheduler() -> bool:
    """
    Start the interval job.

    Returns:
        True if scheduler started (or is disabled by config), False on error
    """
    global _scheduler

    if not settings.sweep_enabled:
        logger.info("Expiry sweep scheduler disabled (SWEEP_ENABLED=false)")
        return True

    if _scheduler is not None and _scheduler.running:
        logger.warning("Expiry sweep scheduler is already running")
        return True

    try:
        _scheduler = AsyncIOScheduler(timezone=settings.timezone)
        _scheduler.add_job(
            run_sweep_job,
            IntervalTrigger(minutes=settings.sweep_interval_minutes),
            id=JOB_ID,
            name=f"Booking expiry sweep every {settings.sweep_interval_minutes} min",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()

        logger.info(f"Expiry sweep scheduler started (every {settings.sweep_interval_minutes} min)")
        return True

    except Exception as e:
        logger.error(f"Failed to start expiry sweep scheduler: {e}")
        return False


def stop_sweep_scheduler() -> bool:
    """Stop the scheduler gracefully."""
    global _scheduler

    if _scheduler is None:
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Expiry sweep scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop expiry sweep scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    status = {
        "enabled": settings.sweep_enabled,
        "running": False,
        "interval_minutes": settings.sweep_interval_minutes,
        "next_run": None,
        "last_run": _last_run_time.isoformat() if _last_run_time else None,
        "last_run_result": _last_run_result,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        job = _scheduler.get_job(JOB_ID)
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()

    return status
