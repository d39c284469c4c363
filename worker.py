#!/usr/bin/env python
"""
Expiry Sweep Worker

Standalone process that expires lapsed booking holds and returns their
stock, for deployments where the in-process scheduler is disabled
(SWEEP_ENABLED=false) and no external cron is configured.

Run with:
    python worker.py

Or with environment:
    WORKER_POLL_INTERVAL=30 python worker.py
"""

import sys
import time
import logging
import signal

from sqlalchemy.exc import SQLAlchemyError

from seabob.config import settings
from seabob.database import SessionLocal
from seabob.services.expiry_sweep import BookingExpirySweeper
from seabob.utils.logging_config import setup_logging

logger = logging.getLogger("worker")

RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current sweep...")
    RUNNING = False


def run_cycle() -> dict:
    """One sweep with its own session"""
    db = SessionLocal()
    try:
        return BookingExpirySweeper(db).run().to_dict()
    finally:
        db.close()


def run_worker():
    """Main worker loop"""
    poll_interval = settings.worker_poll_interval

    logger.info("Starting expiry sweep worker")
    logger.info(f"Poll interval: {poll_interval}s")

    cycle = 0

    while RUNNING:
        cycle += 1
        start_time = time.time()

        try:
            result = run_cycle()
            # Log results (only if something happened)
            if result["expired"] or result["released"] or result["failed"]:
                duration = time.time() - start_time
                logger.info(
                    f"Cycle {cycle}: checked {result['checked']} | "
                    f"expired {result['expired']} | released {result['released']} | "
                    f"failed {result['failed']} | {duration:.2f}s"
                )
        except SQLAlchemyError as e:
            logger.error(f"Database error in cycle {cycle}: {e}")

        # Sleep until next poll
        if RUNNING:
            time.sleep(poll_interval)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
