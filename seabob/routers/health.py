"""
Health Check Endpoints

- /health - simple liveness
- /health/ready - database connectivity
- /health/detailed - component statuses (database, sweep scheduler, Stripe)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone
import time

from .. import __version__
from ..database import get_db
from ..config import settings
from ..services.sweep_scheduler import get_scheduler_status

router = APIRouter(prefix="/health", tags=["Health"])


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": db.bind.dialect.name
        }
    except SQLAlchemyError as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


@router.get("")
async def simple_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__
    }


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe - is the service ready to accept traffic?
    Checks database connectivity.
    """
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    db_health = get_db_health(db)
    scheduler = get_scheduler_status()

    checks = {
        "database": db_health,
        "expiry_sweep": scheduler,
        "stripe": {"status": "configured" if settings.stripe_configured else "not_configured"},
    }

    if db_health["status"] == "down":
        overall_status = "unhealthy"
    elif settings.sweep_enabled and not scheduler["running"]:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "environment": settings.environment,
        "checks": checks,
    }
