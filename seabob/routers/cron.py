"""
Scheduled trigger for the booking expiry sweep.

Vercel Cron (or any external scheduler) calls this endpoint. Accepted
credentials: the `x-vercel-cron: 1` header, `Authorization: Bearer
<CRON_SECRET>` or `?token=<CRON_SECRET>`. Without CRON_SECRET only the
Vercel header is accepted.
"""

import logging
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from ..config import settings
from ..database import get_db
from ..schemas.sweep import SweepResponse
from ..services.expiry_sweep import BookingExpirySweeper
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


def _secret_matches(candidate: Optional[str]) -> bool:
    if not settings.cron_secret or not candidate:
        return False
    return secrets.compare_digest(candidate, settings.cron_secret)


def is_authorized_cron(
    vercel_cron: Optional[str],
    authorization: Optional[str],
    token: Optional[str]
) -> bool:
    if vercel_cron == "1":
        return True
    if authorization and authorization.startswith("Bearer "):
        if _secret_matches(authorization[len("Bearer "):].strip()):
            return True
    return _secret_matches(token)


def verify_cron_request(
    x_vercel_cron: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Query(None)
):
    """Dependency that rejects unauthorised cron calls with 401"""
    if not is_authorized_cron(x_vercel_cron, authorization, token):
        logger.warning("Unauthorized cron request rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No autorizado")


@router.api_route("/expire-bookings", methods=["GET", "POST"], response_model=SweepResponse)
@limiter.limit(get_rate_limit("cron"))
def expire_bookings(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_cron_request)
):
    """Expire lapsed holds and return their stock."""
    result = BookingExpirySweeper(db).run()
    if result.expired or result.failed:
        logger.info(f"Cron expiry sweep: {result.to_dict()}")
    return SweepResponse(success=True, **result.to_dict())
