"""
Rate Limiter Configuration

Public (unauthenticated) endpoints are rate limited per client IP.
Storage is in-memory by default; set RATE_LIMIT_STORAGE_URI (e.g.
redis://host:6379) when running more than one instance.
"""

import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy (Railway/Vercel)"""
    # Check X-Forwarded-For header (set by proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fallback to direct connection
    return get_remote_address(request)


def create_limiter() -> Limiter:
    storage_uri = settings.rate_limit_storage_uri
    logger.debug(f"Rate limiter storage: {storage_uri.split('://')[0]}")
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=storage_uri,
        default_limits=["100/minute"],
        enabled=settings.rate_limit_enabled,
    )


# Global rate limiter instance
limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Public booking form
    "public_booking": settings.public_booking_rate_limit,
    "link_visit": "60/minute",

    # Public contract page
    "contract_read": "60/minute",
    "contract_sign": "10/minute",

    # Webhooks / scheduled triggers
    "webhook": "100/minute",
    "cron": "30/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
