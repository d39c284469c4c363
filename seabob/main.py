from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import uuid

from . import __version__
from .config import settings
from .database import create_tables
from .services.sweep_scheduler import start_sweep_scheduler, stop_sweep_scheduler
from .utils.error_handlers import register_exception_handlers
from .utils.logging_config import setup_logging, set_request_context, clear_request_context
from .utils.rate_limiter import limiter

# Import all routers
from .routers import bookings, public, links, stock, products, cron, stripe_webhook, commissions, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info("Starting seabob-reservations...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()

    if not settings.stripe_configured:
        logger.warning("STRIPE_SECRET_KEY not set: Stripe refunds and webhooks are disabled")

    start_sweep_scheduler()

    yield

    logger.info("Shutting down seabob-reservations...")
    stop_sweep_scheduler()


# Create FastAPI app
app = FastAPI(
    title="SeaBob Reservations API",
    description="Reservas y stock diario de la flota SeaBob",
    version=__version__,
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id, request.headers.get("X-Actor-Id"))
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Demasiadas solicitudes, inténtalo más tarde"}
    )


register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(bookings.router)
app.include_router(public.router)
app.include_router(links.router)
app.include_router(products.router)
app.include_router(stock.router)
app.include_router(cron.router)
app.include_router(stripe_webhook.router)
app.include_router(commissions.router)


@app.get("")
@app.get("/")
async def root():
    return {
        "message": "SeaBob Reservations API",
        "version": __version__,
        "docs": "/docs",
        "status": "running",
    }
