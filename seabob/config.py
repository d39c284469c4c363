from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./seabob.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # Local business timezone (Ibiza)
    timezone: str = Field(default="Europe/Madrid", alias="TIMEZONE")

    # ==============================================
    # Scheduled trigger (cron) settings
    # ==============================================
    # Shared secret for /api/cron/* - if empty only x-vercel-cron is accepted
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # In-process sweep (runs inside FastAPI process)
    sweep_enabled: bool = Field(default=True, alias="SWEEP_ENABLED")
    sweep_interval_minutes: int = Field(default=5, alias="SWEEP_INTERVAL_MINUTES")

    # Standalone worker poll interval (worker.py)
    worker_poll_interval: int = Field(default=60, alias="WORKER_POLL_INTERVAL")  # seconds

    # ==============================================
    # Stripe (Server-Side Only!)
    # ==============================================
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    payment_currency: str = Field(default="eur", alias="PAYMENT_CURRENCY")

    # ==============================================
    # Booking hold (reservation expiry)
    # ==============================================
    hold_long_hours: int = Field(default=24, alias="HOLD_LONG_HOURS")
    hold_short_hours: int = Field(default=1, alias="HOLD_SHORT_HOURS")
    hold_threshold_days: int = Field(default=7, alias="HOLD_THRESHOLD_DAYS")

    # ==============================================
    # Stock ledger / transactions
    # ==============================================
    # Max (day x product) cells in one provisioning request
    stock_batch_limit: int = Field(default=500, alias="STOCK_BATCH_LIMIT")
    transaction_max_attempts: int = Field(default=5, alias="TRANSACTION_MAX_ATTEMPTS")

    # Commission: "nights" or "item_duration"
    commission_day_count_mode: str = Field(default="nights", alias="COMMISSION_DAY_COUNT_MODE")

    # Public endpoints rate limit
    public_booking_rate_limit: str = Field(default="10/minute", alias="PUBLIC_BOOKING_RATE_LIMIT")
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    # memory:// for a single instance, redis://... when scaled out
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator('database_url')
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Railway/Heroku style postgres:// URLs need the postgresql:// scheme"""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator('commission_day_count_mode')
    @classmethod
    def validate_day_count_mode(cls, v: str) -> str:
        if v not in ("nights", "item_duration"):
            raise ValueError("COMMISSION_DAY_COUNT_MODE must be 'nights' or 'item_duration'")
        return v

    @field_validator('transaction_max_attempts', 'stock_batch_limit')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
