import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Supabase auth (access tokens are HS256 JWTs signed with the project secret)
    SUPABASE_JWT_SECRET: Optional[str] = None
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # AI providers
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_TTS_MODEL: str = "tts-1"
    OPENAI_TTS_VOICE: str = "alloy"
    OPENAI_TRANSCRIBE_MODEL: str = "whisper-1"
    FIRECRAWL_API_KEY: Optional[str] = None
    FIRECRAWL_URL: str = "https://api.firecrawl.dev/v1/scrape"
    AI_TIMEOUT_SECONDS: float = 60.0

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None
    PREMIUM_UNIT_AMOUNT: int = 50  # cents per month when no price id is configured
    PREMIUM_CURRENCY: str = "usd"

    # App URLs
    FRONTEND_URL: str = "http://localhost:8080"
    CORS_ORIGINS: str = "http://localhost:8080"  # comma-separated

    # Credits
    INITIAL_CREDIT_BALANCE: int = 10
    FEEDBACK_CREDIT_COST: int = 2
    PRACTICE_CREDIT_COST: int = 5
    GUIDED_CREDIT_COST: int = 1

    # Subscription reconciliation
    SYNC_DEBOUNCE_SECONDS: float = 30.0
    SYNC_INTERVAL_SECONDS: float = 300.0
    SUBSCRIPTION_STALE_HOURS: int = 24

    # Admin access
    ADMIN_KEY: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("storyline")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "SUPABASE_JWT_SECRET",
        "OPENAI_API_KEY",
        "STRIPE_SECRET_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
