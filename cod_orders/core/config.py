# cod_orders/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (admin Supabase client, edge functions)
      - SMS_ENABLED (send SMS through the send-sms edge function)
      - SMTP_* (email notifications; skipped when host or credentials are missing)
    """

    PROJECT_NAME: str = "COD Delivery Backend"
    API_V1_STR: str = "/api/v1"

    # Supabase / DB config
    SUPABASE_URL: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Delivery fee split between rider and platform
    CURRENCY: str = "TZS"
    RIDER_SHARE_RATE: float = 0.75
    PLATFORM_SHARE_RATE: float = 0.25

    # Order numbers are date + time suffix; retry on the rare collision
    ORDER_NUMBER_MAX_ATTEMPTS: int = 5

    # SMS goes through a Supabase edge function
    SMS_ENABLED: bool = False
    SMS_FUNCTION_NAME: str = "send-sms"

    # Email notifications over SMTP. SSL for port 465, STARTTLS for 587.
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_FROM_EMAIL: str | None = None
    SMTP_FROM_NAME: str = "COD Orders"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
