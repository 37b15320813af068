"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Yenko Ride API"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "yenko_ride"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 0
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_CONNECT_TIMEOUT: int = 15
    DATABASE_IDLE_TIMEOUT: int = 30
    DATABASE_STATEMENT_TIMEOUT_MS: int = 10000
    DATABASE_AUTO_CREATE: bool = True

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── Identity Provider ────────────────────────────────────
    AUTH_PROVIDER: str = "jwt"          # jwt | firebase
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ── Firebase ─────────────────────────────────────────────
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CREDENTIALS_PATH: str = ""

    # ── Payments ─────────────────────────────────────────────
    PAYMENT_GATEWAY: str = "sandbox"    # sandbox | paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYMENT_CURRENCY: str = "GHS"
    PAYMENT_GATEWAY_TIMEOUT: float = 15.0
    PLATFORM_COMMISSION_RATE: float = 0.10

    # ── File Uploads ─────────────────────────────────────────
    UPLOAD_BASE_URL: str = "https://uploads.yenko.app"

    # ── CORS ─────────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: int = 300

    # ── Monitoring ───────────────────────────────────────────
    METRICS_ENABLED: bool = True

    @property
    def database_url(self) -> str:
        """DATABASE_URL wins; otherwise build one from the discrete DB_* parts."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = f":{quote_plus(self.DB_PASSWORD)}" if self.DB_PASSWORD else ""
        return (
            f"postgresql+asyncpg://{self.DB_USER}{password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
