from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# =====================================================
# SETTINGS (ENV / .env)
# =====================================================

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    DATABASE_URL: str = "sqlite:///./blissbay.db"

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    CURRENCY: str = "usd"

    # Mailgun
    MAILGUN_API_KEY: Optional[str] = None
    MAILGUN_DOMAIN: Optional[str] = None
    EMAIL_FROM: str = "BlissBay <no-reply@blissbay.com>"

    # Job queue
    REDIS_ENABLED: bool = False
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    JOB_MAX_ATTEMPTS: int = 5
    JOB_BACKOFF_SECONDS: float = 5.0

    # Uploads
    UPLOAD_DIR: str = "uploads"
    STATIC_URL_PREFIX: str = "/static"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    # Cart
    MAX_CART_ITEMS: int = 50
    MAX_PRODUCT_QUANTITY: int = 100
    CART_RESERVATION_MINUTES: int = 60

    # Password reset
    PASSWORD_RESET_MINUTES: int = 60
    FRONTEND_URL: str = "http://localhost:3000"

    # Admin bootstrap
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def sqlalchemy_url(self) -> str:
        # Heroku/Render style URLs
        if self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql://", 1)
        return self.DATABASE_URL


def get_settings() -> Settings:
    return Settings()
