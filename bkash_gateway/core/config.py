"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "bKash Checkout Adapter"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Shared secret expected in the X-API-Key header
    API_KEY: str = ""

    # CORS
    CORS_ORIGINS: list[str] = []

    # bKash tokenized checkout
    BKASH_BASE_URL: str = "https://tokenized.pay.bka.sh/v1.2.0-beta/tokenized/checkout"
    BKASH_APP_KEY: str = ""
    BKASH_APP_SECRET: str = ""
    BKASH_USERNAME: str = ""
    BKASH_PASSWORD: str = ""

    # Upstream tokens live for 60 minutes; reuse them for less than that
    BKASH_TOKEN_CACHE_MINUTES: int = 50
    BKASH_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Fallback callback for create-payment when the caller sends none
    BKASH_CALLBACK_URL: str = "http://localhost:3000/bkash/callback"

    # Where the callback endpoint sends the end user afterwards
    APP_REDIRECT_URL: str = "your-app-scheme://payment"

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
