"""
Application Configuration - Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Course Marketplace Payments API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'coursepay.db'}"
    STORAGE_TIMEOUT_SECONDS: float = 10.0

    # --- Payment Gateway (Paystack) ---
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    PAYMENT_CURRENCY: str = "KES"

    # Where the gateway sends the buyer's browser after checkout
    CALLBACK_BASE_URL: str = "http://localhost:5173"
    PAYMENT_CALLBACK_PATH: str = "/payment/callback"

    # --- Auth (bearer tokens issued by the identity provider) ---
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: str = "authenticated"
    VERIFY_REQUIRES_AUTH: bool = True

    # --- Reconciliation ---
    PENDING_PAYMENT_TTL_MINUTES: int = 24 * 60

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def callback_url(self) -> str:
        return f"{self.CALLBACK_BASE_URL.rstrip('/')}{self.PAYMENT_CALLBACK_PATH}"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
