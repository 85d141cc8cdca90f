"""
TillPoint Bridge — Application Configuration
Loads all environment variables via pydantic-settings.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    ENVIRONMENT: str = "development"
    APP_NAME: str = "TillPoint WhatsApp Bridge"
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]
    MAX_BODY_BYTES: int = 50 * 1024

    # ── Security ─────────────────────────────────────────────────────────
    # Shared secret for the inbound API and the outbound webhook
    API_KEY: str = Field(..., min_length=1)

    # ── Webhook ──────────────────────────────────────────────────────────
    BASE_WEBHOOK_URL: str | None = None
    WEBHOOK_TIMEOUT: float = 10.0
    # Needs a client that emits `message` events; WhatsAppWebClient does not
    RELAY_INBOUND_MESSAGES: bool = False

    # ── WhatsApp session ─────────────────────────────────────────────────
    SESSION_ID: str = "tillpoint_main"
    SESSION_DATA_DIR: str = ".wwebjs_auth"
    LOG_QR_TERMINAL: bool = False
    LOGOUT_REINIT_DELAY: float = 2.0
    RESTART_REINIT_DELAY: float = 3.0

    # ── Browser ──────────────────────────────────────────────────────────
    HEADLESS: bool = True
    BROWSER_ARGS: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-extensions",
        "--disable-background-networking",
        "--no-first-run",
        "--disable-default-apps",
        "--disable-features=site-per-process",
        "--no-zygote",
    ]

    # ── Retry / Resilience ───────────────────────────────────────────────
    EXTERNAL_API_MAX_RETRIES: int = 3
    EXTERNAL_API_RETRY_DELAY: float = 1.0


@lru_cache()
def get_settings() -> Settings:
    """Cached singleton for app settings."""
    return Settings()
