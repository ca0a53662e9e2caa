"""Dependency providers and settings management."""

from functools import lru_cache
from typing import ClassVar, List, Literal, Optional, Tuple

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Facebook Graph API
    FACEBOOK_ACCESS_TOKEN: Optional[str] = None
    FACEBOOK_AD_ACCOUNT_ID: Optional[str] = None
    FACEBOOK_API_VERSION: str = "v19.0"

    # GoHighLevel
    GHL_API_KEY: Optional[str] = None
    GHL_LOCATION_ID: Optional[str] = None
    # "warn" applies out-of-order funnel events and reports them, "reject" skips them
    FUNNEL_ORDER_POLICY: Literal["warn", "reject"] = "warn"

    # Deepgram / ad transcripts
    DEEPGRAM_API_KEY: Optional[str] = None
    TRANSCRIPT_MODE: Literal["deferred", "sync"] = "deferred"
    TRANSCRIPT_POLL_INTERVAL_SECONDS: int = 30
    TRANSCRIPT_BATCH_SIZE: int = 5
    TRANSCRIPT_TEMP_DIR: Optional[str] = None  # defaults to <tmp>/ad-transcripts
    # Download cap for inline (TRANSCRIPT_MODE=sync) generation inside a request
    TRANSCRIPT_MAX_BYTES: Optional[int] = 25 * 1024 * 1024
    # Background workers download without a cap unless this is set
    TRANSCRIPT_WORKER_MAX_BYTES: Optional[int] = None

    # Redis Configuration (ARQ worker)
    REDIS_URL: str = "redis://localhost:6379/0"
    FACEBOOK_SYNC_CRON_HOUR: int = 6

    SENTRY_DSN: Optional[str] = None

    # Read-only SQLAdmin views at /admin (no login of its own; keep off unless the host is private)
    ADMIN_ENABLED: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "FACEBOOK_ACCESS_TOKEN",
        "FACEBOOK_AD_ACCOUNT_ID",
        "GHL_API_KEY",
        "GHL_LOCATION_ID",
        "DEEPGRAM_API_KEY",
    )

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    def missing_required(self) -> List[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]

    def ensure_required(self) -> None:
        """Fail fast when any upstream credential is missing.

        Raises:
            RuntimeError: Listing every missing variable, before any I/O happens
        """
        missing = self.missing_required()
        if missing:
            raise RuntimeError(
                "Missing required environment variable(s): " + ", ".join(missing)
            )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# -----------------------------------------------------------------------------
# Upstream clients
# -----------------------------------------------------------------------------
# Clients are built once in main.create_app() and parked on app.state.
# Routers depend on these providers so tests can swap in fakes through
# app.dependency_overrides.

def get_meta_client(request: Request):
    return request.app.state.meta_client


def get_ghl_client(request: Request):
    return request.app.state.ghl_client


def get_deepgram_client(request: Request):
    return request.app.state.deepgram_client


def get_media_downloader(request: Request):
    return request.app.state.media_downloader
