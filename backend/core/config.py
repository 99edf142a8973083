from functools import lru_cache
from typing import Any, List
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_origins(v: Any) -> List[str]:
    """Parse CORS origins from a JSON list or a comma-separated string"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings, all configurable via environment variables"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Traffic Complaint Portal"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # Backend platform (required, startup fails without them)
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: str
    SUPABASE_SERVICE_KEY: str = ""

    # "local" runs the bundled SQLModel backend, "remote" calls SUPABASE_URL
    BACKEND_MODE: str = "local"
    DATABASE_URL: str = "sqlite:///./traffic_portal.db"
    UPLOAD_DIR: str = "uploads"
    SITE_URL: str = "http://localhost:8080"
    CORS_ORIGINS: str = "https://localhost:8080,http://localhost:8080"

    # Session lifecycle (seconds)
    SESSION_RESTORE_TIMEOUT: float = 5.0
    CACHE_FRESH_SECONDS: int = 300
    CACHE_FALLBACK_SECONDS: int = 1800
    SIGN_OUT_TIMEOUT: float = 10.0
    RESEND_COOLDOWN_SECONDS: int = 60

    # Tabs idle this long are dropped; MAX_TABS caps the registry
    TAB_IDLE_SECONDS: int = 1800
    MAX_TABS: int = 500

    # Retries
    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 2.0
    RETRY_MAX_DELAY: float = 8.0
    SUBMISSION_TIMEOUT: float = 45.0
    REVIEW_TIMEOUT: float = 30.0
    UPLOAD_TIMEOUT: float = 60.0

    # Toasts (milliseconds)
    TOAST_DURATION_MS: int = 4000
    TOAST_ERROR_DURATION_MS: int = 6000

    @field_validator("BACKEND_MODE")
    @classmethod
    def check_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("local", "remote"):
            raise ValueError("BACKEND_MODE must be 'local' or 'remote'")
        return v

    @property
    def cors_origins(self) -> List[str]:
        return parse_origins(self.CORS_ORIGINS)


@lru_cache
def get_settings() -> Settings:
    return Settings()
