"""
Application configuration using pydantic-settings.
All settings read from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Central configuration for the certificate mapping service."""

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "certmap"
    APP_VERSION: str = "0.1.0"
    MAPPER_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./certmap.db"
    DB_ECHO: bool = False

    # ── Storage ──────────────────────────────────────────────
    ARTIFACT_ROOT: str = "./uploads"
    MAX_UPLOAD_SIZE_MB: int = 20
    ALLOWED_MIME_TYPES: str = "application/pdf"

    # ── Execution model ──────────────────────────────────────
    # Uploads above this size go through the background queue
    LARGE_PDF_BYTES: int = 2 * 1024 * 1024
    EXTRACTION_TIMEOUT_SECONDS: float = 30.0
    QUEUE_MAX_SIZE: int = 100
    SUBSCRIBER_BUFFER_SIZE: int = 32

    # ── Audit ────────────────────────────────────────────────
    AUDIT_PREVIEW_MAX_LEN: int = 200
    AUDIT_DEFAULT_LIMIT: int = 20

    # ── Observability ────────────────────────────────────────
    PROMETHEUS_ENABLED: bool = True

    # ── Security ─────────────────────────────────────────────
    API_KEY: Optional[str] = None
    CORS_ORIGINS: str = "*"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


# Singleton instance
settings = Settings()
