"""Configuration management.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order. You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  As a last
# resort, a .env in the backend directory may be used.  Files are loaded in
# order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Tally Receipt Pipeline"
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Database (job state persistence)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Redis (broker + status notifications)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    DRAMATIQ_BROKER_URL: Optional[str] = Field(default=None)

    # Storage
    STORAGE_BACKEND: str = Field(default="minio")
    MINIO_ENDPOINT: str = Field(default="localhost:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_BUCKET_NAME: str = Field(default="receipts")
    MINIO_USE_SSL: bool = Field(default=False)
    STORAGE_DIRECTORY: str = Field(default="./storage")

    # Image normalisation
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_MIME_TYPES: set[str] = {"image/jpeg", "image/jpg", "image/png"}
    MAX_IMAGE_DIMENSION: int = Field(default=2000)

    # OCR (Tesseract)
    OCR_ENABLED: bool = Field(default=True)
    OCR_LANGUAGE: str = Field(default="eng")
    OCR_PSM: int = Field(default=3)
    OCR_CHAR_WHITELIST: str = Field(
        default="0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz$.,/:-() ",
    )
    OCR_TIMEOUT_SECONDS: float = Field(default=30.0)

    # Structured extraction
    # One of: heuristic, ollama, ollama-text, openai, openai-text.  Unset
    # means no model provider is configured and the heuristic parser runs.
    EXTRACTION_PROVIDER: Optional[str] = Field(default=None)
    EXTRACTION_TIMEOUT_SECONDS: float = Field(default=60.0)
    EXTRACTION_TEMPERATURE: float = Field(default=0.1)
    OLLAMA_BASE_URL: str = Field(default="http://localhost:11434")
    OLLAMA_MODEL: str = Field(default="llava")
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_BASE_URL: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_MAX_COMPLETION_TOKENS: int = Field(default=2000)

    # Date validation
    DATE_MAX_AGE_DAYS: int = Field(default=365)
    DATE_DAYFIRST: bool = Field(default=False)

    # Concurrency
    WORKER_CONCURRENCY: int = Field(default=5)

    # Status stream
    STATUS_POLL_INTERVAL_SECONDS: float = Field(default=2.0)

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    @property
    def broker_url(self) -> str:
        """Redis URL used by Dramatiq; falls back to ``REDIS_URL``."""
        return self.DRAMATIQ_BROKER_URL or self.REDIS_URL

    @property
    def extraction_provider(self) -> str:
        """Normalised provider name (``heuristic`` when none is configured)."""
        return (self.EXTRACTION_PROVIDER or "heuristic").strip().lower()


# Instantiate global settings
settings = Settings()
