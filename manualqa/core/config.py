"""
Application Configuration

Centralized settings for the ManualQA ingestion and answering pipeline.
All values are loaded from environment variables or a ``.env`` file.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Every field has a default so the pipeline can run offline (local
    embeddings, in-memory store in tests). Set COMPLETION_API_KEY to enable
    answer generation and the completion-backed embedding path.
    """

    PROJECT_NAME: str = "ManualQA"

    # Database
    POSTGRES_USER: str = "manualqa"
    POSTGRES_PASSWORD: str = "manualqa_password"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "manualqa_db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Completion service (OpenAI-compatible chat completions)
    COMPLETION_BASE_URL: str = "https://api.groq.com/openai/v1"
    COMPLETION_API_KEY: str | None = None
    COMPLETION_TIMEOUT: float = 30.0

    # Answer generation
    ANSWER_MODEL: str = "llama-3.1-8b-instant"
    ANSWER_TEMPERATURE: float = 0.3
    ANSWER_MAX_TOKENS: int = 1000
    ANSWER_TOP_P: float = 0.9

    # Embeddings
    EMBEDDING_PROVIDER: Literal["completion", "local"] = "local"
    EMBEDDING_MODEL: str = "llama-3.3-70b-versatile"
    EMBEDDING_DIMENSION: int = Field(default=1536, ge=256)
    EMBEDDING_CONCURRENCY: int = Field(
        default_factory=lambda: os.cpu_count() or 4,
        ge=1,
    )

    # Chunking
    CHUNK_SIZE: int = Field(default=300, ge=1)
    CHUNK_OVERLAP: int = Field(default=50, ge=0)

    # Extraction
    MIN_CHARS_PER_PAGE: int = 100
    MIN_TOTAL_CHARS: int = 200
    BASELINE_TOLERANCE: float = 3.0
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # OCR (Tesseract)
    OCR_LANGUAGE: str = "eng"
    OCR_PAGE_SEG_MODE: int = 3
    OCR_CHAR_WHITELIST: str | None = None
    OCR_RENDER_SCALE: float = 2.0
    TESSDATA_DIR: str | None = None
    TESSDATA_URL: str | None = None

    # Ingestion policy
    ROLLBACK_ON_FAILURE: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def completion_configured(self) -> bool:
        """True when an API key for the completion service is present."""
        return bool(self.COMPLETION_API_KEY) and self.COMPLETION_API_KEY != "mock"


settings = Settings()
