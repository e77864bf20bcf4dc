from __future__ import annotations

from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:3000,http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Empty DB_URL keeps chunks in process memory (local development only).
    db_url: str = Field(default="", alias="DB_URL")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    embed_model: str = Field(default="text-embedding-3-large", alias="OPENAI_EMBEDDING_MODEL")
    embed_dim: int = Field(default=0, alias="EMBED_DIM")
    embed_timeout_sec: float = Field(default=20.0, alias="EMBED_TIMEOUT_SEC")
    memory_chunk_size: int = Field(default=450, alias="MEMORY_CHUNK_SIZE")
    memory_default_limit: int = Field(default=6, alias="MEMORY_DEFAULT_LIMIT")
    memory_max_limit: int = Field(default=20, alias="MEMORY_MAX_LIMIT")
    memory_similarity_weight: float = Field(default=0.8, alias="MEMORY_SIMILARITY_WEIGHT")
    memory_recency_weight: float = Field(default=0.2, alias="MEMORY_RECENCY_WEIGHT")
    memory_recency_window_days: float = Field(default=30.0, alias="MEMORY_RECENCY_WINDOW_DAYS")
    memory_min_similarity: Optional[float] = Field(default=None, alias="MEMORY_MIN_SIMILARITY")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            import json

            try:
                value: Any = json.loads(raw)
            except json.JSONDecodeError:
                value = None
            if isinstance(value, list):
                items = [str(item).strip() for item in value]
                return [item for item in items if item]
        return [item.strip() for item in raw.split(",") if item.strip()]

    @property
    def has_durable_store(self) -> bool:
        return bool(self.db_url.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
