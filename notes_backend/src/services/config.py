"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "organizer.db"
DEFAULT_ROUTING_MODELS = (
    "anthropic/claude-3.5-haiku",
    "openai/gpt-4o-mini",
    "google/gemini-2.0-flash-001",
)


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    database_path: Path = Field(..., description="SQLite file holding entities and history")
    completion_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenAI-compatible completion endpoint base",
    )
    completion_api_key: Optional[str] = Field(
        default=None, description="Bearer key for the completion service"
    )
    completion_timeout_seconds: float = Field(default=60.0, gt=0)
    routing_models: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ROUTING_MODELS),
        description="Model profiles tried in order when routing",
    )
    merge_model: str = Field(default=DEFAULT_ROUTING_MODELS[0])
    default_route_path: Optional[str] = Field(
        default="/Inbox",
        description="Destination used when every routing profile fails (None disables)",
    )
    merge_context_blocks: int = Field(default=30, ge=1, le=500)
    quality_min_similarity: float = Field(default=0.4, ge=0.0, le=1.0)
    quality_min_length_ratio: float = Field(default=0.3, gt=0.0)
    quality_max_length_ratio: float = Field(default=3.0, gt=0.0)
    max_history_items: int = Field(default=20, ge=1)
    max_history_age_days: int = Field(default=7, ge=1)
    consistency_delay_seconds: float = Field(default=0.5, ge=0.0)
    suggestion_cache_size: int = Field(default=5, ge=1)
    suggestion_limit: int = Field(default=5, ge=1)
    prompts_dir: Optional[Path] = None

    @field_validator("database_path", mode="before")
    @classmethod
    def _normalize_db_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("DATABASE_PATH is required")
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("routing_models", mode="before")
    @classmethod
    def _split_models(cls, value: str | List[str] | None) -> List[str]:
        if value is None:
            return list(DEFAULT_ROUTING_MODELS)
        if isinstance(value, str):
            value = value.split(",")
        models = [item.strip() for item in value if item and item.strip()]
        if not models:
            raise ValueError("ROUTING_MODELS must name at least one model")
        return models

    @field_validator("default_route_path", mode="before")
    @classmethod
    def _blank_route_disables(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned or cleaned.lower() in {"none", "off"}:
            return None
        return cleaned if cleaned.startswith("/") else f"/{cleaned}"

    @field_validator("completion_api_key", mode="before")
    @classmethod
    def _empty_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @model_validator(mode="after")
    def _check_length_ratio(self) -> "AppConfig":
        if self.quality_min_length_ratio >= self.quality_max_length_ratio:
            raise ValueError(
                "QUALITY_MIN_LENGTH_RATIO must be smaller than QUALITY_MAX_LENGTH_RATIO"
            )
        return self


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    prompts_dir = _read_env("PROMPTS_DIR")

    config = AppConfig(
        database_path=_read_env("DATABASE_PATH", str(DEFAULT_DB_PATH)),
        completion_base_url=_read_env("COMPLETION_BASE_URL", "https://openrouter.ai/api/v1"),
        completion_api_key=_read_env("COMPLETION_API_KEY") or _read_env("OPENROUTER_API_KEY"),
        completion_timeout_seconds=float(_read_env("COMPLETION_TIMEOUT_SECONDS", "60")),
        routing_models=_read_env("ROUTING_MODELS"),
        merge_model=_read_env("MERGE_MODEL", DEFAULT_ROUTING_MODELS[0]),
        default_route_path=_read_env("DEFAULT_ROUTE_PATH", "/Inbox"),
        merge_context_blocks=int(_read_env("MERGE_CONTEXT_BLOCKS", "30")),
        quality_min_similarity=float(_read_env("QUALITY_MIN_SIMILARITY", "0.4")),
        quality_min_length_ratio=float(_read_env("QUALITY_MIN_LENGTH_RATIO", "0.3")),
        quality_max_length_ratio=float(_read_env("QUALITY_MAX_LENGTH_RATIO", "3.0")),
        max_history_items=int(_read_env("MAX_HISTORY_ITEMS", "20")),
        max_history_age_days=int(_read_env("MAX_HISTORY_AGE_DAYS", "7")),
        consistency_delay_seconds=float(_read_env("CONSISTENCY_DELAY_SECONDS", "0.5")),
        suggestion_cache_size=int(_read_env("SUGGESTION_CACHE_SIZE", "5")),
        suggestion_limit=int(_read_env("SUGGESTION_LIMIT", "5")),
        prompts_dir=Path(prompts_dir) if prompts_dir else None,
    )
    # Ensure the database directory exists for downstream services.
    config.database_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "get_config", "reload_config", "PROJECT_ROOT", "DEFAULT_DB_PATH"]
