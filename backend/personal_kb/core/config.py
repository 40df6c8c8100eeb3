"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import orjson
import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "PKB_"
DEFAULT_CONFIG_PATH = Path("~/.config/personal-kb/config.yaml")

DEFAULT_OFFER_CATALOG: dict[str, list[str]] = {
    "The Boardroom": ["the boardroom", "boardroom"],
    "8 Week Experience": ["8 week experience", "8-week experience", "8week experience"],
    "The Directive": ["the directive", "directive"],
    "6 Week Producer Challenge": [
        "6 week producer challenge",
        "6-week producer challenge",
        "producer challenge",
    ],
}

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "use_faiss"): "use_faiss",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "api_url"): "embedding_api_url",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "timeout_seconds"): "embedding_timeout_seconds",
    ("ranking", "profile"): "source_weight_profile",
    ("ranking", "half_life_days"): "recency_half_life_days",
    ("chunking", "max_tokens"): "chunk_max_tokens",
    ("chunking", "overlap_tokens"): "chunk_overlap_tokens",
    ("chunking", "section_max_tokens"): "section_max_tokens",
    ("crawl", "max_depth"): "crawl_max_depth",
    ("crawl", "max_sources"): "crawl_max_sources",
    ("crawl", "timeout_seconds"): "extraction_timeout_seconds",
    ("crawl", "browser_relay_cmd"): "browser_relay_cmd",
    ("crawl", "min_readable_chars"): "min_readable_chars",
    ("retrieval", "search_limit"): "search_limit",
    ("retrieval", "answer_limit"): "answer_limit",
}

# Nested mappings that are field values rather than config sections.
_YAML_MAPPING_FIELDS: Mapping[tuple[str, ...], str] = {
    ("ranking", "weights"): "ranking_weights",
    ("ranking", "overrides"): "source_weight_overrides",
    ("offers", "catalog"): "offer_catalog",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".personal-kb" / "kb.db")
    use_faiss: bool = False
    embedding_model: str = "hashed"
    embedding_dim: int = Field(default=384, ge=8)
    embedding_api_url: str = "https://api.openai.com/v1/embeddings"
    embedding_api_key: str | None = None
    embedding_timeout_seconds: float = 20.0
    ranking_weights: dict[str, float] = Field(
        default_factory=lambda: {"semantic": 0.65, "recency": 0.2, "source": 0.15}
    )
    source_weight_profile: str = "balanced"
    source_weight_overrides: dict[str, float] = Field(default_factory=dict)
    recency_half_life_days: float = 30.0
    chunk_max_tokens: int = Field(default=220, ge=1)
    chunk_overlap_tokens: int = Field(default=40, ge=0)
    section_max_tokens: int = Field(default=350, ge=1)
    extraction_timeout_seconds: float = 45.0
    crawl_max_depth: int = Field(default=2, ge=0)
    crawl_max_sources: int = Field(default=25, ge=1)
    default_collection: str = "default"
    search_limit: int = Field(default=5, ge=1, le=100)
    answer_limit: int = Field(default=6, ge=1, le=50)
    offer_catalog: dict[str, list[str]] = Field(default_factory=lambda: dict(DEFAULT_OFFER_CATALOG))
    browser_relay_cmd: str | None = None
    min_readable_chars: int = 300
    user_agent: str = "personal-kb/0.1 (+https://github.com/personal-kb)"
    api_host: str = "127.0.0.1"
    api_port: int = 5180

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("ranking_weights", "source_weight_overrides", "offer_catalog", mode="before")
    @classmethod
    def _decode_json_mapping(cls, value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            return orjson.loads(value) if value else {}
        return value

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapping_field = _YAML_MAPPING_FIELDS.get(next_prefix)
        if mapping_field:
            flat[mapping_field] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with PKB_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "DEFAULT_OFFER_CATALOG"]
