"""Knowledge-base server configuration.

Settings are read from ``kb.settings.yaml`` (override the location with the
``KB_SETTINGS_FILE`` environment variable), then individual values may be
overridden through ``KB_*`` environment variables.  Environment variables
always win over the YAML file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("kb.settings.yaml")
SCHEMA_VERSION = "1.0.0"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8008


class LoggingSettings(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class StorageSettings(BaseModel):
    data_dir: str = "~/.knowledgebase/vectors"

    @field_validator("data_dir")
    @classmethod
    def _expand_home(cls, v: str) -> str:
        return str(Path(v).expanduser())


class EmbeddingSettings(BaseModel):
    provider:  Literal["local", "bedrock"] = "local"
    model:     str           = "all-MiniLM-L6-v2"
    dim:       int           = Field(default=384, ge=1)
    cache_dir: Optional[str] = None
    region:    str           = "us-east-1"
    aws_access_key_id:     Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_session_token:     Optional[str] = None


class IngestionSettings(BaseModel):
    batch_size:        int  = Field(default=100, ge=1)
    max_file_size:     int  = Field(default=1024 * 1024, ge=1)
    respect_gitignore: bool = True


class SearchSettings(BaseModel):
    default_max_results:   int = Field(default=50, ge=1)
    cache_timeout_seconds: int = Field(default=60, ge=0)


class DocumentSettings(BaseModel):
    conversion_timeout: float = Field(default=30.0, gt=0)
    kill_grace_seconds: float = Field(default=1.0, ge=0)
    chunking_timeout:   float = Field(default=30.0, gt=0)
    max_tokens:         int   = Field(default=512, ge=1)
    chunk_size:         int   = Field(default=1000, ge=1)
    chunk_overlap:      int   = Field(default=200, ge=0)
    merge_peers:        bool  = True
    tokenizer:          str   = "sentence-transformers/all-MiniLM-L6-v2"
    output_dir:         Optional[str] = None

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "DocumentSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class AppSettings(BaseModel):
    server:         ServerSettings    = Field(default_factory=ServerSettings)
    logging:        LoggingSettings   = Field(default_factory=LoggingSettings)
    storage:        StorageSettings   = Field(default_factory=StorageSettings)
    embedding:      EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    ingestion:      IngestionSettings = Field(default_factory=IngestionSettings)
    search:         SearchSettings    = Field(default_factory=SearchSettings)
    document:       DocumentSettings  = Field(default_factory=DocumentSettings)
    schema_version: str               = SCHEMA_VERSION


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

# env var → (section, key)
_ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "KB_SERVER_HOST":                  ("server", "host"),
    "KB_SERVER_PORT":                  ("server", "port"),
    "KB_LOG_LEVEL":                    ("logging", "level"),
    "KB_DATA_DIR":                     ("storage", "data_dir"),
    "KB_EMBEDDING_PROVIDER":           ("embedding", "provider"),
    "KB_EMBEDDING_MODEL":              ("embedding", "model"),
    "KB_EMBEDDING_DIM":                ("embedding", "dim"),
    "KB_INGESTION_BATCH_SIZE":         ("ingestion", "batch_size"),
    "KB_INGESTION_MAX_FILE_SIZE":      ("ingestion", "max_file_size"),
    "KB_SEARCH_DEFAULT_MAX_RESULTS":   ("search", "default_max_results"),
    "KB_SEARCH_CACHE_TIMEOUT_SECONDS": ("search", "cache_timeout_seconds"),
}


def _apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay ``KB_*`` environment variables onto the raw settings dict.

    Values stay strings; pydantic coerces them during validation.
    """
    env = os.environ if environ is None else environ
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        section_data = data.get(section)
        if not isinstance(section_data, dict):
            section_data = {}
            data[section] = section_data
        section_data[key] = value
        logger.debug("Config override from env: %s -> %s.%s", var, section, key)
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AppSettings:
    """Load the settings file, apply env overrides and validate."""
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env.get("KB_SETTINGS_FILE") or SETTINGS_FILE)

    data = _load_yaml(Path(path))
    data = _apply_env_overrides(data, env)

    settings = AppSettings(**data)
    logger.info(
        "Settings loaded (server=%s:%s, data_dir=%s, embedding=%s/%s)",
        settings.server.host,
        settings.server.port,
        settings.storage.data_dir,
        settings.embedding.provider,
        settings.embedding.model,
    )
    return settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or clear) the process-wide settings."""
    global _config
    _config = config
