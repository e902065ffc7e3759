"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (APIDEX__CACHE__MAX_INDEXES=100)
  2. apidex.yaml            (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. All fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("apidex")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first apidex.yaml found, or None."""
    candidates = [
        Path("apidex.yaml"),
        Path(platformdirs.user_config_dir("apidex")) / "apidex.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 8080
    auth_enabled: bool = False
    auth_key: str = ""
    # Browser origins accepted in addition to loopback
    allowed_origins: list[str] = []


class CacheSettings(BaseModel):
    max_indexes: int = Field(default=50, ge=1)
    index_ttl_seconds: float = Field(default=30 * 60, gt=0)
    cleanup_interval_seconds: float = Field(default=60, gt=0)
    memory_threshold_mb: float = Field(default=512, gt=0)
    details_ttl_minutes: float = Field(default=30, gt=0)
    details_cleanup_interval_seconds: float = Field(default=15 * 60, gt=0)
    db_path: str = _DEFAULT_DB_PATH


class SessionSettings(BaseModel):
    default_cache_ttl_seconds: float = Field(default=10 * 60, gt=0)
    max_sessions: int = Field(default=100, ge=1)
    sweep_interval_seconds: float = Field(default=5 * 60, gt=0)


class FetcherSettings(BaseModel):
    document_timeout_seconds: float = 30.0
    conditional_timeout_seconds: float = 10.0
    details_timeout_seconds: float = 30.0
    # A 304 confirmation is trusted for this long before asking the source again
    revalidate_interval_seconds: float = 30.0
    max_redirects: int = 5
    # Try common document locations when a configured URL is not a document
    discover_documents: bool = True
    discovery_timeout_seconds: float = 5.0
    user_agent: str = "apidex/1.0"


class SearchSettings(BaseModel):
    default_limit: int = Field(default=20, ge=1)
    max_keyword_results: int = Field(default=50, ge=1)
    suggestion_limit: int = Field(default=5, ge=1)


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: APIDEX__SERVER__PORT=9090
        env_prefix="APIDEX__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    cache: CacheSettings = CacheSettings()
    sessions: SessionSettings = SessionSettings()
    fetcher: FetcherSettings = FetcherSettings()
    search: SearchSettings = SearchSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
