"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="127.0.0.1", env="HOST")
    port: int = Field(default=3010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default=["http://localhost:3000"], env="CORS_ORIGINS")

    # Campaign backend
    backend_api_url: str = Field(default="http://localhost:5000/api", env="BACKEND_API_URL")
    backend_timeout: float = Field(default=10.0, env="BACKEND_TIMEOUT", gt=0, le=300)
    request_cache_ttl: float = Field(default=300.0, env="REQUEST_CACHE_TTL", ge=0)
    request_cache_max_entries: int = Field(default=500, env="REQUEST_CACHE_MAX_ENTRIES", ge=1)

    # Cache Configuration
    cache_backend: Literal["sqlite", "file", "memory"] = Field(default="sqlite", env="CACHE_BACKEND")
    cache_database_url: str = Field(default="sqlite:///data/cache.db", env="CACHE_DATABASE_URL")
    cache_file_dir: str = Field(default="data/cache", env="CACHE_FILE_DIR")
    cache_default_ttl: float = Field(default=300.0, env="CACHE_DEFAULT_TTL", ge=0)  # 5 minutes
    cache_max_entries: int = Field(default=1000, env="CACHE_MAX_ENTRIES", ge=1)
    cache_version: str = Field(default="1.0.0", env="CACHE_VERSION")
    cache_persistence_enabled: bool = Field(default=True, env="CACHE_PERSISTENCE_ENABLED")
    cache_storage_key: str = Field(default="app-cache", env="CACHE_STORAGE_KEY")
    cache_sweep_interval: float = Field(default=60.0, env="CACHE_SWEEP_INTERVAL", gt=0)
    metrics_cache_ttl: float = Field(default=30.0, env="METRICS_CACHE_TTL", ge=0)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("cache_database_url")
    @classmethod
    def validate_cache_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("backend_api_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    model_config = {
        "env_file": "../.env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
