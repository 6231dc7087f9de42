"""Application settings loaded from environment variables and `.env`."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Persistent store connection settings."""

    url: str = "sqlite+aiosqlite:///./data/sonata.db"
    echo: bool = False
    # Hey future me - SQLite allows ONE writer at a time. Lock errors are retried
    # this many times (exponential backoff) before they surface as StorageError.
    lock_retry_attempts: int = Field(default=3, ge=1, le=10)
    lock_retry_base_delay: float = Field(default=0.05, ge=0.0)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_json_format: bool = False


class LibrarySettings(BaseModel):
    """Library and playback behaviour."""

    stats_top_n: int = Field(default=10, ge=1)
    default_order_mode: Literal["sequential", "shuffled"] = "sequential"
    # None = fresh entropy on every start. Set it to get reproducible shuffles.
    shuffle_seed: int | None = None
    default_volume: int = Field(default=100, ge=0, le=100)


class Settings(BaseSettings):
    """Root settings object.

    Nested values come from double-underscore env vars, e.g.
    ``SONATA_DATABASE__URL`` or ``SONATA_LIBRARY__STATS_TOP_N``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SONATA_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "sonata"
    log_level: str = "INFO"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    library: LibrarySettings = Field(default_factory=LibrarySettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite database file path, or None for memory/non-SQLite URLs."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:" or path.startswith(":memory:"):
            return None
        return Path(path)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
