"""Application configuration and feature flags."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from BATCH_* environment variables or a .env file."""

    # Storage for progress, integrity key and history
    data_dir: Path = Path.home() / ".photo-batcher"

    # Feature flags
    rollback_enabled: bool = True
    history_enabled: bool = True
    encryption_enabled: bool = True
    verbose_logging: bool = False
    exif_sorting_enabled: bool = True

    # Limits
    max_history_entries: int = Field(default=20, ge=1, le=200)
    max_files_per_batch_ceiling: int = 10000
    default_files_per_batch: int = 500
    max_prefix_length: int = 50

    # Concurrency and chunking
    max_file_concurrency: int = Field(default=64, ge=1)
    folder_concurrency: int = Field(default=20, ge=1)
    stat_concurrency: int = Field(default=50, ge=1)
    file_move_chunk_size: int = Field(default=100, ge=1)
    batch_search_depth: int = Field(default=50, ge=1)

    # Cadence (seconds)
    progress_interval_seconds: float = 0.25
    save_interval_seconds: float = 2.0

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def progress_file(self) -> Path:
        return self.data_dir / "batch_progress.json"

    @property
    def history_dir(self) -> Path:
        return self.data_dir / "batch-history"

    @property
    def history_index_file(self) -> Path:
        return self.data_dir / "history_index.json"

    @property
    def integrity_key_file(self) -> Path:
        return self.data_dir / ".integrity_key"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
