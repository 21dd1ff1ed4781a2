from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = APP_DIR.parent
STORAGE_ROOT = PROJECT_ROOT / "storage"
TEMP_ROOT = STORAGE_ROOT / "temp"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="APP_", env_file=".env", extra="ignore")

    app_name: str = "Image Compression API"
    app_version: str = "1.0.0"
    storage_dir: Path = Field(default_factory=lambda: TEMP_ROOT)

    max_file_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_formats: List[str] = Field(default_factory=lambda: ["jpeg", "png", "webp", "bmp"])
    default_quality: int = Field(default=80, ge=1, le=100)
    temp_file_retention_minutes: int = Field(default=30, gt=0)
    ffmpeg_path: str = ""
    max_concurrent_operations: int = Field(default=5, ge=1)
    ffmpeg_timeout_seconds: int = Field(default=120, gt=0)
    cleanup_interval_minutes: int = Field(default=10, gt=0)
    download_url_prefix: str = "/api/image/download"

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_methods: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_headers: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_credentials: bool = False

    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def retention(self) -> timedelta:
        return timedelta(minutes=self.temp_file_retention_minutes)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(minutes=self.cleanup_interval_minutes)

    def ensure_directories(self) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
