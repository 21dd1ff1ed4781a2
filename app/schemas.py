from __future__ import annotations

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiError(BaseModel):
    message: str
    code: str
    retryable: bool = False


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None


class CompressionResultResponse(BaseModel):
    original_size: int
    compressed_size: int
    compression_ratio: float
    format: str
    file_id: str
    download_url: str
    quality: int
    processing_time_ms: int
    compressed_at: datetime


class HealthStatus(BaseModel):
    is_healthy: bool
    ffmpeg_available: bool
    ffmpeg_version: str
    max_file_size: int
    supported_formats: List[str]
    default_quality: int
    sweeper_running: bool
    last_cleanup: Optional[datetime] = None
    timestamp: datetime


class CleanupResult(BaseModel):
    deleted_count: int
    cleanup_time: datetime


class CompressionStats(BaseModel):
    max_file_size: int
    supported_formats: List[str]
    default_quality: int
    max_concurrent_operations: int
    active_operations: int
    temp_file_retention_minutes: int
    ffmpeg_timeout_seconds: int
    cleanup_interval_minutes: int
