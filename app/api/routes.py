from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse

from app.core.config import Settings
from app.dependencies import get_compression_service, get_settings_dependency, get_sweeper, get_validator
from app.schemas import ApiResponse, CleanupResult, CompressionResultResponse, CompressionStats, HealthStatus
from image_compression import ArtifactNotFoundError, CompressionService, RetentionSweeper, UploadValidator

logger = logging.getLogger(__name__)

image_router = APIRouter(prefix="/api/image", tags=["image"])

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    with stream:
        while chunk := stream.read(DOWNLOAD_CHUNK_SIZE):
            yield chunk


@image_router.post("/compress", response_model=ApiResponse[CompressionResultResponse], name="compress_image")
async def compress_image(
    file: UploadFile = File(...),
    quality: Optional[int] = Form(None),
    format: Optional[str] = Form(None),
    service: CompressionService = Depends(get_compression_service),
    validator: UploadValidator = Depends(get_validator),
) -> ApiResponse[CompressionResultResponse]:
    logger.info("Received compression request: quality=%s, format=%s", quality, format)
    try:
        validator.check_size(file.size)
        data = await file.read(validator.read_limit)
    finally:
        await file.close()

    validator.validate(data, file.filename, file.content_type)
    result = await service.compress(data, file.filename, quality, format)
    return ApiResponse[CompressionResultResponse](
        success=True,
        data=CompressionResultResponse(**result.to_dict()),
    )


@image_router.get("/download/{file_id}", name="download_compressed_image")
async def download_compressed_image(
    file_id: str,
    service: CompressionService = Depends(get_compression_service),
) -> StreamingResponse:
    located = await service.locate(file_id)
    if located is None:
        raise ArtifactNotFoundError("File not found")

    logger.info("File download starting: %s", located.filename, extra={"file_id": file_id})
    return StreamingResponse(
        _iter_stream(located.stream),
        media_type=located.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{located.filename}"'},
    )


@image_router.get("/health", response_model=ApiResponse[HealthStatus], name="image_health")
async def get_health(
    service: CompressionService = Depends(get_compression_service),
    sweeper: RetentionSweeper = Depends(get_sweeper),
    settings: Settings = Depends(get_settings_dependency),
) -> ApiResponse[HealthStatus]:
    health = await service.health()
    status = HealthStatus(
        is_healthy=health["ffmpeg_available"],
        ffmpeg_available=health["ffmpeg_available"],
        ffmpeg_version=health["ffmpeg_version"],
        max_file_size=settings.max_file_size_bytes,
        supported_formats=[desc.name for desc in service.registry.formats],
        default_quality=settings.default_quality,
        sweeper_running=sweeper.running,
        last_cleanup=sweeper.last_run,
        timestamp=datetime.now(timezone.utc),
    )
    return ApiResponse[HealthStatus](success=True, data=status)


@image_router.post("/cleanup", response_model=ApiResponse[CleanupResult], name="cleanup_expired_files")
async def cleanup_expired_files(sweeper: RetentionSweeper = Depends(get_sweeper)) -> ApiResponse[CleanupResult]:
    logger.info("Manual cleanup requested")
    deleted = await sweeper.sweep()
    return ApiResponse[CleanupResult](
        success=True,
        data=CleanupResult(deleted_count=deleted, cleanup_time=datetime.now(timezone.utc)),
    )


@image_router.get("/stats", response_model=ApiResponse[CompressionStats], name="compression_stats")
async def get_statistics(
    service: CompressionService = Depends(get_compression_service),
    settings: Settings = Depends(get_settings_dependency),
) -> ApiResponse[CompressionStats]:
    stats = CompressionStats(
        max_file_size=settings.max_file_size_bytes,
        supported_formats=[desc.name for desc in service.registry.formats],
        default_quality=service.default_quality,
        max_concurrent_operations=service.max_concurrent_operations,
        active_operations=service.active_operations,
        temp_file_retention_minutes=settings.temp_file_retention_minutes,
        ffmpeg_timeout_seconds=settings.ffmpeg_timeout_seconds,
        cleanup_interval_minutes=settings.cleanup_interval_minutes,
    )
    return ApiResponse[CompressionStats](success=True, data=stats)
