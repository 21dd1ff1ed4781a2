"""Compression service coordinating storage, format resolution and FFmpeg."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Union

from .exceptions import InvalidRequestError, ToolFailureError, UnsupportedImageTypeError
from .executor import FFmpegExecutor
from .formats import SAME_FORMAT, FormatDescriptor, FormatRegistry
from .storage import ArtifactKind, LocatedArtifact, StorageManager
from .utils import extension_of, generate_file_id, sanitize_excerpt, secure_filename

logger = logging.getLogger(__name__)

MIN_QUALITY = 1
MAX_QUALITY = 100


def compute_ratio(original_size: int, compressed_size: int) -> float:
    """Percentage saved; negative when the output grew, 0.0 for an empty input."""
    if original_size <= 0:
        return 0.0
    return (1.0 - compressed_size / original_size) * 100


@dataclass(slots=True)
class CompressionJob:
    file_id: str
    input_path: Path
    output_path: Path
    quality: int
    output_format: FormatDescriptor
    started_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True, slots=True)
class CompressionResult:
    original_size: int
    compressed_size: int
    compression_ratio: float
    format: str
    file_id: str
    download_url: str
    quality: int
    processing_time_ms: int
    compressed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": round(self.compression_ratio, 2),
            "format": self.format,
            "file_id": self.file_id,
            "download_url": self.download_url,
            "quality": self.quality,
            "processing_time_ms": self.processing_time_ms,
            "compressed_at": self.compressed_at.isoformat(),
        }


class CompressionService:
    """Runs one compression job per call, at most ``max_concurrent_operations`` at a time.

    Callers beyond the limit wait on the semaphore instead of being turned
    away. A failed FFmpeg run leaves the original upload on disk; the
    retention sweep removes it later.
    """

    def __init__(
        self,
        storage: StorageManager,
        executor: FFmpegExecutor,
        registry: FormatRegistry,
        *,
        max_concurrent_operations: int = 5,
        timeout_seconds: float = 120,
        default_quality: int = 80,
        download_url_prefix: str = "/api/image/download",
    ) -> None:
        if max_concurrent_operations < 1:
            raise ValueError("max_concurrent_operations must be at least 1")
        self.storage = storage
        self.executor = executor
        self.registry = registry
        self.max_concurrent_operations = max_concurrent_operations
        self.timeout_seconds = timeout_seconds
        self.default_quality = default_quality
        self.download_url_prefix = download_url_prefix.rstrip("/")
        self._semaphore = asyncio.Semaphore(max_concurrent_operations)
        self._active = 0

    @property
    def active_operations(self) -> int:
        return self._active

    async def compress(
        self,
        data: Union[bytes, bytearray, BinaryIO],
        filename: Optional[str],
        quality: Optional[int] = None,
        requested_format: Optional[str] = None,
    ) -> CompressionResult:
        quality = self._validate_quality(quality)
        self._validate_requested_format(requested_format)

        async with self._slot():
            job = await self._prepare_job(data, filename, quality, requested_format)
            return await self._run_job(job)

    async def locate(self, file_id: str) -> Optional[LocatedArtifact]:
        return await asyncio.to_thread(self.storage.locate, file_id)

    async def health(self) -> dict:
        available, version = await self.executor.probe()
        return {"ffmpeg_available": available, "ffmpeg_version": version}

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._active += 1
            try:
                yield
            finally:
                self._active -= 1

    def _validate_quality(self, quality: Optional[int]) -> int:
        if quality is None:
            quality = self.default_quality
        if isinstance(quality, bool) or not isinstance(quality, int):
            raise InvalidRequestError("Quality must be an integer between 1 and 100")
        if not MIN_QUALITY <= quality <= MAX_QUALITY:
            raise InvalidRequestError(f"Quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {quality}")
        return quality

    def _validate_requested_format(self, requested_format: Optional[str]) -> None:
        if not requested_format or requested_format.strip().lower() == SAME_FORMAT:
            return
        descriptor = self.registry.by_name(requested_format)
        if descriptor is not None and not self.registry.is_supported(descriptor):
            allowed = ", ".join(desc.name for desc in self.registry.formats)
            raise UnsupportedImageTypeError(
                f"Format '{descriptor.name}' is disabled. Supported formats: {allowed}"
            )

    async def _prepare_job(
        self,
        data: Union[bytes, bytearray, BinaryIO],
        filename: Optional[str],
        quality: int,
        requested_format: Optional[str],
    ) -> CompressionJob:
        started_at = time.monotonic()
        file_id = generate_file_id()
        source_ext = extension_of(filename)
        logger.info(
            "Starting compression for %s", secure_filename(filename or "upload"), extra={"file_id": file_id}
        )

        input_path = await asyncio.to_thread(
            self.storage.save, data, file_id, source_ext, ArtifactKind.ORIGINAL
        )
        descriptor = self.registry.resolve(requested_format, source_ext)
        output_path = self.storage.path_for(file_id, ArtifactKind.COMPRESSED, descriptor.extension)
        return CompressionJob(
            file_id=file_id,
            input_path=input_path,
            output_path=output_path,
            quality=quality,
            output_format=descriptor,
            started_at=started_at,
        )

    async def _run_job(self, job: CompressionJob) -> CompressionResult:
        arguments = self.registry.arguments_for(job.output_format, job.quality, job.input_path, job.output_path)
        try:
            execution = await self.executor.execute(arguments, self.timeout_seconds)
        except BaseException:
            await asyncio.to_thread(self.storage.delete, job.output_path)
            raise

        if not execution.success:
            await asyncio.to_thread(self.storage.delete, job.output_path)
            raise ToolFailureError(
                "Image compression failed",
                exit_code=execution.exit_code,
                stderr=execution.stderr,
                excerpt=sanitize_excerpt(execution.stderr, redact=(self.storage.root.resolve(), self.storage.root)),
            )

        original_size = await asyncio.to_thread(self.storage.size_of, job.input_path)
        compressed_size = await asyncio.to_thread(self.storage.size_of, job.output_path)
        if compressed_size is None:
            raise ToolFailureError("Image compression produced no output", exit_code=execution.exit_code)
        original_size = original_size or 0

        ratio = compute_ratio(original_size, compressed_size)
        await asyncio.to_thread(self.storage.delete, job.input_path)

        elapsed_ms = int((time.monotonic() - job.started_at) * 1000)
        logger.info(
            "Compression completed. Original: %d bytes, Compressed: %d bytes, Ratio: %.1f%%",
            original_size,
            compressed_size,
            ratio,
            extra={"file_id": job.file_id},
        )
        return CompressionResult(
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=ratio,
            format=job.output_format.name,
            file_id=job.file_id,
            download_url=f"{self.download_url_prefix}/{job.file_id}",
            quality=job.quality,
            processing_time_ms=elapsed_ms,
        )
