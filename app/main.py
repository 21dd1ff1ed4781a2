from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import image_router
from app.core.config import Settings, get_settings
from app.core.logging import setup_logging
from app.dependencies import ServiceContainer, set_container
from image_compression import (
    ArtifactNotFoundError,
    CompressionService,
    FFmpegExecutor,
    FileTooLargeError,
    FormatRegistry,
    ImageCompressionError,
    InvalidRequestError,
    RetentionSweeper,
    StorageManager,
    ToolFailureError,
    ToolTimeoutError,
    ToolUnavailableError,
    UnsupportedImageTypeError,
    UploadValidator,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS = (
    (FileTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (UnsupportedImageTypeError, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (ArtifactNotFoundError, status.HTTP_404_NOT_FOUND),
    (ToolTimeoutError, status.HTTP_408_REQUEST_TIMEOUT),
    (ToolUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ToolFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _error_response(status_code: int, message: str, code: str, retryable: bool = False) -> JSONResponse:
    error = {"message": message, "code": code, "retryable": retryable}
    return JSONResponse(status_code=status_code, content={"success": False, "data": None, "error": error})


def build_container(settings: Settings) -> ServiceContainer:
    registry = FormatRegistry(settings.allowed_formats)
    storage = StorageManager(settings.storage_dir)
    service = CompressionService(
        storage,
        FFmpegExecutor(settings.ffmpeg_path),
        registry,
        max_concurrent_operations=settings.max_concurrent_operations,
        timeout_seconds=settings.ffmpeg_timeout_seconds,
        default_quality=settings.default_quality,
        download_url_prefix=settings.download_url_prefix,
    )
    sweeper = RetentionSweeper(storage, retention=settings.retention, interval=settings.cleanup_interval)
    validator = UploadValidator(registry, max_file_size_bytes=settings.max_file_size_bytes)
    return ServiceContainer(settings=settings, compression_service=service, sweeper=sweeper, validator=validator)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or get_settings()
    container = container or build_container(settings)
    set_container(container)

    app = FastAPI(title=settings.app_name, version=settings.app_version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        expose_headers=["Content-Disposition"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.0fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        return response

    @app.exception_handler(ImageCompressionError)
    async def handle_compression_error(request: Request, exc: ImageCompressionError) -> JSONResponse:
        status_code = next(
            (code for exc_type, code in ERROR_STATUS if isinstance(exc, exc_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if isinstance(exc, ToolFailureError):
            logger.error("Compression failed (exit=%s): %s", exc.exit_code, exc.excerpt)
        elif status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        else:
            logger.warning("%s: %s", exc.code, exc.message)
        return _error_response(status_code, exc.message, exc.code, exc.retryable)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = ", ".join(".".join(str(part) for part in err.get("loc", ())) for err in exc.errors())
        return _error_response(status.HTTP_400_BAD_REQUEST, f"Invalid request parameters: {fields}", InvalidRequestError.code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred", "UNKNOWN_ERROR")

    @app.on_event("startup")
    async def on_startup() -> None:
        container.settings.ensure_directories()
        container.sweeper.start()
        available = await container.compression_service.executor.is_available()
        if not available:
            logger.warning("FFmpeg is not available; compression requests will fail until it is installed")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await container.sweeper.stop()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(image_router)
    return app


def _build_default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    return create_app(settings)


app = _build_default_app()
