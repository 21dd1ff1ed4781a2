"""Custom exceptions for the image compression service."""

from __future__ import annotations

from typing import Optional


class ImageCompressionError(Exception):
    """Base exception for all image compression related errors."""

    code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidRequestError(ImageCompressionError):
    """Raised when request parameters (quality, format, identifier) are invalid."""

    code = "INVALID_PARAMETERS"


class UnsupportedImageTypeError(InvalidRequestError):
    """Raised when an unsupported or disallowed image format is encountered."""

    code = "INVALID_FILE_FORMAT"


class FileTooLargeError(InvalidRequestError):
    """Raised when an upload exceeds the configured size limit."""

    code = "FILE_TOO_LARGE"


class ArtifactNotFoundError(ImageCompressionError):
    """Raised when a compressed artifact is absent or its identifier is malformed."""

    code = "FILE_NOT_FOUND"


class ToolUnavailableError(ImageCompressionError):
    """Raised when the FFmpeg binary cannot be launched."""

    code = "FFMPEG_NOT_FOUND"


class ToolTimeoutError(ImageCompressionError):
    """Raised when FFmpeg runs past its deadline and has been killed."""

    code = "PROCESSING_TIMEOUT"
    retryable = True

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Compression timed out after {timeout_seconds:g} seconds; try a smaller image"
        )
        self.timeout_seconds = timeout_seconds


class ToolFailureError(ImageCompressionError):
    """Raised when FFmpeg exits with a nonzero code or produces no output."""

    code = "FFMPEG_ERROR"

    def __init__(self, message: str, *, exit_code: Optional[int] = None, stderr: str = "", excerpt: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.excerpt = excerpt


class StorageError(ImageCompressionError):
    """Raised when an upload cannot be written to the storage directory."""

    code = "STORAGE_ERROR"
