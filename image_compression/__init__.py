"""Public API for the image compression package."""

from .exceptions import (
    ArtifactNotFoundError,
    FileTooLargeError,
    ImageCompressionError,
    InvalidRequestError,
    StorageError,
    ToolFailureError,
    ToolTimeoutError,
    ToolUnavailableError,
    UnsupportedImageTypeError,
)
from .executor import ExecutionResult, FFmpegExecutor
from .formats import FormatDescriptor, FormatRegistry, ImageFormat
from .service import CompressionJob, CompressionResult, CompressionService, compute_ratio
from .storage import ArtifactInfo, ArtifactKind, LocatedArtifact, StorageManager
from .sweeper import RetentionSweeper
from .validation import UploadValidator
from . import utils

__all__ = [
    "ArtifactInfo",
    "ArtifactKind",
    "ArtifactNotFoundError",
    "CompressionJob",
    "CompressionResult",
    "CompressionService",
    "ExecutionResult",
    "FFmpegExecutor",
    "FileTooLargeError",
    "FormatDescriptor",
    "FormatRegistry",
    "ImageCompressionError",
    "ImageFormat",
    "InvalidRequestError",
    "LocatedArtifact",
    "RetentionSweeper",
    "StorageError",
    "StorageManager",
    "ToolFailureError",
    "ToolTimeoutError",
    "ToolUnavailableError",
    "UnsupportedImageTypeError",
    "UploadValidator",
    "compute_ratio",
    "utils",
]
