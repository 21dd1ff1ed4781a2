"""Checks applied to an upload before it is handed to the compression service."""

from __future__ import annotations

import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .exceptions import FileTooLargeError, InvalidRequestError, UnsupportedImageTypeError
from .formats import FormatDescriptor, FormatRegistry
from .utils import format_file_size

logger = logging.getLogger(__name__)

GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}
# Pillow reports multi-picture camera JPEGs as MPO.
PILLOW_ALIASES = {"MPO": "jpeg"}


class UploadValidator:
    def __init__(self, registry: FormatRegistry, max_file_size_bytes: int = 10 * 1024 * 1024) -> None:
        self.registry = registry
        self.max_file_size_bytes = max_file_size_bytes

    def validate(self, data: bytes, filename: Optional[str], content_type: Optional[str] = None) -> FormatDescriptor:
        """Return the detected format of ``data`` or raise an ``InvalidRequestError``.

        Checks run from cheapest to most expensive: emptiness, size, the
        filename extension, the declared MIME type, and finally the content
        itself as identified by Pillow.
        """

        if not data:
            raise InvalidRequestError("No file provided or file is empty")

        self.check_size(len(data))

        by_extension = self.registry.by_extension(_suffix(filename))
        if by_extension is None or not self.registry.is_supported(by_extension):
            raise UnsupportedImageTypeError(
                f"File extension '{_suffix(filename)}' is not allowed. Supported formats: {self._allowed()}"
            )

        declared_type = (content_type or "").split(";", 1)[0].strip().lower()
        declared = None
        if declared_type not in GENERIC_CONTENT_TYPES:
            declared = self.registry.by_mime_type(declared_type)
            if declared is None or not self.registry.is_supported(declared):
                raise UnsupportedImageTypeError(f"MIME type '{declared_type}' is not allowed")

        detected = self._detect(data)
        if declared is not None and declared.format != detected.format:
            logger.warning(
                "MIME type mismatch for %s: declared=%s, detected=%s", filename, declared_type, detected.mime_type
            )
            raise UnsupportedImageTypeError(
                f"File content type mismatch. Declared: {declared_type}, Detected: {detected.mime_type}"
            )
        return detected

    def check_size(self, size: Optional[int]) -> None:
        """Raise ``FileTooLargeError`` for a known size above the limit."""
        if size is not None and size > self.max_file_size_bytes:
            raise FileTooLargeError(
                f"File size ({format_file_size(size)}) exceeds maximum allowed size "
                f"({format_file_size(self.max_file_size_bytes)})"
            )

    @property
    def read_limit(self) -> int:
        """Bytes to read from an upload: one past the limit is enough to tell it is too large."""
        return self.max_file_size_bytes + 1

    def _detect(self, data: bytes) -> FormatDescriptor:
        try:
            with Image.open(io.BytesIO(data)) as image:
                pillow_format = image.format
        except (UnidentifiedImageError, OSError) as exc:
            raise UnsupportedImageTypeError("Could not determine file type from content") from exc

        detected = self.registry.by_name(PILLOW_ALIASES.get(pillow_format, pillow_format))
        if detected is None or not self.registry.is_supported(detected):
            raise UnsupportedImageTypeError(f"File content indicates type '{pillow_format}' which is not allowed")
        return detected

    def _allowed(self) -> str:
        return ", ".join(desc.name for desc in self.registry.formats)


def _suffix(filename: Optional[str]) -> str:
    if not filename or "." not in filename:
        return ""
    return "." + filename.rsplit(".", 1)[1].lower()
