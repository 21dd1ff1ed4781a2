"""Utility helpers for the image compression service."""

from __future__ import annotations

import re
import secrets
from pathlib import Path
from typing import Iterable

FILE_ID_BYTES = 16
_file_id_re = re.compile(r"[0-9a-f]{32}")
_extension_re = re.compile(r"\.[a-z0-9]{1,10}")
_filename_strip_re = re.compile(r"[^A-Za-z0-9._-]+")

DEFAULT_EXTENSION = ".bin"
EXCERPT_LIMIT = 500


def generate_file_id() -> str:
    """Return a fresh 32-character lowercase hex identifier (128 bits)."""
    return secrets.token_hex(FILE_ID_BYTES)


def is_valid_file_id(value: object) -> bool:
    """Return True only for strings that are exactly 32 lowercase hex chars."""
    return isinstance(value, str) and _file_id_re.fullmatch(value) is not None


def normalize_extension(extension: str | None) -> str:
    """Lowercase an extension and make sure it is a short, dotted, alphanumeric suffix.

    Anything else (path separators, shell metacharacters, empty input) maps
    to ``.bin`` so it can be safely appended to a generated filename.
    """

    if not extension:
        return DEFAULT_EXTENSION
    ext = extension.strip().lower()
    if not ext.startswith("."):
        ext = f".{ext}"
    if _extension_re.fullmatch(ext) is None:
        return DEFAULT_EXTENSION
    return ext


def extension_of(filename: str | None) -> str:
    """Return the normalized extension of an uploaded filename hint."""
    if not filename:
        return DEFAULT_EXTENSION
    return normalize_extension(Path(filename).suffix)


def secure_filename(filename: str) -> str:
    """Return a filename safe for logs and headers."""
    name = Path(filename).name
    if not name:
        return "file"
    name = _filename_strip_re.sub("_", name)
    return name or "file"


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 B"
    units = ("B", "KB", "MB", "GB")
    value = float(size)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        value /= 1024
        order += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[order]}"


def sanitize_excerpt(text: str, redact: Iterable[str | Path] = (), limit: int = EXCERPT_LIMIT) -> str:
    """Trim tool output to its tail and strip local paths before it leaves the process."""

    excerpt = text or ""
    for item in redact:
        token = str(item)
        if token:
            excerpt = excerpt.replace(token, "<storage>")
    excerpt = excerpt.strip()
    if len(excerpt) > limit:
        excerpt = "..." + excerpt[-limit:]
    return excerpt
