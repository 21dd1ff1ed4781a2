"""Supported output formats and the FFmpeg arguments that produce them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SAME_FORMAT = "same"


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    BMP = "bmp"


@dataclass(frozen=True, slots=True)
class FormatDescriptor:
    """Static metadata for one output format.

    ``quality_scale`` maps the public 1-100 quality onto the codec's own
    range as ``(value_at_1, value_at_100)``; mjpeg's ``-q:v`` runs backwards
    (2 is best, 31 is worst) while libwebp's runs forwards.
    """

    format: ImageFormat
    extensions: Tuple[str, ...]
    mime_types: Tuple[str, ...]
    container: str
    codec: str
    supports_quality: bool
    quality_flag: Optional[str] = None
    quality_scale: Optional[Tuple[int, int]] = None
    compression_level: Optional[int] = None

    @property
    def name(self) -> str:
        return self.format.value

    @property
    def extension(self) -> str:
        return self.extensions[0]

    @property
    def mime_type(self) -> str:
        return self.mime_types[0]

    def scale_quality(self, quality: int) -> int:
        if self.quality_scale is None:
            return quality
        low, high = self.quality_scale
        clamped = min(max(int(quality), 1), 100)
        return round(low + (high - low) * (clamped - 1) / 99)


FORMATS: Dict[ImageFormat, FormatDescriptor] = {
    ImageFormat.JPEG: FormatDescriptor(
        format=ImageFormat.JPEG,
        extensions=(".jpg", ".jpeg"),
        mime_types=("image/jpeg", "image/jpg"),
        container="image2",
        codec="mjpeg",
        supports_quality=True,
        quality_flag="-q:v",
        quality_scale=(31, 2),
    ),
    ImageFormat.PNG: FormatDescriptor(
        format=ImageFormat.PNG,
        extensions=(".png",),
        mime_types=("image/png",),
        container="image2",
        codec="png",
        supports_quality=False,
        compression_level=9,
    ),
    ImageFormat.WEBP: FormatDescriptor(
        format=ImageFormat.WEBP,
        extensions=(".webp",),
        mime_types=("image/webp",),
        container="webp",
        codec="libwebp",
        supports_quality=True,
        quality_flag="-q:v",
        quality_scale=(1, 100),
    ),
    ImageFormat.BMP: FormatDescriptor(
        format=ImageFormat.BMP,
        extensions=(".bmp",),
        mime_types=("image/bmp", "image/x-bmp"),
        container="image2",
        codec="bmp",
        supports_quality=False,
    ),
}

FORMAT_ALIASES = {"jpg": ImageFormat.JPEG}

_BY_EXTENSION = {ext: desc for desc in FORMATS.values() for ext in desc.extensions}
_BY_MIME_TYPE = {mime: desc for desc in FORMATS.values() for mime in desc.mime_types}


class FormatRegistry:
    """Looks up format descriptors and builds FFmpeg argument vectors.

    ``allowed_formats`` is the operator allow-list; formats missing from it
    are still known (and resolvable by lookup) but ``is_supported`` reports
    them as disabled.
    """

    def __init__(
        self,
        allowed_formats: Optional[Iterable[str]] = None,
        default_format: ImageFormat = ImageFormat.JPEG,
    ) -> None:
        if allowed_formats is None:
            allowed = set(FORMATS)
        else:
            allowed = set()
            for name in allowed_formats:
                descriptor = self.by_name(name)
                if descriptor is None:
                    logger.warning("Ignoring unknown format in allow-list: %s", name)
                    continue
                allowed.add(descriptor.format)
        self._allowed = frozenset(allowed)
        self.default = FORMATS[default_format]

    @property
    def formats(self) -> List[FormatDescriptor]:
        return [desc for fmt, desc in FORMATS.items() if fmt in self._allowed]

    @staticmethod
    def by_name(name: Optional[str]) -> Optional[FormatDescriptor]:
        if not name:
            return None
        key = name.strip().lower()
        if key in FORMAT_ALIASES:
            return FORMATS[FORMAT_ALIASES[key]]
        try:
            return FORMATS[ImageFormat(key)]
        except ValueError:
            return None

    @staticmethod
    def by_extension(extension: Optional[str]) -> Optional[FormatDescriptor]:
        if not extension:
            return None
        ext = extension.strip().lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        return _BY_EXTENSION.get(ext)

    @staticmethod
    def by_mime_type(mime_type: Optional[str]) -> Optional[FormatDescriptor]:
        if not mime_type:
            return None
        return _BY_MIME_TYPE.get(mime_type.split(";", 1)[0].strip().lower())

    def is_supported(self, fmt: "str | ImageFormat | FormatDescriptor | None") -> bool:
        descriptor = self._coerce(fmt)
        return descriptor is not None and descriptor.format in self._allowed

    def resolve(self, requested_format: Optional[str], source_extension: Optional[str]) -> FormatDescriptor:
        """Pick the output format for a job.

        An explicit, supported request wins. An unrecognised request falls
        back to the default with a warning rather than failing the job.
        Without a request (or with ``"same"``) the source extension decides,
        again falling back to the default.
        """

        requested = (requested_format or "").strip().lower()
        if requested and requested != SAME_FORMAT:
            if self.is_supported(requested):
                return self.by_name(requested)
            logger.warning(
                "Unsupported format requested: %s, falling back to %s",
                requested_format,
                self.default.name,
            )
            return self.default

        descriptor = self.by_extension(source_extension)
        if descriptor is None or not self.is_supported(descriptor):
            logger.debug("No supported format for extension %r, using %s", source_extension, self.default.name)
            return self.default
        return descriptor

    def extension_for(self, fmt: "str | ImageFormat | FormatDescriptor") -> str:
        return self._require(fmt).extension

    def mime_type_for(self, fmt: "str | ImageFormat | FormatDescriptor") -> str:
        return self._require(fmt).mime_type

    def arguments_for(
        self,
        fmt: "str | ImageFormat | FormatDescriptor",
        quality: int,
        input_path: "str | Path",
        output_path: "str | Path",
    ) -> List[str]:
        """Return the FFmpeg arguments (without the executable) for one conversion.

        Every path and value is its own list element; nothing is quoted or
        joined, so filenames reach the process exactly as given.
        """

        descriptor = self._require(fmt)
        args = [
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(input_path),
            "-frames:v",
            "1",
            "-f",
            descriptor.container,
            "-c:v",
            descriptor.codec,
        ]
        if descriptor.supports_quality and descriptor.quality_flag:
            args.extend([descriptor.quality_flag, str(descriptor.scale_quality(quality))])
        elif descriptor.compression_level is not None:
            args.extend(["-compression_level", str(descriptor.compression_level)])
        args.append(str(output_path))
        return args

    def _coerce(self, fmt: "str | ImageFormat | FormatDescriptor | None") -> Optional[FormatDescriptor]:
        if isinstance(fmt, FormatDescriptor):
            return fmt
        if isinstance(fmt, ImageFormat):
            return FORMATS[fmt]
        return self.by_name(fmt)

    def _require(self, fmt: "str | ImageFormat | FormatDescriptor") -> FormatDescriptor:
        descriptor = self._coerce(fmt)
        if descriptor is None:
            raise ValueError(f"Unknown image format: {fmt!r}")
        return descriptor
