"""Flat on-disk storage for original and compressed artifacts."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from .exceptions import InvalidRequestError, StorageError
from .formats import FormatRegistry
from .utils import is_valid_file_id, normalize_extension

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ArtifactKind(str, Enum):
    ORIGINAL = "original"
    COMPRESSED = "compressed"


@dataclass(frozen=True, slots=True)
class ArtifactInfo:
    path: Path
    modified_at: datetime
    size: int


@dataclass(slots=True)
class LocatedArtifact:
    """An open artifact handed to the caller, who must close ``stream``."""

    stream: BinaryIO
    mime_type: str
    filename: str


class StorageManager:
    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, file_id: str, kind: ArtifactKind, extension: str) -> Path:
        if not is_valid_file_id(file_id):
            raise InvalidRequestError("Invalid file identifier")
        return self.root / f"{file_id}_{ArtifactKind(kind).value}{normalize_extension(extension)}"

    def save(
        self,
        data: Union[bytes, bytearray, BinaryIO],
        file_id: str,
        extension: str,
        kind: ArtifactKind = ArtifactKind.ORIGINAL,
    ) -> Path:
        target = self.path_for(file_id, kind, extension)
        try:
            self.ensure_root()
            with target.open("wb") as buffer:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    buffer.write(data)
                else:
                    shutil.copyfileobj(data, buffer)
        except OSError as exc:
            logger.error("Failed to save %s: %s", target.name, exc)
            raise StorageError("Could not store the uploaded file") from exc

        logger.debug("Saved %s", target.name)
        return target

    def locate(self, file_id: str) -> Optional[LocatedArtifact]:
        """Open the compressed artifact for ``file_id``, or return None.

        The identifier is checked before it is used in any path; the match
        is then re-checked against the resolved storage root.
        """

        if not is_valid_file_id(file_id):
            logger.warning("Rejected malformed file identifier")
            return None

        try:
            root = self.root.resolve()
            candidates = sorted(p for p in self.root.glob(f"{file_id}_{ArtifactKind.COMPRESSED.value}.*") if p.is_file())
            if not candidates:
                logger.info("Compressed file not found for %s", file_id)
                return None

            path = candidates[0].resolve()
            if not path.is_relative_to(root):
                logger.error("Path traversal detected for %s: %s", file_id, path)
                return None

            descriptor = FormatRegistry.by_extension(path.suffix)
            mime_type = descriptor.mime_type if descriptor else DEFAULT_MIME_TYPE
            stream = path.open("rb")
        except OSError as exc:
            logger.error("Error opening compressed file %s: %s", file_id, exc)
            return None

        return LocatedArtifact(stream=stream, mime_type=mime_type, filename=path.name)

    def delete(self, path: Union[str, Path]) -> bool:
        """Best-effort removal of a file inside the storage root."""
        try:
            target = Path(path).resolve()
            if not target.is_relative_to(self.root.resolve()):
                logger.error("Refusing to delete path outside storage root: %s", path)
                return False
            if not target.is_file():
                return False
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", path, exc)
            return False

        logger.debug("Deleted %s", target.name)
        return True

    @staticmethod
    def size_of(path: Union[str, Path]) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return None

    def list_with_age(self, directory: Optional[Union[str, Path]] = None) -> List[ArtifactInfo]:
        base = Path(directory) if directory is not None else self.root
        if not base.is_dir():
            return []

        artifacts: List[ArtifactInfo] = []
        for item in base.iterdir():
            try:
                if not item.is_file():
                    continue
                stat = item.stat()
            except FileNotFoundError:
                continue
            artifacts.append(
                ArtifactInfo(
                    path=item,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size,
                )
            )
        return artifacts
