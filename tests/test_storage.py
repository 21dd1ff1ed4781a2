from __future__ import annotations

import io
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from image_compression import ArtifactKind, InvalidRequestError, StorageError, StorageManager
from image_compression.utils import generate_file_id


@pytest.fixture
def storage(storage_root: Path) -> StorageManager:
    return StorageManager(storage_root)


def test_save_bytes_and_stream(storage: StorageManager, storage_root: Path) -> None:
    file_id = generate_file_id()

    original = storage.save(b"abc", file_id, ".JPG")
    compressed = storage.save(io.BytesIO(b"defg"), file_id, "webp", ArtifactKind.COMPRESSED)

    assert original == storage_root / f"{file_id}_original.jpg"
    assert original.read_bytes() == b"abc"
    assert compressed == storage_root / f"{file_id}_compressed.webp"
    assert compressed.read_bytes() == b"defg"


def test_save_rejects_malformed_identifier(storage: StorageManager, storage_root: Path) -> None:
    with pytest.raises(InvalidRequestError):
        storage.save(b"abc", "../escape", ".jpg")
    assert not storage_root.exists()


def test_unsafe_extension_is_replaced(storage: StorageManager) -> None:
    file_id = generate_file_id()
    path = storage.save(b"abc", file_id, "/../../x")
    assert path.name == f"{file_id}_original.bin"


def test_save_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    storage = StorageManager(blocker)

    with pytest.raises(StorageError) as excinfo:
        storage.save(b"abc", generate_file_id(), ".jpg")
    assert excinfo.value.code == "STORAGE_ERROR"


def test_locate_returns_open_stream(storage: StorageManager) -> None:
    file_id = generate_file_id()
    storage.save(b"compressed-bytes", file_id, ".webp", ArtifactKind.COMPRESSED)
    storage.save(b"original-bytes", file_id, ".png")

    located = storage.locate(file_id)

    assert located is not None
    with located.stream:
        assert located.stream.read() == b"compressed-bytes"
    assert located.mime_type == "image/webp"
    assert located.filename == f"{file_id}_compressed.webp"


def test_locate_unknown_extension_uses_generic_mime(storage: StorageManager) -> None:
    file_id = generate_file_id()
    storage.save(b"x", file_id, ".dat", ArtifactKind.COMPRESSED)

    located = storage.locate(file_id)

    assert located is not None
    located.stream.close()
    assert located.mime_type == "application/octet-stream"


def test_locate_missing_artifact(storage: StorageManager) -> None:
    storage.ensure_root()
    assert storage.locate(generate_file_id()) is None


@pytest.mark.parametrize(
    "file_id",
    [
        "../../etc/passwd",
        "",
        "A" * 32,
        "a" * 31,
        "a" * 33,
        "a" * 32 + "\n",
        "*" * 32,
        "[a-f]" * 6,
        "0123456789abcdef0123456789abcde?",
        None,
    ],
)
def test_locate_rejects_malformed_identifiers_before_touching_disk(
    storage: StorageManager, monkeypatch: pytest.MonkeyPatch, file_id
) -> None:
    def forbidden(*args, **kwargs):
        raise AssertionError("filesystem accessed for a malformed identifier")

    monkeypatch.setattr(Path, "glob", forbidden)
    monkeypatch.setattr(Path, "open", forbidden)

    assert storage.locate(file_id) is None


@pytest.mark.skipif(os.name != "posix", reason="symlinks need POSIX permissions")
def test_locate_refuses_symlink_out_of_root(storage: StorageManager, tmp_path: Path) -> None:
    secret = tmp_path / "secret.jpg"
    secret.write_bytes(b"top secret")
    file_id = generate_file_id()
    storage.ensure_root()
    (storage.root / f"{file_id}_compressed.jpg").symlink_to(secret)

    assert storage.locate(file_id) is None


def test_delete_stays_inside_root(storage: StorageManager, tmp_path: Path) -> None:
    outside = tmp_path / "outside.txt"
    outside.write_text("keep me")
    storage.ensure_root()

    assert storage.delete(outside) is False
    assert outside.exists()
    assert storage.delete(storage.root / "missing.jpg") is False


def test_size_of(storage: StorageManager) -> None:
    path = storage.save(b"12345", generate_file_id(), ".jpg")
    assert StorageManager.size_of(path) == 5
    assert StorageManager.size_of(storage.root / "missing") is None


def test_list_with_age(storage: StorageManager) -> None:
    assert storage.list_with_age() == []

    path = storage.save(b"abc", generate_file_id(), ".jpg")
    (storage.root / "nested").mkdir()
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()
    os.utime(path, (stamp, stamp))

    listed = storage.list_with_age()

    assert len(listed) == 1
    assert listed[0].path == path
    assert listed[0].size == 3
    assert listed[0].modified_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
