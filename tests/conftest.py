from __future__ import annotations

import io
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

# Every fake tool answers ``-version`` like a real FFmpeg build before
# running its own body.
TOOL_PREAMBLE = """\
import json
import os
import sys
import time

args = sys.argv[1:]
if args == ["-version"]:
    print("ffmpeg version 6.1-fake Copyright (c) 2000-2023 the FFmpeg developers")
    sys.exit(0)
"""

COPY_QUARTER = """\
source = args[args.index("-i") + 1]
target = args[-1]
with open(source, "rb") as fh:
    data = fh.read()
with open(target, "wb") as fh:
    fh.write(data[: len(data) // 4])
"""


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable Python script that stands in for FFmpeg."""

    def _make(body: str, name: str = "fake-ffmpeg", preamble: bool = True) -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / name
        source = f"#!{sys.executable}\n"
        if preamble:
            source += TOOL_PREAMBLE
        source += textwrap.dedent(body)
        path.write_text(source, encoding="utf-8")
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def quarter_tool(make_tool: Callable[..., Path]) -> Path:
    return make_tool(COPY_QUARTER)


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "storage"


def image_bytes(fmt: str, size: tuple[int, int] = (16, 16)) -> bytes:
    buffer = io.BytesIO()
    image = Image.new("RGB", size, (255, 0, 0))
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    return image_bytes


@pytest.fixture
def sample_jpeg() -> bytes:
    return image_bytes("JPEG")
