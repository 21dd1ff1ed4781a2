from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path

import pytest

from image_compression import FFmpegExecutor, ToolTimeoutError, ToolUnavailableError

pytestmark = pytest.mark.skipif(os.name != "posix", reason="fake tools are POSIX scripts")


def _wait_for_file(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists() or not path.read_text():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} was never written")
        time.sleep(0.02)


def _pid_gone(pid: int, timeout: float = 5.0) -> bool:
    """True once ``pid`` no longer exists or is a zombie awaiting its reaper."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        try:
            stat = Path(f"/proc/{pid}/stat").read_text()
        except OSError:
            stat = ""
        if stat and stat.rsplit(")", 1)[1].split()[0] == "Z":
            return True
        if time.monotonic() > deadline:
            return False
        time.sleep(0.05)


def _tool_with_grandchild(make_tool, pid_file: Path, grandchild_file: Path) -> Path:
    return make_tool(
        f"""\
        import subprocess
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        with open({str(grandchild_file)!r}, "w") as fh:
            fh.write(str(child.pid))
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(os.getpid()))
        time.sleep(60)
        """
    )


def test_arguments_reach_the_tool_unmodified(make_tool, tmp_path: Path) -> None:
    record = tmp_path / "args.json"
    tool = make_tool(
        f"""\
        with open({str(record)!r}, "w") as fh:
            json.dump(args, fh)
        """
    )
    hostile = "photo'; rm -rf / #`whoami` \"$HOME\" | cat.jpg"
    arguments = ["-y", "-i", hostile, "-f", "image2", str(tmp_path / "a b;c.jpg")]

    result = asyncio.run(FFmpegExecutor(str(tool)).execute(arguments, 10))

    assert result.success
    assert result.exit_code == 0
    assert json.loads(record.read_text()) == arguments


def test_rejects_a_joined_command_string(make_tool) -> None:
    tool = make_tool("")
    with pytest.raises(TypeError):
        asyncio.run(FFmpegExecutor(str(tool)).execute("-i in.jpg out.jpg", 10))


def test_nonzero_exit_is_a_failure_with_stderr(make_tool) -> None:
    tool = make_tool(
        """\
        sys.stderr.write("Invalid data found when processing input\\n")
        sys.exit(3)
        """
    )

    result = asyncio.run(FFmpegExecutor(str(tool)).execute(["-i", "x"], 10))

    assert not result.success
    assert result.exit_code == 3
    assert "Invalid data found" in result.stderr
    assert result.duration >= 0


def test_large_output_on_both_streams_does_not_deadlock(make_tool) -> None:
    tool = make_tool(
        """\
        chunk = "x" * 1024
        for _ in range(1024):
            sys.stdout.write(chunk)
            sys.stderr.write(chunk)
        """
    )

    result = asyncio.run(FFmpegExecutor(str(tool)).execute([], 30))

    assert result.success
    assert len(result.stdout) == 1024 * 1024
    assert len(result.stderr) == 1024 * 1024


def test_timeout_kills_the_process(make_tool, tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    tool = make_tool(
        f"""\
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(os.getpid()))
        time.sleep(60)
        """
    )

    started = time.monotonic()
    with pytest.raises(ToolTimeoutError) as excinfo:
        asyncio.run(FFmpegExecutor(str(tool)).execute([], 1))

    assert time.monotonic() - started < 30
    assert excinfo.value.code == "PROCESSING_TIMEOUT"
    assert excinfo.value.retryable
    pid = int(pid_file.read_text())
    assert _pid_gone(pid)


def test_cancellation_kills_the_process(make_tool, tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    tool = make_tool(
        f"""\
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(os.getpid()))
        time.sleep(60)
        """
    )

    async def scenario() -> None:
        task = asyncio.create_task(FFmpegExecutor(str(tool)).execute([], 60))
        await asyncio.to_thread(_wait_for_file, pid_file)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert _pid_gone(int(pid_file.read_text()))


def test_timeout_kills_descendants(make_tool, tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    grandchild_file = tmp_path / "grandchild"
    tool = _tool_with_grandchild(make_tool, pid_file, grandchild_file)

    with pytest.raises(ToolTimeoutError):
        asyncio.run(FFmpegExecutor(str(tool)).execute([], 2))

    assert _pid_gone(int(pid_file.read_text()))
    assert _pid_gone(int(grandchild_file.read_text()))


def test_cancellation_kills_descendants(make_tool, tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    grandchild_file = tmp_path / "grandchild"
    tool = _tool_with_grandchild(make_tool, pid_file, grandchild_file)

    async def scenario() -> None:
        task = asyncio.create_task(FFmpegExecutor(str(tool)).execute([], 60))
        await asyncio.to_thread(_wait_for_file, pid_file)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert _pid_gone(int(pid_file.read_text()))
    assert _pid_gone(int(grandchild_file.read_text()))


def test_missing_binary_is_reported_as_unavailable(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    executor = FFmpegExecutor(str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(ToolUnavailableError):
        asyncio.run(executor.execute(["-version"], 5))

    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="image_compression.executor"):
        assert asyncio.run(executor.probe()) == (False, "unavailable")
    assert asyncio.run(executor.is_available()) is False
    assert asyncio.run(executor.version()) == "unavailable"

    probe_records = [r for r in caplog.records if r.name == "image_compression.executor" and r.levelno == logging.WARNING]
    assert probe_records
    assert all(record.exc_info is None for record in probe_records)


def test_version_and_availability(make_tool) -> None:
    executor = FFmpegExecutor(str(make_tool("")))

    assert asyncio.run(executor.is_available()) is True
    assert asyncio.run(executor.version()) == "6.1-fake"


def test_unrecognised_version_output(make_tool) -> None:
    tool = make_tool('print("some other tool 1.0")\n', preamble=False)
    executor = FFmpegExecutor(str(tool))

    assert asyncio.run(executor.is_available()) is False
    assert asyncio.run(executor.version()) == "unknown"


def test_empty_path_falls_back_to_path_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("image_compression.executor.shutil.which", lambda name: None)
    assert FFmpegExecutor("").ffmpeg_path == "ffmpeg"

    monkeypatch.setattr("image_compression.executor.shutil.which", lambda name: "/opt/bin/ffmpeg")
    assert FFmpegExecutor(None).ffmpeg_path == "/opt/bin/ffmpeg"
