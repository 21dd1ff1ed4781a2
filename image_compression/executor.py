"""Run FFmpeg as a child process with a deadline."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import signal
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Sequence, Tuple

from .exceptions import ToolTimeoutError, ToolUnavailableError

logger = logging.getLogger(__name__)

VERSION_TIMEOUT_SECONDS = 10.0
_version_re = re.compile(r"ffmpeg version (\S+)")
_POSIX = os.name == "posix"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    exit_code: int
    stdout: str
    stderr: str
    success: bool
    duration: float


def resolve_ffmpeg_path(configured: str | None = None) -> str:
    """Return the configured binary, else whatever ``ffmpeg`` resolves to on PATH."""
    if configured:
        return configured
    return shutil.which("ffmpeg") or "ffmpeg"


class FFmpegExecutor:
    """Launches FFmpeg without a shell, captures its output and enforces a timeout.

    On POSIX each run gets its own session so a timeout can kill the whole
    process group, not just the direct child.
    """

    def __init__(self, ffmpeg_path: str | None = None) -> None:
        self.ffmpeg_path = resolve_ffmpeg_path(ffmpeg_path)

    async def execute(self, arguments: Sequence[str], timeout_seconds: float) -> ExecutionResult:
        if isinstance(arguments, (str, bytes)):
            raise TypeError("arguments must be a sequence of separate strings, not a command line")

        argv = [self.ffmpeg_path, *(str(arg) for arg in arguments)]
        logger.debug("Executing %s with %d arguments", self.ffmpeg_path, len(argv) - 1)

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except (FileNotFoundError, PermissionError) as exc:
            logger.error("Cannot launch %s: %s", self.ffmpeg_path, exc)
            raise ToolUnavailableError(f"FFmpeg executable could not be started: {self.ffmpeg_path}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("FFmpeg timed out after %ss, killing pid %s", timeout_seconds, process.pid)
            await self._terminate(process)
            raise ToolTimeoutError(timeout_seconds) from None
        except asyncio.CancelledError:
            logger.info("FFmpeg run cancelled, killing pid %s", process.pid)
            await self._terminate(process)
            raise

        duration = time.monotonic() - started
        exit_code = process.returncode if process.returncode is not None else -1
        result = ExecutionResult(
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            success=exit_code == 0,
            duration=duration,
        )
        if result.success:
            logger.debug("FFmpeg completed in %.0fms", duration * 1000)
        else:
            logger.error("FFmpeg failed with exit code %s: %s", exit_code, result.stderr[-500:].strip())
        return result

    async def probe(self) -> Tuple[bool, str]:
        """Run ``ffmpeg -version`` once and return ``(available, version)``."""
        try:
            result = await self.execute(["-version"], VERSION_TIMEOUT_SECONDS)
        except ToolUnavailableError as exc:
            logger.warning("FFmpeg unavailable: %s", exc.message)
            return False, "unavailable"
        except Exception:
            logger.exception("Error probing FFmpeg")
            return False, "unavailable"

        if not result.success:
            return False, "unavailable"
        match = _version_re.search(result.stdout)
        return "ffmpeg version" in result.stdout, match.group(1) if match else "unknown"

    async def is_available(self) -> bool:
        available, _ = await self.probe()
        return available

    async def version(self) -> str:
        _, version = await self.probe()
        return version

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with suppress(ProcessLookupError):
                if _POSIX:
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
        with suppress(ProcessLookupError):
            await process.wait()
