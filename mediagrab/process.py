"""
Subprocess helpers for the yt-dlp binary.

The tool is always spawned with an explicit argv (never through a shell), and
every process started here is waited on before the owning coroutine returns,
including when that coroutine is cancelled.
"""

import asyncio
import os
import signal
from asyncio.subprocess import Process
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
import logging

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


@dataclass(frozen=True)
class InvocationResult:
    """Captured outcome of one finished tool invocation."""
    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def error_message(self) -> str:
        text = self.stderr.decode("utf-8", errors="replace").strip()
        return text or f"exit code {self.exit_code}"

    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace").strip()


async def spawn(binary: str, argv: List[str], cwd: Union[str, Path]) -> Process:
    """
    Start the tool with piped stdout/stderr. Raises OSError if it cannot start.

    On POSIX the tool gets its own process group so that kill() also takes
    down the ffmpeg children yt-dlp starts for merging and audio extraction.
    """
    return await asyncio.create_subprocess_exec(
        binary,
        *argv,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=_POSIX,
    )


def kill(proc: Process) -> None:
    """Non-graceful termination of the tool and its process group."""
    if proc.returncode is not None:
        return
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        return
    logger.debug(f"Killed yt-dlp process {proc.pid}")


async def reap(proc: Process) -> Optional[int]:
    """SIGKILL the process if it is still running, then wait for its exit."""
    kill(proc)
    return await proc.wait()


async def invoke(
    binary: str,
    argv: List[str],
    cwd: Union[str, Path],
    timeout: Optional[float] = None,
) -> InvocationResult:
    """
    Run the tool to completion and capture all of its output in memory.

    Only used for text output (metadata, title, size probe), never media.

    Raises:
        OSError: the binary could not be started
        asyncio.TimeoutError: the process outlived ``timeout`` and was killed
    """
    proc = await spawn(binary, argv, cwd)
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    finally:
        await reap(proc)
    return InvocationResult(exit_code=proc.returncode, stdout=stdout, stderr=stderr)
