"""
Streams yt-dlp's stdout (``-o -``) to an HTTP client without buffering the media.

Flow for one download:
  1. Resolve a filename from ``--print %(title)s`` (best-effort, falls back to "media")
  2. Probe ``--print filesize_approx`` for a Content-Length (best-effort)
  3. Spawn the real download writing media to stdout and forward chunks as they arrive

The subprocess belongs to the MediaStream. It is killed (SIGKILL) and reaped on
every exit path: normal end, tool failure, client disconnect, explicit close().
"""

import asyncio
import re
from asyncio.subprocess import Process
from collections import deque
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Deque, Optional, Union
import logging

from . import arguments
from .arguments import ArgumentList
from .errors import MidStreamFailure, StreamStartError
from .models import DownloadRequest, MediaMode
from .process import invoke, kill, reap, spawn

logger = logging.getLogger(__name__)

FILENAME_FALLBACK = "media"
MAX_FILENAME_LENGTH = 80
STDERR_TAIL_LINES = 20

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


def sanitize_filename(title: Optional[str]) -> str:
    """Reduce a title to [A-Za-z0-9_.-], at most 80 characters."""
    return _UNSAFE_FILENAME_CHARS.sub("_", title or FILENAME_FALLBACK)[:MAX_FILENAME_LENGTH]


def media_type_for(mode: MediaMode) -> str:
    return "audio/mpeg" if mode == MediaMode.AUDIO else "video/mp4"


def extension_for(mode: MediaMode) -> str:
    return "mp3" if mode == MediaMode.AUDIO else "mp4"


def parse_size(text: str) -> Optional[int]:
    """First line of ``--print filesize_approx`` as a positive int, else None ("NA", empty, ...)."""
    first = text.strip().splitlines()[0] if text.strip() else ""
    try:
        size = int(float(first))
    except (ValueError, OverflowError):
        return None
    return size if size > 0 else None


class MediaStream:
    """A running download whose stdout is exposed as an async byte iterator."""

    def __init__(
        self,
        proc: Process,
        filename: str,
        content_type: str,
        expected_size: Optional[int] = None,
        chunk_size: int = 64 * 1024,
    ):
        self.proc = proc
        self.filename = filename
        self.content_type = content_type
        self.expected_size = expected_size
        self.chunk_size = chunk_size
        self.bytes_sent = 0
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def _drain_stderr(self) -> None:
        # stderr must be read continuously or the tool blocks on a full pipe
        assert self.proc.stderr is not None
        buf = b""
        while True:
            chunk = await self.proc.stderr.read(4096)
            if not chunk:
                break
            # progress updates are \r-terminated
            lines = re.split(rb"[\r\n]", buf + chunk)
            buf = lines.pop()
            for raw in lines:
                self._log_stderr(raw)
        self._log_stderr(buf)

    def _log_stderr(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        self._stderr_tail.append(line)
        if line.startswith("[download]"):
            logger.debug(f"yt-dlp [{self.proc.pid}]: {line}")
        else:
            logger.warning(f"yt-dlp stderr [{self.proc.pid}]: {line}")

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Yield stdout chunks as they arrive.

        Raises:
            MidStreamFailure: the tool exited non-zero after streaming started
        """
        assert self.proc.stdout is not None
        try:
            while True:
                chunk = await self.proc.stdout.read(self.chunk_size)
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk

            exit_code = await self.proc.wait()
            await self._stderr_task
            if exit_code != 0:
                raise MidStreamFailure(exit_code, self.stderr_tail)
            logger.info(f"✅ Stream finished: {self.filename} ({self.bytes_sent / 1024 / 1024:.2f} MB)")
        finally:
            # Shielded so the process is still reaped when the consumer is cancelled
            await asyncio.shield(self.close())

    def kill(self) -> None:
        """Immediately SIGKILL the tool; close() still has to reap it."""
        kill(self.proc)

    async def close(self) -> None:
        if self.proc.returncode is None:
            logger.info(f"🛑 Killing yt-dlp [{self.proc.pid}] after {self.bytes_sent} bytes: {self.filename}")
        await reap(self.proc)
        if not self._stderr_task.done():
            self._stderr_task.cancel()
        await asyncio.gather(self._stderr_task, return_exceptions=True)


class DownloadStreamer:
    """Resolves filename and size for a download, then starts the media pipe."""

    def __init__(
        self,
        binary: str,
        workdir: Union[str, Path],
        base_args: ArgumentList,
        timeout_seconds: Optional[float] = None,
        chunk_size: int = 64 * 1024,
    ):
        self.binary = binary
        self.workdir = workdir
        self.base_args = base_args
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size

    async def _print(self, args: ArgumentList, url: str) -> Optional[str]:
        """Run a ``--print`` invocation; None on any failure."""
        try:
            result = await invoke(self.binary, args.to_argv() + [url], self.workdir, timeout=self.timeout_seconds)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ yt-dlp --print failed to run: {e!r}")
            return None
        if not result.ok:
            logger.warning(f"⚠️ yt-dlp --print exited {result.exit_code}: {result.error_message[:200]}")
            return None
        return result.text()

    async def resolve_filename(self, request: DownloadRequest) -> str:
        title = await self._print(arguments.title_arguments(self.base_args), request.url)
        if title:
            title = title.splitlines()[0]
        else:
            logger.info(f"Title unavailable for {request.url} - using '{FILENAME_FALLBACK}'")
        return f"{sanitize_filename(title)}.{extension_for(request.mode)}"

    async def probe_size(self, request: DownloadRequest) -> Optional[int]:
        output = await self._print(arguments.size_arguments(self.base_args, request), request.url)
        size = parse_size(output) if output else None
        logger.debug(f"Size probe for {request.url}: {size}")
        return size

    async def open(self, request: DownloadRequest) -> MediaStream:
        """
        Prepare and start a download. Nothing has been sent to the client yet.

        Raises:
            StreamStartError: the tool could not be launched
        """
        filename = await self.resolve_filename(request)
        expected_size = await self.probe_size(request)

        argv = arguments.stream_arguments(self.base_args, request).to_argv() + [request.url]
        try:
            proc = await spawn(self.binary, argv, self.workdir)
        except OSError as e:
            logger.error(f"❌ Could not start {self.binary}: {e}")
            raise StreamStartError(f"Failed to start download: {e.strerror or e}") from e

        logger.info(f"📤 Streaming {filename} (pid {proc.pid}, expected size: {expected_size or 'unknown'})")
        return MediaStream(
            proc,
            filename=filename,
            content_type=media_type_for(request.mode),
            expected_size=expected_size,
            chunk_size=self.chunk_size,
        )

    async def stream(
        self,
        request: DownloadRequest,
        sink: Callable[[bytes], Awaitable[None]],
        cancelled: Optional[asyncio.Event] = None,
    ) -> MediaStream:
        """
        Pump the whole download into ``sink``. Setting ``cancelled`` kills the tool at once.

        Returns the finished (or cancelled) MediaStream.
        """
        media = await self.open(request)

        async def pump() -> None:
            async for chunk in media.iter_bytes():
                await sink(chunk)

        cancelled = cancelled or asyncio.Event()
        pump_task = asyncio.create_task(pump())
        cancel_wait = asyncio.create_task(cancelled.wait())
        try:
            done, _ = await asyncio.wait({pump_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if pump_task in done:
                pump_task.result()
            else:
                logger.info(f"🛑 Download cancelled by client: {media.filename}")
        finally:
            cancel_wait.cancel()
            if not pump_task.done():
                media.kill()
                pump_task.cancel()
                await asyncio.gather(pump_task, return_exceptions=True)
            await media.close()
        return media
