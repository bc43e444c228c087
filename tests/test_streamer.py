"""
Tests for the media pipe: filename/size probes, streaming, failures, cancellation.
"""

import asyncio
import signal

import pytest

from mediagrab.arguments import base_arguments
from mediagrab.errors import MidStreamFailure, StreamStartError
from mediagrab.models import DownloadRequest, MediaMode
from mediagrab.streamer import DownloadStreamer, parse_size, sanitize_filename

from conftest import TEST_VIDEO_URL, pid_alive

TITLE_RULE = {"match": ["%(title)s"], "stdout": "Rick Astley - Never Gonna Give You Up (Official Video) 4K\n"}
SIZE_RULE = {"match": ["filesize_approx"], "stdout": "100000\n"}
NO_SIZE_RULE = {"match": ["filesize_approx"], "stdout": "NA\n"}


def _streamer(fake_tool, **kwargs):
    return DownloadStreamer(
        binary=str(fake_tool.path),
        workdir=fake_tool.directory,
        base_args=base_arguments(),
        timeout_seconds=10.0,
        chunk_size=4096,
        **kwargs,
    )


def _request(mode=MediaMode.VIDEO, selector="137"):
    return DownloadRequest(url=TEST_VIDEO_URL, mode=mode, format_selector=selector)


async def _collect(media):
    chunks = []
    async for chunk in media.iter_bytes():
        chunks.append(chunk)
    return b"".join(chunks)


def _stream_pid(fake_tool):
    return next(call["pid"] for call in fake_tool.calls() if "-o" in call["argv"])


# ─── Pure helpers ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("title, expected", [
    ("Hello World!", "Hello_World_"),
    ("a/b\\c:d", "a_b_c_d"),
    ("ünïcödé.mp4", "_n_c_d_.mp4"),
    ("keep-these_chars.1", "keep-these_chars.1"),
    ("", "media"),
    (None, "media"),
])
def test_sanitize_filename(title, expected):
    assert sanitize_filename(title) == expected


def test_sanitize_filename_truncates_to_80():
    assert sanitize_filename("x" * 200) == "x" * 80


@pytest.mark.parametrize("text, expected", [
    ("123456\n", 123456),
    ("98765.4", 98765),
    ("NA", None),
    ("0", None),
    ("-5", None),
    ("", None),
])
def test_parse_size(text, expected):
    assert parse_size(text) == expected


# ─── Filename and size probes ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_filename_from_title(fake_tool):
    fake_tool.plan(TITLE_RULE)
    name = await _streamer(fake_tool).resolve_filename(_request())
    assert name == "Rick_Astley_-_Never_Gonna_Give_You_Up__Official_Video__4K.mp4"


@pytest.mark.asyncio
async def test_filename_falls_back_when_title_fails(fake_tool):
    fake_tool.plan({"match": ["%(title)s"], "exit": 1, "stderr": "ERROR: blocked"})
    name = await _streamer(fake_tool).resolve_filename(_request(mode=MediaMode.AUDIO))
    assert name == "media.mp3"


@pytest.mark.asyncio
async def test_filename_falls_back_on_empty_title(fake_tool):
    fake_tool.plan({"match": ["%(title)s"], "stdout": "   \n"})
    assert await _streamer(fake_tool).resolve_filename(_request()) == "media.mp4"


@pytest.mark.asyncio
async def test_size_probe_uses_format_arguments(fake_tool):
    fake_tool.plan(SIZE_RULE)
    size = await _streamer(fake_tool).probe_size(_request(selector="137"))
    assert size == 100000
    argv = fake_tool.argvs()[0]
    assert argv[argv.index("-f") + 1] == "137+bestaudio[container=m4a]/best[container=mp4]/best"
    assert argv[-1] == TEST_VIDEO_URL


@pytest.mark.asyncio
async def test_size_probe_failure_is_unknown_not_error(fake_tool):
    fake_tool.plan({"match": ["filesize_approx"], "exit": 1})
    assert await _streamer(fake_tool).probe_size(_request()) is None


# ─── Streaming ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stream_forwards_all_bytes(fake_tool):
    fake_tool.plan(TITLE_RULE, SIZE_RULE, {"match": ["-o"], "stdout_size": 100000})
    media = await _streamer(fake_tool).open(_request())

    assert media.filename.endswith(".mp4")
    assert media.content_type == "video/mp4"
    assert media.expected_size == 100000

    body = await _collect(media)
    assert len(body) == 100000
    assert media.bytes_sent == 100000
    assert media.proc.returncode == 0

    stream_argv = fake_tool.argvs()[-1]
    assert stream_argv[-3:] == ["-o", "-", TEST_VIDEO_URL]


@pytest.mark.asyncio
async def test_audio_stream_arguments(fake_tool):
    fake_tool.plan(TITLE_RULE, NO_SIZE_RULE, {"match": ["-o"], "stdout_size": 10})
    media = await _streamer(fake_tool).open(_request(mode=MediaMode.AUDIO, selector=None))
    await _collect(media)

    assert media.content_type == "audio/mpeg"
    assert media.filename.endswith(".mp3")
    assert media.expected_size is None
    argv = fake_tool.argvs()[-1]
    assert "-x" in argv
    assert argv[argv.index("-f") + 1] == "bestaudio"


@pytest.mark.asyncio
async def test_mid_stream_failure(fake_tool):
    fake_tool.plan(
        TITLE_RULE,
        NO_SIZE_RULE,
        {"match": ["-o"], "stdout_size": 5000, "stderr": "ERROR: fragment 3 not found\n", "exit": 1},
    )
    media = await _streamer(fake_tool).open(_request())

    received = []
    with pytest.raises(MidStreamFailure) as exc_info:
        async for chunk in media.iter_bytes():
            received.append(chunk)

    assert sum(len(c) for c in received) == 5000
    assert exc_info.value.exit_code == 1
    assert "fragment 3 not found" in exc_info.value.stderr_tail


@pytest.mark.asyncio
async def test_start_failure_raises_before_streaming(tmp_path):
    streamer = DownloadStreamer(
        binary=str(tmp_path / "missing-yt-dlp"),
        workdir=tmp_path,
        base_args=base_arguments(),
    )
    with pytest.raises(StreamStartError):
        await streamer.open(_request())


# ─── Cancellation ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_event_kills_subprocess(fake_tool):
    fake_tool.plan(TITLE_RULE, NO_SIZE_RULE, {"match": ["-o"], "stream_forever": True})
    cancelled = asyncio.Event()
    received = []

    async def sink(chunk):
        received.append(len(chunk))
        if sum(received) >= 64 * 1024:
            cancelled.set()

    media = await asyncio.wait_for(
        _streamer(fake_tool).stream(_request(), sink, cancelled),
        timeout=10,
    )

    assert sum(received) >= 64 * 1024
    assert media.proc.returncode == -signal.SIGKILL
    assert not pid_alive(_stream_pid(fake_tool))


@pytest.mark.asyncio
async def test_consumer_cancellation_kills_subprocess(fake_tool):
    """A client disconnect cancels the task reading the stream."""
    fake_tool.plan(TITLE_RULE, NO_SIZE_RULE, {"match": ["-o"], "stream_forever": True})
    media = await _streamer(fake_tool).open(_request())
    first_chunk = asyncio.Event()

    async def consume():
        async for _ in media.iter_bytes():
            first_chunk.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(first_chunk.wait(), timeout=10)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.wait_for(media.proc.wait(), timeout=2)
    assert media.proc.returncode == -signal.SIGKILL
    assert not pid_alive(media.proc.pid)


@pytest.mark.asyncio
async def test_close_without_consuming(fake_tool):
    fake_tool.plan(TITLE_RULE, NO_SIZE_RULE, {"match": ["-o"], "stream_forever": True})
    media = await _streamer(fake_tool).open(_request())
    await asyncio.wait_for(media.close(), timeout=2)
    assert media.proc.returncode is not None
    # closing twice is harmless
    await media.close()
