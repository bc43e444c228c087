"""
Shared fixtures and helpers for mediagrab tests.

The real yt-dlp binary is replaced by a small executable script written into a
temp directory. Its behaviour comes from ``plan.json`` next to it: a list of
rules, the first one whose ``match`` tokens all appear in argv wins. Every
invocation is appended to ``calls.jsonl`` (argv, cwd, pid) so tests can check
what was spawned, in which order, and whether it is still alive.
"""

import json
import os
import pathlib
import stat
import sys
import textwrap
from typing import Any, Dict, List, Optional

import pytest

from mediagrab.arguments import base_arguments
from mediagrab.config import ToolConfig

# ─── Constants ───────────────────────────────────────────────────────────────

TEST_VIDEO_URL = "https://youtu.be/abc123"

FAKE_TOOL_SOURCE = textwrap.dedent("""\
    #!{python}
    import json, os, sys, time

    HERE = os.path.dirname(os.path.abspath(__file__))
    argv = sys.argv[1:]
    with open(os.path.join(HERE, "calls.jsonl"), "a") as log:
        log.write(json.dumps({{"argv": argv, "cwd": os.getcwd(), "pid": os.getpid()}}) + "\\n")

    with open(os.path.join(HERE, "plan.json")) as f:
        plan = json.load(f)

    for rule in plan:
        if all(token in argv for token in rule.get("match", [])):
            break
    else:
        rule = {{"exit": 2, "stderr": "ERROR: no matching rule"}}

    time.sleep(rule.get("sleep", 0))
    sys.stderr.write(rule.get("stderr", ""))
    sys.stderr.flush()
    sys.stdout.buffer.write(rule.get("stdout", "").encode("utf-8"))
    sys.stdout.buffer.write(b"x" * rule.get("stdout_size", 0))
    sys.stdout.buffer.flush()
    if rule.get("stream_forever"):
        chunk = b"\\0" * 65536
        while True:
            sys.stdout.buffer.write(chunk)
            sys.stdout.buffer.flush()
    sys.exit(rule.get("exit", 0))
""")


# ─── Fake tool ───────────────────────────────────────────────────────────────

class FakeTool:
    """Handle on the generated fake yt-dlp executable."""

    def __init__(self, directory: pathlib.Path):
        self.directory = directory
        self.path = directory / "yt-dlp"
        self.path.write_text(FAKE_TOOL_SOURCE.format(python=sys.executable))
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.cookies_path = directory / "cookies.txt"
        self.plan()

    def plan(self, *rules: Dict[str, Any]) -> None:
        (self.directory / "plan.json").write_text(json.dumps(list(rules)))

    def calls(self) -> List[Dict[str, Any]]:
        log = self.directory / "calls.jsonl"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines() if line.strip()]

    def argvs(self) -> List[List[str]]:
        return [call["argv"] for call in self.calls()]

    def config(self, with_cookies: bool = True, **overrides: Any) -> ToolConfig:
        cookies: Optional[pathlib.Path] = None
        if with_cookies:
            self.cookies_path.write_text("# Netscape HTTP Cookie File\n")
            cookies = self.cookies_path
        values: Dict[str, Any] = dict(
            binary=str(self.path),
            workdir=self.directory,
            base_args=base_arguments(cookies_path=str(cookies) if cookies else None),
            cookies_path=cookies,
            timeout_seconds=10.0,
            chunk_size=4096,
        )
        values.update(overrides)
        return ToolConfig(**values)


def metadata_json(formats: List[Dict[str, Any]], **fields: Any) -> str:
    info: Dict[str, Any] = {"title": "Test Video", "thumbnail": "https://i.ytimg.com/vi/abc123/hq.jpg"}
    info.update(fields)
    info["formats"] = formats
    return json.dumps(info)


SAMPLE_FORMATS = [
    {"format_id": "136", "height": 720, "vcodec": "vp9", "acodec": "none", "ext": "mp4"},
    {"format_id": "134", "height": 360, "vcodec": "avc1", "acodec": "none", "ext": "mp4"},
    {"format_id": "251", "vcodec": "none", "acodec": "opus", "abr": 128.4, "ext": "webm"},
]


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_tool(tmp_path):
    """A fresh fake yt-dlp in its own directory (plan starts empty: every call exits 2)."""
    d = tmp_path / "tool"
    d.mkdir()
    return FakeTool(d)
