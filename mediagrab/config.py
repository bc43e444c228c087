"""
Process-wide configuration, built once at startup and never mutated.

Environment variables:
  YTDLP_BIN             — explicit path to the yt-dlp executable
  APP_DIR               — working directory for every tool invocation; a yt-dlp
                          binary placed here is preferred over the one on PATH
  COOKIES_PATH          — Netscape cookies.txt passed with --cookies when it exists
  YOUTUBE_COOKIES       — raw cookies.txt contents, written to COOKIES_PATH on startup
  YTDLP_USER_AGENT      — user agent sent by yt-dlp
  TOOL_TIMEOUT_SECONDS  — bound on each info / title / size-probe invocation
  STREAM_CHUNK_SIZE     — bytes read from the tool's stdout per chunk
  ALLOWED_ORIGINS       — comma-separated CORS origins
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple
import logging

from .arguments import DEFAULT_USER_AGENT, ArgumentList, base_arguments
from .strategies import DEFAULT_STRATEGIES, Strategy

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"
BINARY_NAME = "yt-dlp.exe" if IS_WINDOWS else "yt-dlp"
DEFAULT_APP_DIR = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class ToolConfig:
    """Read-only settings injected into every request handler."""
    binary: str
    workdir: Path
    base_args: ArgumentList
    cookies_path: Optional[Path] = None
    strategies: Tuple[Strategy, ...] = DEFAULT_STRATEGIES
    timeout_seconds: float = 120.0
    chunk_size: int = 64 * 1024
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def cookies_configured(self) -> bool:
        return self.cookies_path is not None


def resolve_binary(app_dir: Path) -> str:
    """Prefer a yt-dlp binary shipped next to the app, then whatever is on PATH."""
    explicit = os.getenv("YTDLP_BIN")
    if explicit:
        return explicit
    local = app_dir / BINARY_NAME
    if local.is_file():
        return str(local)
    return shutil.which(BINARY_NAME) or BINARY_NAME


def provision_cookies(cookies_path: Path) -> bool:
    """Write YOUTUBE_COOKIES to disk so yt-dlp can authenticate. Returns True if written."""
    contents = os.getenv("YOUTUBE_COOKIES", "").strip()
    if not contents:
        logger.warning("⚠️ YOUTUBE_COOKIES is not set - running without cookies")
        return False
    try:
        cookies_path.write_text(contents + "\n", encoding="utf-8")
    except OSError as e:
        logger.error(f"❌ Failed to write cookies file {cookies_path}: {e}")
        return False
    logger.info(f"🍪 Cookies file written: {cookies_path} ({len(contents)} bytes)")
    return True


def load_config() -> ToolConfig:
    """Inspect the environment and filesystem once and freeze the result."""
    app_dir = Path(os.getenv("APP_DIR", str(DEFAULT_APP_DIR)))
    cookies_path = Path(os.getenv("COOKIES_PATH", str(Path.cwd() / "cookies.txt")))
    provision_cookies(cookies_path)

    cookies = cookies_path if cookies_path.is_file() else None

    config = ToolConfig(
        binary=resolve_binary(app_dir),
        workdir=app_dir,
        base_args=base_arguments(
            user_agent=os.getenv("YTDLP_USER_AGENT", DEFAULT_USER_AGENT),
            cookies_path=str(cookies) if cookies else None,
            windows=IS_WINDOWS,
        ),
        cookies_path=cookies,
        timeout_seconds=float(os.getenv("TOOL_TIMEOUT_SECONDS", "120")),
        chunk_size=int(os.getenv("STREAM_CHUNK_SIZE", str(64 * 1024))),
        allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    )

    logger.info(f"🔧 yt-dlp binary: {config.binary} (cwd: {config.workdir})")
    logger.info(f"🍪 Cookies: {'configured' if config.cookies_configured else 'NOT configured'}")
    return config
