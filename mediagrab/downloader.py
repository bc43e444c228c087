"""
Request-level entry points used by the HTTP routes.

  get_info()       — URL check → metadata dump across strategies → quality catalog
  open_download()  — URL check → filename / size probe → running media stream
"""

from typing import List, Optional
import logging

from . import arguments, extractor
from .config import ToolConfig
from .errors import InvalidRequestError
from .models import Catalog, DownloadRequest, InfoRequest, StrategyInfo
from .strategies import StrategyRunner
from .streamer import DownloadStreamer, MediaStream

logger = logging.getLogger(__name__)

SUPPORTED_HOSTS = ("youtube.com", "youtu.be")


def validate_url(url: Optional[str]) -> str:
    """Reject missing and non-YouTube URLs before anything is spawned."""
    url = (url or "").strip()
    if not url:
        raise InvalidRequestError("URL is required")
    if not any(host in url for host in SUPPORTED_HOSTS):
        raise InvalidRequestError("Only YouTube URLs are supported right now.")
    return url


class MediaDownloader:
    """Wires the runner, extractor and streamer to one immutable ToolConfig."""

    def __init__(self, config: ToolConfig):
        self.config = config
        self.runner = StrategyRunner(
            binary=config.binary,
            workdir=config.workdir,
            strategies=config.strategies,
            timeout_seconds=config.timeout_seconds,
        )
        self.streamer = DownloadStreamer(
            binary=config.binary,
            workdir=config.workdir,
            base_args=config.base_args,
            timeout_seconds=config.timeout_seconds,
            chunk_size=config.chunk_size,
        )

    def list_strategies(self) -> List[StrategyInfo]:
        return [
            StrategyInfo(num=i, name=s.name, excludes_credentials=s.excludes_credentials)
            for i, s in enumerate(self.config.strategies, 1)
        ]

    async def get_info(self, request: InfoRequest) -> Catalog:
        """
        Raises:
            InvalidRequestError, AllStrategiesFailedError, MalformedMetadataError
        """
        url = validate_url(request.url)
        base = arguments.build_list(self.config.base_args, InfoRequest(url=url))
        raw = await self.runner.run(base, url)
        catalog = extractor.parse(raw)
        logger.info(
            f"✅ Info extracted: {catalog.title!r} "
            f"({len(catalog.video_renditions)} video, {len(catalog.audio_renditions)} audio)"
        )
        return catalog

    async def open_download(self, request: DownloadRequest) -> MediaStream:
        """
        Raises:
            InvalidRequestError, StreamStartError
        """
        url = validate_url(request.url)
        request = request.model_copy(update={"url": url, "format_selector": request.format_selector or None})
        return await self.streamer.open(request)
