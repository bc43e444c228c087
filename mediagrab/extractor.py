"""
Turns yt-dlp's ``-j`` metadata dump into the quality catalog shown to the user.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional
import logging

from .arguments import AUTO_BEST_AUDIO
from .errors import MalformedMetadataError
from .models import Catalog, Rendition

logger = logging.getLogger(__name__)

AUTO_BEST_LABEL = "Best Quality (Auto)"

# Progressive formats almost every YouTube video still offers
FALLBACK_VIDEO_RENDITIONS = (
    ("720p", "22"),
    ("360p", "18"),
)

_LEADING_NUMBER = re.compile(r"^\d+")


def _has_codec(value: Any) -> bool:
    return bool(value) and value != "none"


def _label_value(label: str) -> int:
    match = _LEADING_NUMBER.match(label)
    return int(match.group()) if match else 0


def is_video_rendition(fmt: Dict[str, Any]) -> bool:
    """Video-only mp4 stream (or an mp4 DASH container that happens to list audio)."""
    return (
        _has_codec(fmt.get("vcodec"))
        and (not _has_codec(fmt.get("acodec")) or fmt.get("container") == "mp4_dash")
        and fmt.get("ext") == "mp4"
    )


def is_audio_rendition(fmt: Dict[str, Any]) -> bool:
    return not _has_codec(fmt.get("vcodec")) and _has_codec(fmt.get("acodec"))


def video_label(fmt: Dict[str, Any]) -> Optional[str]:
    try:
        height = int(fmt.get("height") or 0)
    except (TypeError, ValueError):
        return None
    if height <= 0:
        return None
    return f"{height}p"


def audio_label(fmt: Dict[str, Any]) -> Optional[str]:
    abr = fmt.get("abr")
    try:
        bitrate = math.floor(float(abr) + 0.5) if abr is not None else 0
    except (TypeError, ValueError, OverflowError):
        return None
    if bitrate <= 0:
        return None
    return f"{bitrate}k (MP3)"


def _add_unique(renditions: List[Rendition], seen: set, label: Optional[str], fmt: Dict[str, Any]) -> None:
    if label is None or label in seen:
        return
    seen.add(label)
    renditions.append(Rendition(label=label, format_id=str(fmt.get("format_id", ""))))


def _sorted_desc(renditions: List[Rendition]) -> List[Rendition]:
    # sort() is stable, so equal values keep source order
    return sorted(renditions, key=lambda r: _label_value(r.label), reverse=True)


def parse(raw: bytes) -> Catalog:
    """
    Build the catalog from the raw stdout of ``yt-dlp -j``.

    Raises:
        MalformedMetadataError: payload is not a JSON object with a formats list
    """
    try:
        info = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedMetadataError(f"yt-dlp output is not valid JSON: {e}") from e

    if not isinstance(info, dict):
        raise MalformedMetadataError("yt-dlp output is not a metadata object")
    raw_formats = info.get("formats")
    if not isinstance(raw_formats, list):
        raise MalformedMetadataError("yt-dlp metadata has no formats list")

    videos: List[Rendition] = []
    audios: List[Rendition] = []
    seen_video: set = set()
    seen_audio: set = set()

    for fmt in raw_formats:
        if not isinstance(fmt, dict):
            logger.debug(f"Skipping non-object format record: {fmt!r}")
            continue
        if is_video_rendition(fmt):
            _add_unique(videos, seen_video, video_label(fmt), fmt)
        if is_audio_rendition(fmt):
            _add_unique(audios, seen_audio, audio_label(fmt), fmt)

    videos = _sorted_desc(videos)
    audios = _sorted_desc(audios)

    if not videos:
        logger.warning("⚠️ No mp4 video renditions found - offering fallback formats")
        videos = [Rendition(label=label, format_id=fid) for label, fid in FALLBACK_VIDEO_RENDITIONS]

    audios.insert(0, Rendition(label=AUTO_BEST_LABEL, format_id=AUTO_BEST_AUDIO))

    return Catalog(
        title=info.get("title") or "Video",
        thumbnail=info.get("thumbnail") or None,
        video_renditions=videos,
        audio_renditions=audios,
    )
