"""
Pydantic models for request/response schemas
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error code classifications"""
    INVALID_URL = "INVALID_URL"
    ALL_STRATEGIES_FAILED = "ALL_STRATEGIES_FAILED"
    MALFORMED_METADATA = "MALFORMED_METADATA"
    STREAM_START_FAILED = "STREAM_START_FAILED"
    SERVER_ERROR = "SERVER_ERROR"


class MediaMode(str, Enum):
    """What the client wants back"""
    VIDEO = "video"
    AUDIO = "audio"


class InfoRequest(BaseModel):
    """Request schema for /api/info"""
    url: Optional[str] = Field(None, description="YouTube video URL")

    class Config:
        json_schema_extra = {
            "example": {"url": "https://youtube.com/watch?v=dQw4w9WgXcQ"}
        }


class DownloadRequest(BaseModel):
    """Request schema for /api/download (also accepts the browser's quality/type names)"""
    url: Optional[str] = Field(None, description="YouTube video URL")
    format_selector: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("formatSelector", "format_selector", "quality"),
        description="Rendition formatId from /api/info, 'bestaudio', or empty for best available",
    )
    mode: MediaMode = Field(
        MediaMode.VIDEO,
        validation_alias=AliasChoices("mode", "type"),
        description="video (MP4) or audio (MP3)",
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "url": "https://youtube.com/watch?v=dQw4w9WgXcQ",
                "formatSelector": "137",
                "mode": "video",
            }
        }


class Rendition(BaseModel):
    """One selectable quality option"""
    label: str
    format_id: str = Field(..., alias="formatId")

    class Config:
        populate_by_name = True


class Catalog(BaseModel):
    """Response schema for /api/info"""
    title: str = "Video"
    thumbnail: Optional[str] = None
    video_renditions: List[Rendition] = Field(default_factory=list, alias="videoRenditions")
    audio_renditions: List[Rendition] = Field(default_factory=list, alias="audioRenditions")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Error body for info and pre-stream download failures"""
    error: str
    code: ErrorCode


class StrategyInfo(BaseModel):
    num: int
    name: str
    excludes_credentials: bool


class StrategiesResponse(BaseModel):
    total: int
    strategies: List[StrategyInfo]


class HealthResponse(BaseModel):
    """Response schema for /api/health"""
    status: str
    version: str
    uptime_seconds: float
    ytdlp_binary: str
    cookies_configured: bool
    yt_dlp_version: str
