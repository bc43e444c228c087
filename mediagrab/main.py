"""
FastAPI media proxy
Streams YouTube video (MP4) or audio (MP3) produced by yt-dlp straight to the browser
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
import yt_dlp

from . import VERSION
from .config import ToolConfig, load_config
from .downloader import MediaDownloader
from .errors import MediaGrabError, MidStreamFailure
from .models import (
    Catalog,
    DownloadRequest,
    ErrorCode,
    ErrorResponse,
    HealthResponse,
    InfoRequest,
    StrategiesResponse,
)
from .streamer import MediaStream

# Logging configuration
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

start_time = time.time()


class MediaStreamResponse(StreamingResponse):
    """StreamingResponse that always kills the tool once the response is over, disconnects included."""

    def __init__(self, media: MediaStream):
        headers = {"Content-Disposition": f'attachment; filename="{media.filename}"'}
        if media.expected_size:
            headers["Content-Length"] = str(media.expected_size)
        super().__init__(_relay(media), media_type=media.content_type, headers=headers)
        self.media = media

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.media.kill()
            await self.media.close()


async def _relay(media: MediaStream) -> AsyncIterator[bytes]:
    try:
        async for chunk in media.iter_bytes():
            yield chunk
    except MidStreamFailure as e:
        # Headers are already sent: all we can do is end the body early
        logger.error(f"💥 {media.filename} truncated after {media.bytes_sent} bytes: {e}")


def create_app(config: Optional[ToolConfig] = None) -> FastAPI:
    """Build the app. Without an explicit config it is loaded from the environment on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for startup/shutdown tasks"""
        logger.info("🚀 Starting media proxy...")
        logger.info(f"Version: {VERSION}")
        logger.info(f"yt-dlp package version: {yt_dlp.version.__version__}")
        if not hasattr(app.state, "downloader"):
            app.state.downloader = MediaDownloader(load_config())
        yield
        logger.info("Shutting down media proxy...")

    app = FastAPI(
        title="Media Proxy",
        description="Stream YouTube video or audio through yt-dlp",
        version=VERSION,
        lifespan=lifespan,
    )
    if config is not None:
        app.state.downloader = MediaDownloader(config)

    # CORS configuration
    origins = config.allowed_origins if config else os.getenv("ALLOWED_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length"],
    )

    _register_routes(app)
    return app


def _downloader(request: Request) -> MediaDownloader:
    return request.app.state.downloader


def _register_routes(app: FastAPI) -> None:

    # ========================================================================
    # API ENDPOINTS
    # ========================================================================

    @app.post("/api/info", response_model=Catalog, response_model_by_alias=True)
    async def get_info(body: InfoRequest, request: Request) -> JSONResponse:
        """
        List the video and audio renditions available for a URL

        Tries each yt-dlp strategy in order; per-strategy errors only go to the log.
        """
        logger.info(f"ℹ️ Info request: {body.url}")
        catalog = await _downloader(request).get_info(body)
        return JSONResponse(content=catalog.model_dump(mode='json', by_alias=True))

    @app.post("/api/download")
    async def download(body: DownloadRequest, request: Request) -> StreamingResponse:
        """
        Stream the selected rendition as an attachment

        **Flow:**
        1. Resolve filename from the video title
        2. Probe approximate size for Content-Length
        3. Pipe yt-dlp stdout to the response; a client disconnect kills yt-dlp
        """
        logger.info(f"📥 Download request: {body.url} (mode={body.mode.value}, format={body.format_selector})")
        media = await _downloader(request).open_download(body)
        return MediaStreamResponse(media)

    @app.get("/api/strategies", response_model=StrategiesResponse)
    async def list_strategies(request: Request):
        """List the yt-dlp strategies in the order they are tried."""
        strategies = _downloader(request).list_strategies()
        return StrategiesResponse(total=len(strategies), strategies=strategies)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint for monitoring"""
        config = _downloader(request).config
        return HealthResponse(
            status="healthy",
            version=VERSION,
            uptime_seconds=time.time() - start_time,
            ytdlp_binary=config.binary,
            cookies_configured=config.cookies_configured,
            yt_dlp_version=yt_dlp.version.__version__,
        )

    @app.get("/")
    async def root():
        """Root endpoint with service info"""
        return {
            "service": "Media Proxy",
            "version": VERSION,
            "status": "running",
            "endpoints": {
                "info": "/api/info",
                "download": "/api/download",
                "strategies": "/api/strategies",
                "health": "/api/health",
            },
            "docs": "/docs",
        }

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(MediaGrabError)
    async def media_error_handler(request: Request, exc: MediaGrabError):
        """Pre-stream failures become a JSON error with one aggregated message"""
        logger.error(f"❌ {request.url.path} failed ({exc.code.value}): {exc.message[:300]}")
        message = exc.message
        if exc.code == ErrorCode.ALL_STRATEGIES_FAILED:
            message = "Failed to get video info. Check server logs for details."
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=message, code=exc.code).model_dump(mode='json'),
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        """Custom 500 handler"""
        logger.exception(f"💥 Unexpected error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error. Please try again later.",
                code=ErrorCode.SERVER_ERROR,
            ).model_dump(mode='json'),
        )


app = create_app()


def run() -> None:
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))


if __name__ == "__main__":
    run()
