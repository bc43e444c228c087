"""
Exception taxonomy shared by the downloader layers and the HTTP boundary.
"""

from typing import List, Optional

from .models import ErrorCode


class MediaGrabError(Exception):
    """Base class for errors that map onto an HTTP error response."""
    code: ErrorCode = ErrorCode.SERVER_ERROR
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(MediaGrabError):
    """Missing or unsupported URL; raised before any subprocess is spawned."""
    code = ErrorCode.INVALID_URL
    status_code = 400


class AllStrategiesFailedError(MediaGrabError):
    """Every strategy's invocation exited non-zero (or could not run)."""
    code = ErrorCode.ALL_STRATEGIES_FAILED
    status_code = 502

    def __init__(self, last_error: str, attempts: Optional[List[str]] = None):
        super().__init__(f"All strategies failed: {last_error}")
        self.last_error = last_error
        self.attempts = attempts or []


class MalformedMetadataError(MediaGrabError):
    """The tool succeeded but its output did not parse as video metadata."""
    code = ErrorCode.MALFORMED_METADATA
    status_code = 502


class StreamStartError(MediaGrabError):
    """The download subprocess could not be launched."""
    code = ErrorCode.STREAM_START_FAILED
    status_code = 500


class MidStreamFailure(Exception):
    """
    The download subprocess died after bytes were already sent.

    Not a MediaGrabError: headers are committed by then, so it is only logged.
    """

    def __init__(self, exit_code: Optional[int], stderr_tail: str = ""):
        detail = stderr_tail or f"exit code {exit_code}"
        super().__init__(f"Stream ended early: {detail}")
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
