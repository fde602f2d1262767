"""Exception types raised by the YouTube ingestion subsystem."""

from __future__ import annotations

from typing import List, Optional

from shared.chat.events import InvalidEvent


class YouTubePlatformError(RuntimeError):
    """Base class for every error raised by the YouTube platform."""


class DuplicateConnection(YouTubePlatformError):
    """Raised when a different chat handle is registered for a known video id."""

    def __init__(self, video_id: str):
        super().__init__(f"Connection already exists for video {video_id}")
        self.video_id = video_id


class ClientUnavailable(YouTubePlatformError):
    """Raised when the shared YouTube client cannot be created in time."""


class NotLive(YouTubePlatformError):
    """
    Raised when a video cannot be connected because it is not live.

    `reason` carries the human-readable validation outcome
    (upcoming, replay/VOD, ...).
    """

    def __init__(self, video_id: str, reason: str):
        super().__init__(f"Stream validation failed for {video_id}: {reason}")
        self.video_id = video_id
        self.reason = reason


class ConfigurationError(YouTubePlatformError):
    """Raised (or reported) when configuration values are invalid."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class StreamDetectionError(YouTubePlatformError):
    """Raised when live stream detection fails for a channel."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.retry_after = retry_after


__all__ = [
    "YouTubePlatformError",
    "InvalidEvent",
    "DuplicateConnection",
    "ClientUnavailable",
    "NotLive",
    "ConfigurationError",
    "StreamDetectionError",
]
