"""
Liveness checks for video info returned by the YouTube client.

Video info objects differ between client backends: some expose attributes
(`info.basic_info.is_live`), others plain mappings. `read_field` reads both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

LIVE = "Stream is live"
PREMIERE = "Premiere is live"
UPCOMING = "Stream is upcoming but not yet live"
NOT_LIVE = "Video is not live content (replay/VOD)"

_LIVE_BADGE_STYLE = "BADGE_STYLE_TYPE_LIVE_NOW"


@dataclass
class LivenessResult:
    should_connect: bool
    reason: str
    is_live: bool = False
    is_upcoming: bool = False
    is_premiere: bool = False


def read_field(obj: Any, *path: str) -> Any:
    current = obj
    for key in path:
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def _iter_badges(source: Any) -> Iterable[Any]:
    badges = read_field(source, "badges")
    if isinstance(badges, (list, tuple)):
        return badges
    return ()


def is_video_live(source: Any) -> bool:
    """Badge-based live detection for video or search result items."""
    if source is None:
        return False
    if read_field(source, "is_live") is True or read_field(source, "is_live_content") is True:
        return True

    for badge in _iter_badges(source):
        label = read_field(badge, "label") or read_field(badge, "text")
        if isinstance(label, str) and label.strip().upper() == "LIVE":
            return True
        if read_field(badge, "style") == _LIVE_BADGE_STYLE:
            return True
    return False


def _basic_flag(info: Any, name: str) -> bool:
    return read_field(info, "basic_info", name) is True or read_field(info, name) is True


def validate_video_for_connection(info: Any) -> LivenessResult:
    """
    Decide whether a chat connection should be opened for a video.

    A premiere is both live and upcoming; it is connectable and its chat
    emits `start` once the premiere begins.
    """
    live_status = read_field(info, "basic_info", "live_status") or read_field(info, "live_status")
    hls_manifest = read_field(info, "streaming_data", "hls_manifest_url")
    live_streamability = read_field(info, "playability_status", "liveStreamability")

    is_live = any([
        _basic_flag(info, "is_live"),
        _basic_flag(info, "is_live_content"),
        _basic_flag(info, "is_live_dvr_enabled"),
        _basic_flag(info, "is_low_latency_live_stream"),
        isinstance(live_status, str) and live_status.lower().startswith("live"),
        bool(hls_manifest),
        live_streamability is not None,
        is_video_live(read_field(info, "basic_info")),
        is_video_live(read_field(info, "primary_info")),
    ])
    is_upcoming = _basic_flag(info, "is_upcoming")

    if is_live and is_upcoming:
        return LivenessResult(True, PREMIERE, is_live=True, is_upcoming=True, is_premiere=True)
    if is_live:
        return LivenessResult(True, LIVE, is_live=True)
    if is_upcoming:
        return LivenessResult(False, UPCOMING, is_upcoming=True)
    return LivenessResult(False, NOT_LIVE)


def video_title(info: Any) -> Optional[str]:
    title = read_field(info, "basic_info", "title") or read_field(info, "title")
    return str(title) if title else None


__all__ = [
    "LIVE",
    "LivenessResult",
    "NOT_LIVE",
    "PREMIERE",
    "UPCOMING",
    "is_video_live",
    "read_field",
    "validate_video_for_connection",
    "video_title",
]
