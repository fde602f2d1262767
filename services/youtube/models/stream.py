from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


@dataclass
class YouTubeVideoInfo:
    """
    Video info built from a Data API `videos` resource.

    Exposes the attribute layout the liveness checks and viewer extractor
    read (`basic_info`, `video_details`) and opens a chat handle on demand.
    """

    video_id: str
    basic_info: Dict[str, Any]
    video_details: Dict[str, Any] = field(default_factory=dict)
    live_chat_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    chat_factory: Optional[Callable[["YouTubeVideoInfo"], Any]] = field(
        default=None, repr=False
    )

    @classmethod
    def from_resource(
        cls,
        resource: Dict[str, Any],
        *,
        chat_factory: Optional[Callable[["YouTubeVideoInfo"], Any]] = None,
    ) -> "YouTubeVideoInfo":
        snippet = resource.get("snippet") or {}
        live = resource.get("liveStreamingDetails") or {}
        broadcast = (snippet.get("liveBroadcastContent") or "none").lower()

        is_live = broadcast == "live"
        is_upcoming = broadcast == "upcoming"
        ended = bool(live.get("actualEndTime"))

        return cls(
            video_id=resource.get("id") or "",
            basic_info={
                "id": resource.get("id"),
                "title": snippet.get("title"),
                "channel_id": snippet.get("channelId"),
                "is_live": is_live and not ended,
                "is_upcoming": is_upcoming,
                "is_live_content": bool(live) and is_live and not ended,
                "live_status": broadcast,
                "scheduled_start": live.get("scheduledStartTime"),
                "actual_start": live.get("actualStartTime"),
            },
            video_details={
                "concurrent_viewers": live.get("concurrentViewers"),
            },
            live_chat_id=live.get("activeLiveChatId"),
            raw=resource,
            chat_factory=chat_factory,
        )

    @property
    def is_live(self) -> bool:
        return self.basic_info.get("is_live") is True

    def get_live_chat(self) -> Any:
        if not self.live_chat_id or self.chat_factory is None:
            return None
        return self.chat_factory(self)


__all__ = ["YouTubeVideoInfo"]
