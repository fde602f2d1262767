import re
from typing import Any, Dict, List, Optional

import httpx

from services.youtube.api.live_chat import LiveChatPoller
from services.youtube.channels.resolver import CHANNEL_ID_PATTERN, ChannelResolver
from services.youtube.errors import NotLive
from services.youtube.models.stream import YouTubeVideoInfo
from shared.logging.logger import get_logger
from shared.runtime.quotas import QuotaBufferWarning, QuotaTracker

log = get_logger("youtube.data_api")

_HANDLE_URL = re.compile(r"youtube\.com/@([^/?#]+)", re.IGNORECASE)
_CHANNEL_URL = re.compile(r"youtube\.com/channel/(UC[A-Za-z0-9_-]{22})", re.IGNORECASE)


class YouTubeDataClient:
    """
    YouTube Data API v3 backend for the chat platform.

    Responsibilities:
    - Resolve channel ids from @handles or channel URLs
    - Find the live broadcasts of a channel
    - Load video info and open chat handles for it
    - Account every call against the daily quota

    Read-only: chat handles opened here cannot send messages.
    """

    CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"
    SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
    VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"

    # YouTube Data API v3 cost per call
    QUOTA_COSTS = {"channels": 1, "search": 100, "videos": 1}

    MAX_SEARCH_RESULTS = 50

    def __init__(
        self,
        *,
        api_key: str,
        quota_tracker: Optional[QuotaTracker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        channel_resolver: Optional[ChannelResolver] = None,
        chat_poll_interval: float = 2.5,
    ):
        if not api_key:
            raise RuntimeError("YouTube API key is required")
        self.api_key = api_key
        self.quota_tracker = quota_tracker
        self.chat_poll_interval = chat_poll_interval

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=15.0)
        self.channel_resolver = channel_resolver or ChannelResolver(self.resolve_url)

    # ------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------

    async def _get(self, endpoint: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.quota_tracker is not None:
            try:
                self.quota_tracker.consume(self.QUOTA_COSTS[endpoint])
            except QuotaBufferWarning as warn:
                log.warning(f"[YouTube] {warn}")

        response = await self._http.get(url, params={**params, "key": self.api_key})
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------
    # Channel resolution
    # ------------------------------------------------------------

    async def resolve_url(self, url_or_handle: str) -> Optional[str]:
        """
        Resolve a channel id from a channel id, @handle, or channel URL.
        """
        identifier = (url_or_handle or "").strip()
        if not identifier:
            return None

        match = _CHANNEL_URL.search(identifier)
        if match:
            return match.group(1)
        if CHANNEL_ID_PATTERN.match(identifier):
            return identifier

        match = _HANDLE_URL.search(identifier)
        handle = match.group(1) if match else identifier.lstrip("@")

        data = await self._get(
            "channels",
            self.CHANNELS_URL,
            {"part": "id", "forHandle": handle},
        )
        items = data.get("items", [])
        if not items:
            log.info(f"[YouTube] Channel not found: @{handle}")
            return None
        return items[0].get("id")

    # ------------------------------------------------------------
    # Live video discovery
    # ------------------------------------------------------------

    async def get_live_video_ids(self, handle: str) -> List[str]:
        channel_id = await self.channel_resolver.resolve_channel_id(handle)
        if not channel_id:
            raise LookupError(f"Could not resolve channel id for @{handle}")

        data = await self._get(
            "search",
            self.SEARCH_URL,
            {
                "part": "id",
                "channelId": channel_id,
                "eventType": "live",
                "type": "video",
                "maxResults": self.MAX_SEARCH_RESULTS,
            },
        )

        video_ids: List[str] = []
        for item in data.get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if video_id and video_id not in video_ids:
                video_ids.append(video_id)

        log.debug(f"[YouTube] Live search for {channel_id}: {len(video_ids)} result(s)")
        return video_ids

    # ------------------------------------------------------------
    # Video info
    # ------------------------------------------------------------

    async def get_info(self, video_id: str) -> YouTubeVideoInfo:
        data = await self._get(
            "videos",
            self.VIDEOS_URL,
            {"part": "snippet,liveStreamingDetails", "id": video_id},
        )
        items = data.get("items", [])
        if not items:
            raise NotLive(video_id, "Video not found")
        return YouTubeVideoInfo.from_resource(items[0], chat_factory=self._open_chat)

    def _open_chat(self, info: YouTubeVideoInfo) -> LiveChatPoller:
        return LiveChatPoller(
            api_key=self.api_key,
            live_chat_id=info.live_chat_id,
            video_id=info.video_id,
            http_client=self._http,
            quota_tracker=self.quota_tracker,
            poll_interval=self.chat_poll_interval,
        )


__all__ = ["YouTubeDataClient"]
