import asyncio
import os
from typing import Any, Dict, List, Optional

# keep test runs from writing log files
os.environ.setdefault("MULTISTREAM_LOG_TO_FILE", "0")

import pytest  # noqa: E402

from services.youtube.connections.instances import ClientInstanceManager  # noqa: E402
from services.youtube.platform import YouTubePlatform  # noqa: E402
from shared.chat.events import PLATFORM_EVENT  # noqa: E402
from shared.config.youtube import YouTubeConfig  # noqa: E402
from shared.runtime.retry import RetrySystem  # noqa: E402

VIDEO_A = "liveStreamA"
VIDEO_B = "liveStreamB"
VIDEO_C = "liveStreamC"

# 2024-01-01T00:00:00Z in microseconds
TIMESTAMP_USEC = "1704067200000000"
TIMESTAMP_ISO = "2024-01-01T00:00:00.000Z"


class FakeChatHandle:
    """Chat handle double that records calls and replays lifecycle events."""

    def __init__(self, video_id: str = VIDEO_A):
        self.video_id = video_id
        self.listeners: Dict[str, List[Any]] = {}
        self.started = False
        self.stopped = False
        self.listeners_removed = False
        self.sent: List[str] = []
        self.send_result = True

    def on(self, event: str, listener) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def remove_all_listeners(self) -> None:
        self.listeners_removed = True
        self.listeners.clear()

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def send_message(self, text: str) -> bool:
        self.sent.append(text)
        return self.send_result

    async def fire(self, event: str, payload: Any = None) -> None:
        for listener in list(self.listeners.get(event, [])):
            await listener(payload)


class FakeVideoInfo:
    def __init__(self, handle: Optional[FakeChatHandle], **basic_info: Any):
        self.basic_info = dict(basic_info)
        self._handle = handle

    def get_live_chat(self):
        return self._handle


class FakeClient:
    """
    Client double exposing get_info / get_live_video_ids.

    `live_ids` is what detection returns; `infos` maps video ids to video
    info. Unknown ids get a live video with a fresh chat handle.
    """

    def __init__(self, live_ids: Optional[List[str]] = None):
        self.live_ids: List[str] = list(live_ids or [])
        self.infos: Dict[str, FakeVideoInfo] = {}
        self.handles: Dict[str, FakeChatHandle] = {}
        self.viewers: Dict[str, Any] = {}
        self.detection_error: Optional[BaseException] = None
        self.detection_calls = 0

    def add_live(self, video_id: str, **basic_info: Any) -> FakeChatHandle:
        handle = FakeChatHandle(video_id)
        info = basic_info or {"is_live": True}
        self.handles[video_id] = handle
        self.infos[video_id] = FakeVideoInfo(handle, **info)
        return handle

    async def get_info(self, video_id: str) -> FakeVideoInfo:
        if video_id not in self.infos:
            self.add_live(video_id)
        info = self.infos[video_id]
        if video_id in self.viewers:
            info.basic_info["view_count"] = self.viewers[video_id]
        return info

    async def get_live_video_ids(self, handle: str) -> List[str]:
        self.detection_calls += 1
        if self.detection_error is not None:
            raise self.detection_error
        return list(self.live_ids)


class EventRecorder:
    """Collects `platform:event` envelopes."""

    def __init__(self):
        self.envelopes: List[Dict[str, Any]] = []

    def __call__(self, envelope: Dict[str, Any]) -> None:
        self.envelopes.append(envelope)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e["data"] for e in self.envelopes if e["type"] == event_type]

    @property
    def types(self) -> List[str]:
        return [e["type"] for e in self.envelopes]


async def no_sleep(_: float) -> None:
    await asyncio.sleep(0)


# ---------------------------------------------------------------------- #
# Fixtures
# ---------------------------------------------------------------------- #


@pytest.fixture
def youtube_config() -> YouTubeConfig:
    return YouTubeConfig(
        enabled=True,
        username="testchannel",
        api_key="test-key",
        retry_attempts=3,
        max_streams=2,
        stream_polling_interval=60,
        full_check_interval=300,
    )


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def make_platform(youtube_config, fake_client, recorder):
    """Build a platform wired to the fake client with a private instance cache."""

    def _make(config: Optional[YouTubeConfig] = None, **overrides: Any) -> YouTubePlatform:
        cfg = config or youtube_config

        async def create_client():
            return fake_client

        kwargs: Dict[str, Any] = dict(
            client_factory=create_client,
            instance_manager=ClientInstanceManager(),
            retry=RetrySystem(
                platform="youtube",
                max_attempts=cfg.retry_attempts,
                sleep=no_sleep,
            ),
        )
        kwargs.update(overrides)
        platform = YouTubePlatform(cfg, **kwargs)
        platform.on(PLATFORM_EVENT, recorder)
        return platform

    return _make


@pytest.fixture
def text_item() -> Dict[str, Any]:
    return {
        "item": {
            "type": "LiveChatTextMessage",
            "id": "msg-1",
            "timestampUsec": TIMESTAMP_USEC,
            "author": {"id": "UC_author_1", "name": "Viewer One", "badges": ["Moderator"]},
            "message": {"runs": [{"text": "hello "}, {"emojiText": ":wave:"}]},
        },
        "video_id": VIDEO_A,
    }


@pytest.fixture
def paid_item() -> Dict[str, Any]:
    return {
        "item": {
            "type": "LiveChatPaidMessage",
            "id": "sc-1",
            "timestampUsec": TIMESTAMP_USEC,
            "author": {"id": "UC_author_2", "name": "Supporter"},
            "purchase_amount": "$5.00",
            "message": {"text": "great stream"},
        },
        "video_id": VIDEO_A,
    }


@pytest.fixture
def gift_purchase_item() -> Dict[str, Any]:
    return {
        "item": {
            "type": "LiveChatSponsorshipsGiftPurchaseAnnouncement",
            "id": "gift-1",
            "timestampUsec": TIMESTAMP_USEC,
            "author": {"id": "UC_author_3", "name": "Generous"},
            "giftMembershipsCount": 5,
            "headerPrimaryText": {"runs": [{"text": "Sent 5 Member gifts"}]},
        },
        "video_id": VIDEO_A,
    }
