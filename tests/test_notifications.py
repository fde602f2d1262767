"""Unit tests for the monetization and engagement notification pipeline."""
from unittest.mock import AsyncMock, Mock

import pytest

from services.youtube.chat.extract import ChatAuthor
from services.youtube.chat.notifications import (
    BaseEventHandler,
    NotificationDispatcher,
    UnifiedNotificationProcessor,
    suppress_anonymous,
)
from services.youtube.events.factory import YouTubeEventFactory
from shared.runtime.errors import ErrorKind, PlatformErrorHandler

from conftest import TIMESTAMP_ISO, TIMESTAMP_USEC, VIDEO_A


@pytest.fixture
def error_handler():
    return PlatformErrorHandler(platform="youtube")


@pytest.fixture
def emit():
    return AsyncMock()


@pytest.fixture
def dispatcher(emit, error_handler):
    return NotificationDispatcher(
        event_factory=YouTubeEventFactory(),
        emit=emit,
        error_handler=error_handler,
    )


def emitted(emit):
    return [call.args[0] for call in emit.await_args_list]


@pytest.mark.unit
@pytest.mark.asyncio
class TestNotificationDispatcher:
    """Dispatch methods build and emit monetary events."""

    async def test_super_chat(self, dispatcher, emit, paid_item):
        assert await dispatcher.dispatch_super_chat(paid_item) is True

        event = emitted(emit)[0]
        assert event.type == "gift"
        assert event.data["gift_type"] == "Super Chat"
        assert event.data["amount"] == 5.0
        assert event.data["currency"] == "USD"
        assert event.data["message"] == "great stream"
        assert event.data["is_super_chat"] is True
        assert event.data["video_id"] == VIDEO_A
        assert event.timestamp == TIMESTAMP_ISO

    async def test_duplicate_super_chat_ignored(self, dispatcher, emit, paid_item):
        await dispatcher.dispatch_super_chat(paid_item)
        assert await dispatcher.dispatch_super_chat(paid_item) is False
        assert emit.await_count == 1

    async def test_super_chat_bad_amount_is_error_mode(self, dispatcher, emit, paid_item):
        paid_item["item"]["purchase_amount"] = "lots"

        assert await dispatcher.dispatch_super_chat(paid_item) is True
        event = emitted(emit)[0]
        assert event.type == "gift"
        assert event.data["is_error"] is True

    async def test_super_sticker(self, dispatcher, emit):
        item = {
            "item": {
                "type": "LiveChatPaidSticker",
                "id": "st-1",
                "timestampUsec": TIMESTAMP_USEC,
                "author": {"id": "UC5", "name": "Sticker Fan"},
                "purchaseAmountText": {"simpleText": "€2,00"},
                "sticker": {"altText": "Happy cat"},
            },
            "video_id": VIDEO_A,
        }
        await dispatcher.dispatch_super_sticker(item)

        event = emitted(emit)[0]
        assert event.data["gift_type"] == "Super Sticker"
        assert event.data["currency"] == "EUR"
        assert event.data["sticker"] == "Happy cat"

    async def test_membership(self, dispatcher, emit):
        item = {
            "item": {
                "type": "LiveChatMembershipItem",
                "id": "mem-1",
                "timestampUsec": TIMESTAMP_USEC,
                "author": {"id": "UC6", "name": "New Member"},
                "headerPrimaryText": {"runs": [{"text": "Member for 6 months"}]},
                "memberMilestoneDurationInMonths": 6,
            },
            "video_id": VIDEO_A,
        }
        await dispatcher.dispatch_membership(item)

        event = emitted(emit)[0]
        assert event.type == "paypiggy"
        assert event.data["months"] == 6
        assert event.data["membership_level"] == "Member for 6 months"

    async def test_gift_membership(self, dispatcher, emit, gift_purchase_item):
        await dispatcher.dispatch_gift_membership(gift_purchase_item)

        event = emitted(emit)[0]
        assert event.type == "giftpaypiggy"
        assert event.data["gift_count"] == 5
        assert event.data["username"] == "Generous"

    async def test_gift_membership_count_from_header(self, dispatcher, emit, gift_purchase_item):
        del gift_purchase_item["item"]["giftMembershipsCount"]
        await dispatcher.dispatch_gift_membership(gift_purchase_item)
        assert emitted(emit)[0].data["gift_count"] == 5

    async def test_gift_membership_without_count_is_error_mode(self, dispatcher, emit):
        item = {"item": {"type": "x", "id": "g", "author": {"id": "UC", "name": "n"}}}
        await dispatcher.dispatch_gift_membership(item)

        event = emitted(emit)[0]
        assert event.type == "giftpaypiggy"
        assert event.data["is_error"] is True


@pytest.mark.unit
@pytest.mark.asyncio
class TestBaseEventHandler:
    """Suppression and error containment."""

    async def test_suppressed_author(self, dispatcher, error_handler, emit, paid_item):
        handler = BaseEventHandler(
            dispatcher=dispatcher,
            error_handler=error_handler,
            should_suppress=lambda author, item: True,
        )
        result = await handler.handle_event(
            paid_item, event_type="gift", dispatch_method="dispatch_super_chat"
        )
        assert result is False
        emit.assert_not_awaited()

    async def test_dispatch_exception_becomes_processing_error(self, error_handler, paid_item):
        broken = Mock()
        broken.dispatch_super_chat = AsyncMock(side_effect=RuntimeError("boom"))
        handler = BaseEventHandler(dispatcher=broken, error_handler=error_handler)

        result = await handler.handle_event(
            paid_item, event_type="gift", dispatch_method="dispatch_super_chat"
        )
        assert result is False
        assert error_handler.counts()["processing"] == 1
        assert error_handler.last_error(ErrorKind.PROCESSING).operation == "gift"


@pytest.mark.unit
@pytest.mark.asyncio
class TestUnifiedNotificationProcessor:
    """Engagement-style notifications."""

    def _item(self, **overrides):
        item = {
            "type": "LiveChatViewerEngagementMessage",
            "id": "eng-1",
            "timestampUsec": TIMESTAMP_USEC,
            "author": {"id": "UC7", "name": "YouTube"},
            "message": {"runs": [{"text": "Welcome to live chat!"}]},
        }
        item.update(overrides)
        return {"item": item, "video_id": VIDEO_A}

    async def test_notification_delivered(self, dispatcher, error_handler):
        handler = Mock()
        processor = UnifiedNotificationProcessor(
            dispatcher=dispatcher,
            error_handler=error_handler,
            get_handler=lambda event_type: handler,
        )
        notification = await processor.process_notification(
            self._item(), "engagement", {"is_system_message": True}
        )

        handler.assert_called_once_with(notification)
        assert notification["message"] == "Welcome to live chat!"
        assert notification["id"] == "eng-1"
        assert notification["is_system_message"] is True

    async def test_missing_timestamp_suppresses(self, dispatcher, error_handler):
        handler = Mock()
        processor = UnifiedNotificationProcessor(
            dispatcher=dispatcher,
            error_handler=error_handler,
            get_handler=lambda event_type: handler,
        )
        item = self._item()
        del item["item"]["timestampUsec"]

        assert await processor.process_notification(item, "engagement") is None
        handler.assert_not_called()

    async def test_missing_author_for_monetary_type_is_error_mode(self, dispatcher, error_handler, emit):
        processor = UnifiedNotificationProcessor(
            dispatcher=dispatcher,
            error_handler=error_handler,
            get_handler=lambda event_type: None,
        )
        item = self._item()
        del item["item"]["author"]

        assert await processor.process_notification(item, "paypiggy") is None
        assert emitted(emit)[0].data["is_error"] is True


@pytest.mark.unit
class TestSuppressAnonymous:
    def test_predicate(self):
        assert suppress_anonymous(ChatAuthor(id=None, name="Anonymous"), {}) is True
        assert suppress_anonymous(ChatAuthor(id="UC1", name="Real"), {}) is False
        assert suppress_anonymous(None, {}) is False
