"""
Monetization and engagement notification pipeline.

BaseEventHandler is the single entry point for every monetary chat item
(SuperChat, SuperSticker, membership, gift membership). It applies the
suppression predicate and hands the item to NotificationDispatcher, which
builds the normalized event and emits it. UnifiedNotificationProcessor covers
the remaining notice-style items (viewer engagement).
"""

from __future__ import annotations

import inspect
import math
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional

from services.youtube.chat.currency import CurrencyParser
from services.youtube.chat.extract import (
    ChatAuthor,
    extract_author,
    extract_message_text,
    extract_notification_id,
    extract_structured_text,
    extract_timestamp,
)
from services.youtube.events.factory import YouTubeEventFactory
from shared.chat.events import EventType, PlatformEvent, utc_now_iso
from shared.logging.logger import get_logger
from shared.runtime.errors import PlatformErrorHandler

log = get_logger("youtube.notifications")

SuppressionPredicate = Callable[[Optional[ChatAuthor], Dict[str, Any]], bool]
Emitter = Callable[[PlatformEvent], Awaitable[Any]]

_ANONYMOUS_NAMES = {"anonymous", "n/a", "unknown"}

_RECENT_ID_LIMIT = 500


def suppress_anonymous(author: Optional[ChatAuthor], item: Dict[str, Any]) -> bool:
    """Default suppression predicate: drop placeholder/anonymous authors."""
    if author is None:
        return False
    return author.name.strip().lower() in _ANONYMOUS_NAMES


def _item(chat_item: Dict[str, Any]) -> Dict[str, Any]:
    item = chat_item.get("item")
    return item if isinstance(item, dict) else chat_item


def _purchase_amount_text(item: Dict[str, Any]) -> Optional[str]:
    raw = item.get("purchase_amount")
    if isinstance(raw, str) and raw.strip():
        return raw
    text = extract_structured_text(item.get("purchaseAmountText"))
    return text or None


class NotificationDispatcher:
    """
    Builds monetary events from chat items and emits them.

    Every dispatch method returns True when an event (regular or error-mode)
    was emitted. Missing amount, currency, id, author or timestamp produce an
    error-mode event of the same type so downstream consumers still see the
    occurrence.
    """

    def __init__(
        self,
        *,
        event_factory: YouTubeEventFactory,
        emit: Emitter,
        error_handler: PlatformErrorHandler,
        currency_parser: Optional[CurrencyParser] = None,
    ):
        self.event_factory = event_factory
        self.emit = emit
        self.error_handler = error_handler
        self.currency_parser = currency_parser or CurrencyParser()
        self._recent_ids: "OrderedDict[str, None]" = OrderedDict()

    # ------------------------------------------------------------------ #
    # Duplicate suppression
    # ------------------------------------------------------------------ #

    def _seen(self, event_type: str, notification_id: Optional[str]) -> bool:
        if not notification_id:
            return False
        key = f"{event_type}:{notification_id}"
        if key in self._recent_ids:
            return True
        self._recent_ids[key] = None
        while len(self._recent_ids) > _RECENT_ID_LIMIT:
            self._recent_ids.popitem(last=False)
        return False

    # ------------------------------------------------------------------ #
    # Builders
    # ------------------------------------------------------------------ #

    async def emit_error_notification(
        self,
        chat_item: Dict[str, Any],
        event_type: str,
        reason: str,
        **fields: Any,
    ) -> bool:
        author = extract_author(chat_item)
        log.warning(
            f"[YouTube] Emitting error-mode {event_type} notification: {reason}"
        )
        common = dict(
            username=author.name if author else None,
            user_id=author.id if author else None,
            timestamp=extract_timestamp(chat_item) or utc_now_iso(),
            notification_id=extract_notification_id(chat_item),
            video_id=chat_item.get("video_id"),
            is_error=True,
        )
        if event_type == EventType.GIFT:
            fields.setdefault("gift_type", "unknown")
            event = self.event_factory.create_gift(**common, **fields)
        elif event_type == EventType.PAYPIGGY:
            event = self.event_factory.create_paypiggy(**common, **fields)
        else:
            event = self.event_factory.create_giftpaypiggy(**common, **fields)
        await self.emit(event)
        return True

    async def _dispatch_paid(
        self,
        chat_item: Dict[str, Any],
        *,
        gift_type: str,
        message: str,
        extra: Dict[str, Any],
    ) -> bool:
        item = _item(chat_item)
        notification_id = extract_notification_id(chat_item)
        if self._seen(EventType.GIFT, notification_id):
            log.debug(f"[YouTube] Duplicate {gift_type} {notification_id} ignored")
            return False

        author = extract_author(chat_item)
        timestamp = extract_timestamp(chat_item)
        amount_text = _purchase_amount_text(item)
        parsed = self.currency_parser.parse(amount_text) if amount_text else None

        reason = None
        if author is None or not author.id:
            reason = "missing author"
        elif not timestamp:
            reason = "missing timestamp"
        elif not notification_id:
            reason = "missing id"
        elif parsed is None:
            reason = "missing purchase_amount"
        elif not parsed.success or not math.isfinite(parsed.amount):
            reason = f"invalid purchase_amount {amount_text!r}"

        if reason:
            return await self.emit_error_notification(
                chat_item, EventType.GIFT, reason, gift_type=gift_type, gift_count=1
            )

        event = self.event_factory.create_gift(
            username=author.name,
            user_id=author.id,
            timestamp=timestamp,
            gift_type=gift_type,
            gift_count=1,
            amount=parsed.amount,
            currency=parsed.currency,
            notification_id=notification_id,
            message=message,
            video_id=chat_item.get("video_id"),
            **extra,
        )
        await self.emit(event)
        return True

    # ------------------------------------------------------------------ #
    # Dispatch methods
    # ------------------------------------------------------------------ #

    async def dispatch_super_chat(self, chat_item: Dict[str, Any]) -> bool:
        item = _item(chat_item)
        return await self._dispatch_paid(
            chat_item,
            gift_type="Super Chat",
            message=extract_message_text(item.get("message")).strip(),
            extra={"is_super_chat": True},
        )

    async def dispatch_super_sticker(self, chat_item: Dict[str, Any]) -> bool:
        item = _item(chat_item)
        sticker = item.get("sticker") if isinstance(item.get("sticker"), dict) else {}
        description = (
            sticker.get("name")
            or sticker.get("altText")
            or extract_structured_text(sticker.get("label"))
            or ""
        )
        extra = {"sticker": description} if description else {}
        return await self._dispatch_paid(
            chat_item,
            gift_type="Super Sticker",
            message=description,
            extra=extra,
        )

    async def dispatch_membership(self, chat_item: Dict[str, Any]) -> bool:
        item = _item(chat_item)
        author = extract_author(chat_item)
        timestamp = extract_timestamp(chat_item)
        membership_level = extract_structured_text(item.get("headerPrimaryText")) or None
        message = (
            extract_structured_text(item.get("headerSubtext"))
            or extract_message_text(item.get("message")).strip()
        )
        months = item.get("memberMilestoneDurationInMonths")
        if not isinstance(months, (int, float)) or isinstance(months, bool):
            months = None

        if author is None or not author.id or not timestamp:
            return await self.emit_error_notification(
                chat_item,
                EventType.PAYPIGGY,
                "missing author or timestamp",
                months=months,
            )

        event = self.event_factory.create_paypiggy(
            username=author.name,
            user_id=author.id,
            timestamp=timestamp,
            months=months,
            message=message,
            membership_level=membership_level,
            notification_id=extract_notification_id(chat_item),
            video_id=chat_item.get("video_id"),
        )
        await self.emit(event)
        return True

    async def dispatch_gift_membership(self, chat_item: Dict[str, Any]) -> bool:
        item = _item(chat_item)
        gift_count = item.get("giftMembershipsCount")
        if gift_count is None:
            gift_count = _count_from_header(
                extract_structured_text(item.get("headerPrimaryText"))
            )
        if (
            not isinstance(gift_count, (int, float))
            or isinstance(gift_count, bool)
            or not math.isfinite(gift_count)
        ):
            return await self.emit_error_notification(
                chat_item, EventType.GIFTPAYPIGGY, "missing giftMembershipsCount"
            )

        author = extract_author(chat_item)
        timestamp = extract_timestamp(chat_item)
        if author is None or not author.id or not timestamp:
            return await self.emit_error_notification(
                chat_item,
                EventType.GIFTPAYPIGGY,
                "missing author or timestamp",
                gift_count=gift_count,
            )

        event = self.event_factory.create_giftpaypiggy(
            username=author.name,
            user_id=author.id,
            timestamp=timestamp,
            gift_count=gift_count,
            tier=extract_structured_text(item.get("membershipLevelName")) or None,
            message=extract_message_text(item.get("message")).strip(),
            notification_id=extract_notification_id(chat_item),
            video_id=chat_item.get("video_id"),
        )
        await self.emit(event)
        return True


def _count_from_header(header: str) -> Optional[int]:
    digits = ""
    for char in header or "":
        if char.isdigit():
            digits += char
        elif digits:
            break
    return int(digits) if digits else None


class BaseEventHandler:
    """
    Shared entry point for monetary chat items.

    Extracts the author, applies the suppression predicate and calls the
    dispatcher method named by `dispatch_method`. Exceptions are reported as
    processing errors and never propagate.
    """

    def __init__(
        self,
        *,
        dispatcher: NotificationDispatcher,
        error_handler: PlatformErrorHandler,
        should_suppress: SuppressionPredicate = suppress_anonymous,
    ):
        self.dispatcher = dispatcher
        self.error_handler = error_handler
        self.should_suppress = should_suppress

    async def handle_event(
        self,
        chat_item: Dict[str, Any],
        *,
        event_type: str,
        dispatch_method: str,
    ) -> bool:
        try:
            author = extract_author(chat_item)
            if self.should_suppress(author, _item(chat_item)):
                log.debug(
                    f"[YouTube] Suppressed {event_type} from "
                    f"{author.name if author else 'unknown author'}"
                )
                return False

            method = getattr(self.dispatcher, dispatch_method, None)
            if method is None:
                raise RuntimeError(f"Unknown dispatch method: {dispatch_method}")
            return await method(chat_item)

        except Exception as e:
            self.error_handler.handle_processing_error(
                e,
                event_type,
                chat_item,
                f"Error handling {event_type}: {e}",
            )
            return False


class UnifiedNotificationProcessor:
    """
    Builds notice-style notifications (viewer engagement and friends) and
    passes them to the matching handler from the handler map.

    Monetary types with missing author, user id or timestamp fall back to an
    error-mode event through the dispatcher.
    """

    MONETIZATION_TYPES = {EventType.GIFT, EventType.PAYPIGGY, EventType.GIFTPAYPIGGY}

    def __init__(
        self,
        *,
        dispatcher: NotificationDispatcher,
        error_handler: PlatformErrorHandler,
        get_handler: Callable[[str], Optional[Callable[..., Any]]],
        should_suppress: SuppressionPredicate = suppress_anonymous,
    ):
        self.dispatcher = dispatcher
        self.error_handler = error_handler
        self.get_handler = get_handler
        self.should_suppress = should_suppress

    async def process_notification(
        self,
        chat_item: Dict[str, Any],
        event_type: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            author = extract_author(chat_item)
            if self.should_suppress(author, _item(chat_item)):
                log.debug(f"[YouTube] Suppressed {event_type} notification")
                return None

            timestamp = extract_timestamp(chat_item)
            missing = None
            if author is None:
                missing = "author"
            elif not author.id:
                missing = "user id"
            elif not timestamp:
                missing = "timestamp"

            if missing:
                log.warning(f"[YouTube] Suppressed {event_type} notification: missing {missing}")
                if event_type in self.MONETIZATION_TYPES:
                    await self.dispatcher.emit_error_notification(chat_item, event_type, f"missing {missing}")
                return None

            notification: Dict[str, Any] = {
                "platform": "youtube",
                "type": event_type,
                "username": author.name,
                "user_id": author.id,
                "message": extract_message_text(_item(chat_item).get("message")).strip(),
                "timestamp": timestamp,
                "video_id": chat_item.get("video_id"),
            }
            notification_id = extract_notification_id(chat_item)
            if notification_id:
                notification["id"] = notification_id
            notification.update(extra or {})

            handler = self.get_handler(event_type)
            if handler is not None:
                result = handler(notification)
                if inspect.isawaitable(result):
                    await result
            else:
                log.debug(f"[YouTube] No handler registered for {event_type} notifications")

            return notification

        except Exception as e:
            self.error_handler.handle_processing_error(
                e,
                event_type,
                chat_item,
                f"Error processing {event_type} notification: {e}",
            )
            return None


__all__ = [
    "BaseEventHandler",
    "NotificationDispatcher",
    "SuppressionPredicate",
    "UnifiedNotificationProcessor",
    "suppress_anonymous",
]
