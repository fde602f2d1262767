"""
Chat item normalization.

Vendor chat updates arrive in several shapes: batched `actions` lists,
single items wrapped under `item`, flat items, and direct `{author, text}`
payloads. Everything is reduced to `{"item": {...}, "video_id": ...}` before
the dispatch table sees it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

TEXT_MESSAGE = "LiveChatTextMessage"
PAID_MESSAGE = "LiveChatPaidMessage"
PAID_STICKER = "LiveChatPaidSticker"
MEMBERSHIP_ITEM = "LiveChatMembershipItem"
GIFT_PURCHASE = "LiveChatSponsorshipsGiftPurchaseAnnouncement"
GIFT_REDEMPTION = "LiveChatSponsorshipsGiftRedemptionAnnouncement"
VIEWER_ENGAGEMENT = "LiveChatViewerEngagementMessage"

DELETE_ACTIONS = frozenset({
    "RemoveChatItemAction",
    "RemoveChatItemByAuthorAction",
    "MarkChatItemsByAuthorAsDeletedAction",
})

# Renderer variants duplicate the standard monetization items
RENDERER_VARIANTS = frozenset({
    "LiveChatPaidMessageRenderer",
    "LiveChatPaidStickerRenderer",
    "LiveChatMembershipItemRenderer",
    "LiveChatTickerPaidMessageItemRenderer",
    "LiveChatTickerSponsorItemRenderer",
    "LiveChatTickerSponsorshipsItemRenderer",
    "LiveChatSponsorshipsGiftRedemptionAnnouncementRenderer",
})

LOW_PRIORITY_EVENTS = frozenset({
    "LiveChatPlaceholderItem",
    "LiveChatPurchaseMessage",
    "LiveChatModeChangeMessage",
    "LiveChatBannerRedirect",
    "LiveChatBanner",
    "LiveChatAutoModMessage",
    "UpdateLiveChatPollAction",
    "AddBannerToLiveChatCommand",
    "RemoveBannerForLiveChatCommand",
})


@dataclass
class ChatItemNormalization:
    normalized_item: Optional[Dict[str, Any]]
    event_type: Optional[str]
    debug_metadata: Dict[str, Any] = field(default_factory=dict)
    skip: bool = False


def is_direct_update(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "item" not in payload
        and "actions" not in payload
        and "type" not in payload
        and isinstance(payload.get("author"), dict)
        and isinstance(payload.get("text"), str)
    )


def wrap_direct_update(
    payload: Dict[str, Any],
    video_id: Optional[str],
) -> Dict[str, Any]:
    """Wrap a direct `{author, text}` chat update as a LiveChatTextMessage."""
    timestamp_usec = payload.get("timestamp_usec") or payload.get("timestampUsec")
    if timestamp_usec is None:
        timestamp_usec = str(int(time.time() * 1_000_000))

    return {
        "item": {
            "type": TEXT_MESSAGE,
            "id": payload.get("id") or f"direct-{uuid4().hex}",
            "timestampUsec": str(timestamp_usec),
            "author": payload["author"],
            "message": {"text": payload["text"]},
        },
        "video_id": video_id,
    }


def extract_chat_items(update: Any, video_id: Optional[str]) -> List[Dict[str, Any]]:
    """
    Unpack one chat-update payload into wrapped chat items.

    Every returned item has the `{"item": ..., "video_id": ...}` shape.
    """
    if not isinstance(update, dict):
        return []

    if is_direct_update(update):
        return [wrap_direct_update(update, video_id)]

    actions = update.get("actions")
    if isinstance(actions, list):
        items: List[Dict[str, Any]] = []
        for action in actions:
            if not isinstance(action, dict):
                continue
            added = action.get("addChatItemAction") or action.get("add_chat_item_action")
            if isinstance(added, dict) and isinstance(added.get("item"), dict):
                items.append({"item": added["item"], "video_id": video_id})
                continue
            action_type = action.get("type")
            if isinstance(action_type, str):
                # non-add actions (deletes, polls) carry their payload inline
                items.append({"item": action, "video_id": video_id})
        return items

    item = update.get("item")
    if isinstance(item, dict):
        return [{"item": item, "video_id": update.get("video_id") or video_id}]

    if isinstance(update.get("type"), str):
        return [{"item": update, "video_id": video_id}]

    return []


def normalize_chat_item(chat_item: Any) -> ChatItemNormalization:
    """
    Reduce a chat item to `{item, video_id}` and resolve its event type.

    Delete actions are flagged `skip`; payloads without any structure come
    back with `normalized_item=None`.
    """
    if not isinstance(chat_item, dict):
        return ChatItemNormalization(
            normalized_item=None,
            event_type=None,
            debug_metadata={"reason": "not a mapping", "payload_type": type(chat_item).__name__},
        )

    if is_direct_update(chat_item):
        chat_item = wrap_direct_update(chat_item, chat_item.get("video_id"))

    item = chat_item.get("item")
    if isinstance(item, dict):
        normalized = dict(chat_item)
    elif isinstance(chat_item.get("type"), str):
        item = chat_item
        normalized = {"item": chat_item, "video_id": chat_item.get("video_id")}
    else:
        return ChatItemNormalization(
            normalized_item=None,
            event_type=None,
            debug_metadata={"reason": "missing item", "keys": sorted(chat_item.keys())},
        )

    event_type = item.get("type")
    if not isinstance(event_type, str) or not event_type:
        return ChatItemNormalization(
            normalized_item=None,
            event_type=None,
            debug_metadata={"reason": "missing type", "keys": sorted(item.keys())},
        )

    debug = {
        "event_type": event_type,
        "video_id": normalized.get("video_id"),
        "item_id": item.get("id"),
    }
    return ChatItemNormalization(
        normalized_item=normalized,
        event_type=event_type,
        debug_metadata=debug,
        skip=event_type in DELETE_ACTIONS,
    )


__all__ = [
    "ChatItemNormalization",
    "DELETE_ACTIONS",
    "GIFT_PURCHASE",
    "GIFT_REDEMPTION",
    "LOW_PRIORITY_EVENTS",
    "MEMBERSHIP_ITEM",
    "PAID_MESSAGE",
    "PAID_STICKER",
    "RENDERER_VARIANTS",
    "TEXT_MESSAGE",
    "VIEWER_ENGAGEMENT",
    "extract_chat_items",
    "is_direct_update",
    "normalize_chat_item",
    "wrap_direct_update",
]
