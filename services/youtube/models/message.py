"""
Mapping of Data API `liveChatMessage` resources onto chat-update actions.

The chat pipeline understands vendor chat items (`LiveChatTextMessage`,
`LiveChatPaidMessage`, ...). Data API resources carry the same information
under `snippet.type` + `*Details`; this module translates one into the other
so both backends share the normalizer and dispatch table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from services.youtube.chat.normalizer import (
    GIFT_PURCHASE,
    GIFT_REDEMPTION,
    MEMBERSHIP_ITEM,
    PAID_MESSAGE,
    PAID_STICKER,
    TEXT_MESSAGE,
)

CHAT_ENDED = "chatEndedEvent"
MESSAGE_DELETED = "messageDeletedEvent"
USER_BANNED = "userBannedEvent"


def published_at_usec(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return str(int(ts.timestamp() * 1_000_000))


def _author(details: Dict[str, Any]) -> Dict[str, Any]:
    badges = [
        badge
        for badge in [
            "owner" if details.get("isChatOwner") else None,
            "moderator" if details.get("isChatModerator") else None,
            "member" if details.get("isChatSponsor") else None,
            "verified" if details.get("isVerified") else None,
        ]
        if badge
    ]
    return {
        "id": details.get("channelId"),
        "name": details.get("displayName") or "",
        "is_owner": bool(details.get("isChatOwner")),
        "is_moderator": bool(details.get("isChatModerator")),
        "is_member": bool(details.get("isChatSponsor")),
        "is_verified": bool(details.get("isVerified")),
        "badges": badges,
    }


def is_chat_ended(resource: Dict[str, Any]) -> bool:
    snippet = resource.get("snippet") or {}
    return snippet.get("type") == CHAT_ENDED


def to_chat_action(resource: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Convert one liveChatMessage resource to a chat-update action.

    Returns None for resources the chat pipeline has no use for.
    """
    snippet = resource.get("snippet") or {}
    message_type = snippet.get("type")

    if message_type == MESSAGE_DELETED:
        details = snippet.get("messageDeletedDetails") or {}
        return {
            "type": "RemoveChatItemAction",
            "targetItemId": details.get("deletedMessageId"),
        }
    if message_type == USER_BANNED:
        details = snippet.get("userBannedDetails") or {}
        banned = details.get("bannedUserDetails") or {}
        return {
            "type": "RemoveChatItemByAuthorAction",
            "externalChannelId": banned.get("channelId"),
        }

    item: Dict[str, Any] = {
        "id": resource.get("id"),
        "timestampUsec": published_at_usec(snippet.get("publishedAt")),
        "author": _author(resource.get("authorDetails") or {}),
    }

    if message_type == "textMessageEvent":
        details = snippet.get("textMessageDetails") or {}
        item["type"] = TEXT_MESSAGE
        item["message"] = {
            "text": details.get("messageText") or snippet.get("displayMessage") or ""
        }

    elif message_type == "superChatEvent":
        details = snippet.get("superChatDetails") or {}
        item["type"] = PAID_MESSAGE
        item["purchase_amount"] = details.get("amountDisplayString")
        item["message"] = {"text": details.get("userComment") or ""}

    elif message_type == "superStickerEvent":
        details = snippet.get("superStickerDetails") or {}
        metadata = details.get("superStickerMetadata") or {}
        item["type"] = PAID_STICKER
        item["purchase_amount"] = details.get("amountDisplayString")
        item["sticker"] = {"altText": metadata.get("altText"), "id": metadata.get("stickerId")}

    elif message_type == "newSponsorEvent":
        details = snippet.get("newSponsorDetails") or {}
        item["type"] = MEMBERSHIP_ITEM
        item["headerPrimaryText"] = details.get("memberLevelName")
        item["headerSubtext"] = snippet.get("displayMessage") or ""

    elif message_type == "memberMilestoneChatEvent":
        details = snippet.get("memberMilestoneChatDetails") or {}
        item["type"] = MEMBERSHIP_ITEM
        item["headerPrimaryText"] = details.get("memberLevelName")
        item["memberMilestoneDurationInMonths"] = details.get("memberMonth")
        item["message"] = {"text": details.get("userComment") or ""}

    elif message_type == "membershipGiftingEvent":
        details = snippet.get("membershipGiftingDetails") or {}
        item["type"] = GIFT_PURCHASE
        item["giftMembershipsCount"] = details.get("giftMembershipsCount")
        item["membershipLevelName"] = details.get("giftMembershipsLevelName")

    elif message_type == "giftMembershipReceivedEvent":
        details = snippet.get("giftMembershipReceivedDetails") or {}
        item["type"] = GIFT_REDEMPTION
        item["membershipLevelName"] = details.get("memberLevelName")

    else:
        return None

    return {"addChatItemAction": {"item": item}}


__all__ = [
    "CHAT_ENDED",
    "is_chat_ended",
    "published_at_usec",
    "to_chat_action",
]
