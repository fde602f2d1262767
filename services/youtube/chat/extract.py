"""Field extraction helpers for vendor chat items."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# timestampUsec values above this are microseconds rather than milliseconds
_MICROSECOND_THRESHOLD = 10_000_000_000_000


@dataclass
class ChatAuthor:
    id: Optional[str]
    name: str
    is_moderator: bool = False
    is_owner: bool = False
    is_member: bool = False
    is_verified: bool = False
    badges: List[str] = field(default_factory=list)


def _item_of(chat_item: Any) -> Dict[str, Any]:
    if not isinstance(chat_item, dict):
        return {}
    item = chat_item.get("item")
    return item if isinstance(item, dict) else chat_item


def _badge_labels(raw_badges: Any) -> List[str]:
    labels: List[str] = []
    if not isinstance(raw_badges, list):
        return labels
    for badge in raw_badges:
        if isinstance(badge, str):
            label = badge
        elif isinstance(badge, dict):
            label = (
                badge.get("label")
                or badge.get("tooltip")
                or extract_structured_text(badge.get("accessibility"))
                or badge.get("icon_type")
                or ""
            )
        else:
            continue
        label = str(label).strip()
        if label:
            labels.append(label)
    return labels


def extract_author(chat_item: Any) -> Optional[ChatAuthor]:
    """
    Extract author identity from a chat item.

    Understands both the client's `author` shape (id, name, badges,
    is_moderator...) and the Data API `authorDetails` shape.
    """
    item = _item_of(chat_item)
    author = item.get("author")
    if not isinstance(author, dict) and isinstance(chat_item, dict):
        author = chat_item.get("author")

    if isinstance(author, dict):
        name = author.get("name")
        if isinstance(name, dict):
            name = extract_structured_text(name)
        name = str(name or "").strip()
        if not name:
            return None

        badges = _badge_labels(author.get("badges"))
        lowered = {b.lower() for b in badges}
        author_id = author.get("id") or author.get("channel_id")
        return ChatAuthor(
            id=str(author_id) if author_id else None,
            name=name,
            is_moderator=bool(author.get("is_moderator")) or "moderator" in lowered,
            is_owner=bool(author.get("is_owner")) or "owner" in lowered,
            is_member=(
                bool(author.get("is_member"))
                or any(b.startswith("member") for b in lowered)
            ),
            is_verified=bool(author.get("is_verified")) or "verified" in lowered,
            badges=badges,
        )

    details = item.get("authorDetails")
    if isinstance(details, dict):
        name = str(details.get("displayName") or "").strip()
        if not name:
            return None
        channel_id = details.get("channelId")
        return ChatAuthor(
            id=str(channel_id) if channel_id else None,
            name=name,
            is_moderator=bool(details.get("isChatModerator")),
            is_owner=bool(details.get("isChatOwner")),
            is_member=bool(details.get("isChatSponsor")),
            is_verified=bool(details.get("isVerified")),
        )

    return None


def _run_text(run: Any) -> str:
    if isinstance(run, str):
        return run
    if not isinstance(run, dict):
        return ""
    text = run.get("text")
    if isinstance(text, str):
        return text
    emoji_text = run.get("emojiText")
    if isinstance(emoji_text, str):
        return emoji_text
    emoji = run.get("emoji")
    if isinstance(emoji, dict):
        shortcuts = emoji.get("shortcuts") or []
        if shortcuts:
            return str(shortcuts[0])
        return str(emoji.get("emoji_id") or "")
    return ""


def extract_message_text(message: Any) -> str:
    """Return plain text for a message given as str, runs, text or simpleText."""
    if message is None:
        return ""
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        return "".join(_run_text(run) for run in message)
    if isinstance(message, dict):
        runs = message.get("runs")
        if isinstance(runs, list) and runs:
            return "".join(_run_text(run) for run in runs)
        for key in ("text", "simpleText"):
            value = message.get(key)
            if isinstance(value, str):
                return value
    return ""


def extract_structured_text(field_value: Any) -> str:
    if not field_value:
        return ""
    if isinstance(field_value, str):
        return field_value.strip()
    if isinstance(field_value, dict):
        runs = field_value.get("runs")
        if isinstance(runs, list):
            return "".join(_run_text(run) for run in runs).strip()
        return str(
            field_value.get("simpleText") or field_value.get("text") or ""
        ).strip()
    return ""


def extract_notification_id(chat_item: Any) -> Optional[str]:
    raw_id = _item_of(chat_item).get("id")
    if raw_id is None:
        return None
    value = str(raw_id).strip()
    return value or None


def extract_timestamp(chat_item: Any) -> Optional[str]:
    """
    Convert timestampUsec (or timestamp_usec) into an ISO-8601 UTC string.

    Returns None when the value is missing or not numeric.
    """
    item = _item_of(chat_item)
    raw = item.get("timestampUsec")
    if raw is None:
        raw = item.get("timestamp_usec")
    if raw is None or isinstance(raw, bool):
        return None

    try:
        numeric = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None

    millis = numeric // 1000 if numeric > _MICROSECOND_THRESHOLD else numeric
    try:
        parsed = datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return parsed.isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "ChatAuthor",
    "extract_author",
    "extract_message_text",
    "extract_notification_id",
    "extract_structured_text",
    "extract_timestamp",
]
