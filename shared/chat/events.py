"""Canonical normalized platform event envelope and helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4


class InvalidEvent(ValueError):
    """Raised when an event cannot be built from the provided fields."""


class EventType:
    CHAT_MESSAGE = "chat-message"
    CHAT_CONNECTED = "chat-connected"
    CHAT_DISCONNECTED = "chat-disconnected"
    STREAM_STATUS = "stream-status"
    STREAM_DETECTED = "stream-detected"
    VIEWER_COUNT = "viewer-count"
    GIFT = "gift"
    PAYPIGGY = "paypiggy"
    GIFTPAYPIGGY = "giftpaypiggy"
    ERROR = "error"


EVENT_TYPES = frozenset(
    value
    for key, value in vars(EventType).items()
    if key.isupper()
)

PLATFORM_EVENT = "platform:event"


def _utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def utc_now_iso() -> str:
    return _utc_now_iso()


def normalize_timestamp(ts: Any) -> str:
    """
    Validate an ISO-8601 timestamp and return it in UTC with a Z suffix.

    Naive values are treated as UTC. Raises InvalidEvent when the value is
    missing or does not parse.
    """
    if isinstance(ts, datetime):
        parsed = ts
    elif isinstance(ts, str) and ts.strip():
        raw = ts.strip()
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as e:
            raise InvalidEvent(f"timestamp is not ISO-8601: {ts!r}") from e
    else:
        raise InvalidEvent("timestamp is required")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return (
        parsed.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_correlation_id() -> str:
    return str(uuid4())


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_positive_number(value: Any) -> bool:
    return is_number(value) and math.isfinite(value) and value > 0


@dataclass
class PlatformEvent:
    type: str
    platform: str
    timestamp: str
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        return self.metadata.get("correlation_id")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.data)
        payload.update({
            "type": self.type,
            "platform": self.platform,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        })
        return payload


__all__ = [
    "EVENT_TYPES",
    "EventType",
    "InvalidEvent",
    "PLATFORM_EVENT",
    "PlatformEvent",
    "is_number",
    "is_positive_number",
    "new_correlation_id",
    "normalize_timestamp",
    "utc_now_iso",
]
