from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from shared.chat.events import (
    EventType,
    InvalidEvent,
    PlatformEvent,
    is_number,
    is_positive_number,
    new_correlation_id,
    normalize_timestamp,
)

PLATFORM = "youtube"


def _require(value: Any, field_name: str, event_type: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidEvent(f"{event_type} event requires {field_name}")
    return value


def _optional_fields(**fields: Any) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


class YouTubeEventFactory:
    """
    Builders for the normalized YouTube event vocabulary.

    Responsibilities:
    - Validate required identity, numeric and timestamp fields
    - Attach the envelope (platform, UTC timestamp, correlation id)
    - Raise InvalidEvent instead of returning partial events
    """

    platform = PLATFORM

    def _build(
        self,
        event_type: str,
        *,
        timestamp: Any,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PlatformEvent:
        meta: Dict[str, Any] = dict(metadata or {})
        meta["correlation_id"] = new_correlation_id()
        return PlatformEvent(
            type=event_type,
            platform=self.platform,
            timestamp=normalize_timestamp(timestamp),
            data=data,
            metadata=meta,
        )

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #

    def create_chat_message(
        self,
        *,
        username: str,
        user_id: str,
        message: str,
        timestamp: Any,
        video_id: Optional[str] = None,
        message_id: Optional[str] = None,
        is_mod: bool = False,
        is_subscriber: bool = False,
        is_broadcaster: bool = False,
        is_verified: bool = False,
    ) -> PlatformEvent:
        event_type = EventType.CHAT_MESSAGE
        _require(username, "username", event_type)
        _require(user_id, "user_id", event_type)
        if not isinstance(message, str) or not message.strip():
            raise InvalidEvent("chat-message event requires message text")

        data = {
            "username": str(username),
            "user_id": str(user_id),
            "message": {"text": message},
            "is_mod": bool(is_mod),
            "is_subscriber": bool(is_subscriber),
            "is_broadcaster": bool(is_broadcaster),
        }
        data.update(_optional_fields(id=message_id, video_id=video_id))

        return self._build(
            event_type,
            timestamp=timestamp,
            data=data,
            metadata={
                "video_id": video_id,
                "is_mod": bool(is_mod),
                "is_owner": bool(is_broadcaster),
                "is_verified": bool(is_verified),
            },
        )

    def create_chat_connected(
        self,
        *,
        video_id: str,
        timestamp: Any,
        connection_id: Optional[str] = None,
    ) -> PlatformEvent:
        _require(video_id, "video_id", EventType.CHAT_CONNECTED)
        return self._build(
            EventType.CHAT_CONNECTED,
            timestamp=timestamp,
            data={
                "video_id": video_id,
                "connection_id": connection_id or f"youtube-{video_id}",
            },
            metadata={"video_id": video_id},
        )

    def create_chat_disconnected(
        self,
        *,
        video_id: str,
        timestamp: Any,
        reason: str = "disconnected",
        will_reconnect: bool = False,
    ) -> PlatformEvent:
        _require(video_id, "video_id", EventType.CHAT_DISCONNECTED)
        return self._build(
            EventType.CHAT_DISCONNECTED,
            timestamp=timestamp,
            data={
                "video_id": video_id,
                "reason": reason,
                "will_reconnect": bool(will_reconnect),
            },
            metadata={"video_id": video_id},
        )

    # ------------------------------------------------------------------ #
    # Stream lifecycle
    # ------------------------------------------------------------------ #

    def create_stream_status(
        self,
        *,
        is_live: bool,
        timestamp: Any,
        video_id: Optional[str] = None,
        reason: Optional[str] = None,
        active_connections: Optional[int] = None,
    ) -> PlatformEvent:
        if not isinstance(is_live, bool):
            raise InvalidEvent("stream-status event requires boolean is_live")
        data = {"is_live": is_live}
        data.update(_optional_fields(
            video_id=video_id,
            reason=reason,
            active_connections=active_connections,
        ))
        return self._build(
            EventType.STREAM_STATUS,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": video_id},
        )

    def create_stream_detected(
        self,
        *,
        new_stream_ids: Iterable[str],
        all_stream_ids: Iterable[str],
        timestamp: Any,
        detection_time: Optional[float] = None,
        connection_count: int = 0,
    ) -> PlatformEvent:
        new_ids: List[str] = list(new_stream_ids or [])
        if not new_ids:
            raise InvalidEvent("stream-detected event requires new_stream_ids")
        return self._build(
            EventType.STREAM_DETECTED,
            timestamp=timestamp,
            data={
                "new_stream_ids": new_ids,
                "all_stream_ids": list(all_stream_ids or []),
                "detection_time": detection_time,
                "connection_count": int(connection_count),
            },
        )

    def create_viewer_count(
        self,
        *,
        count: Any,
        timestamp: Any,
        stream_id: Optional[str] = None,
        stream_viewer_count: Any = None,
    ) -> PlatformEvent:
        # NaN and infinity are passed through to observers untouched
        if not is_number(count):
            raise InvalidEvent("viewer-count event requires a numeric count")
        data: Dict[str, Any] = {"count": count}
        data.update(_optional_fields(
            stream_id=stream_id,
            stream_viewer_count=stream_viewer_count,
        ))
        return self._build(
            EventType.VIEWER_COUNT,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": stream_id},
        )

    # ------------------------------------------------------------------ #
    # Monetization
    # ------------------------------------------------------------------ #

    def create_gift(
        self,
        *,
        username: Optional[str],
        user_id: Optional[str],
        timestamp: Any,
        gift_type: Optional[str],
        gift_count: Any = None,
        amount: Any = None,
        currency: Optional[str] = None,
        notification_id: Optional[str] = None,
        message: str = "",
        video_id: Optional[str] = None,
        is_error: bool = False,
        **extra: Any,
    ) -> PlatformEvent:
        event_type = EventType.GIFT
        _require(gift_type, "gift_type", event_type)

        if not is_error:
            _require(username, "username", event_type)
            _require(user_id, "user_id", event_type)
            _require(notification_id, "id", event_type)
            _require(currency, "currency", event_type)
            if not is_positive_number(gift_count):
                raise InvalidEvent("gift event requires gift_count > 0")
            if not is_positive_number(amount):
                raise InvalidEvent("gift event requires amount > 0")

        data: Dict[str, Any] = {
            "gift_type": gift_type,
            "gift_count": gift_count if is_number(gift_count) else 0,
            "amount": amount if is_number(amount) else 0,
            "currency": currency or "unknown",
            "message": message or "",
        }
        data.update(_optional_fields(
            username=username,
            user_id=user_id,
            id=notification_id,
            video_id=video_id,
        ))
        data.update(_optional_fields(**extra))
        if is_error:
            data["is_error"] = True

        return self._build(
            event_type,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": video_id},
        )

    def create_paypiggy(
        self,
        *,
        username: Optional[str],
        user_id: Optional[str],
        timestamp: Any,
        months: Optional[int] = None,
        message: str = "",
        membership_level: Optional[str] = None,
        notification_id: Optional[str] = None,
        video_id: Optional[str] = None,
        is_error: bool = False,
    ) -> PlatformEvent:
        event_type = EventType.PAYPIGGY
        if not is_error:
            _require(username, "username", event_type)
            _require(user_id, "user_id", event_type)
        if months is not None and not is_number(months):
            raise InvalidEvent("paypiggy event requires numeric months")

        data: Dict[str, Any] = {"message": message or ""}
        data.update(_optional_fields(
            username=username,
            user_id=user_id,
            months=months,
            membership_level=membership_level,
            id=notification_id,
            video_id=video_id,
        ))
        if is_error:
            data["is_error"] = True

        return self._build(
            event_type,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": video_id},
        )

    def create_giftpaypiggy(
        self,
        *,
        username: Optional[str],
        user_id: Optional[str],
        timestamp: Any,
        gift_count: Any = None,
        tier: Optional[str] = None,
        is_anonymous: bool = False,
        cumulative_total: Optional[int] = None,
        message: str = "",
        notification_id: Optional[str] = None,
        video_id: Optional[str] = None,
        is_error: bool = False,
    ) -> PlatformEvent:
        event_type = EventType.GIFTPAYPIGGY
        if not is_error:
            _require(username, "username", event_type)
            _require(user_id, "user_id", event_type)
            if not is_positive_number(gift_count):
                raise InvalidEvent("giftpaypiggy event requires gift_count > 0")

        data: Dict[str, Any] = {
            "gift_count": gift_count if is_number(gift_count) else 0,
            "is_anonymous": bool(is_anonymous),
            "message": message or "",
        }
        data.update(_optional_fields(
            username=username,
            user_id=user_id,
            tier=tier,
            cumulative_total=cumulative_total,
            id=notification_id,
            video_id=video_id,
        ))
        if is_error:
            data["is_error"] = True

        return self._build(
            event_type,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": video_id},
        )

    # ------------------------------------------------------------------ #
    # Errors
    # ------------------------------------------------------------------ #

    def create_error(
        self,
        *,
        error: BaseException,
        operation: str,
        timestamp: Any,
        recoverable: bool = True,
        video_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> PlatformEvent:
        if error is None:
            raise InvalidEvent("error event requires an error")
        _require(operation, "operation", EventType.ERROR)

        ctx: Dict[str, Any] = {"operation": operation}
        ctx.update(context or {})

        data: Dict[str, Any] = {
            "error": {
                "message": str(error) or type(error).__name__,
                "name": type(error).__name__,
            },
            "context": ctx,
            "recoverable": bool(recoverable),
        }
        if video_id:
            data["video_id"] = video_id

        return self._build(
            EventType.ERROR,
            timestamp=timestamp,
            data=data,
            metadata={"video_id": video_id},
        )


__all__ = ["PLATFORM", "YouTubeEventFactory"]
