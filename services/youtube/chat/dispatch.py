from __future__ import annotations

from functools import partial
from typing import Any, Awaitable, Callable, Dict

from services.youtube.chat.normalizer import (
    GIFT_PURCHASE,
    GIFT_REDEMPTION,
    LOW_PRIORITY_EVENTS,
    MEMBERSHIP_ITEM,
    PAID_MESSAGE,
    PAID_STICKER,
    RENDERER_VARIANTS,
    TEXT_MESSAGE,
    VIEWER_ENGAGEMENT,
)

ChatHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


def build_dispatch_table(platform: Any) -> Dict[str, ChatHandler]:
    """
    Map chat item type tags to platform handler coroutines.

    Renderer variants and low-priority tags route to no-op handlers so they
    are acknowledged without producing events.
    """
    table: Dict[str, ChatHandler] = {
        TEXT_MESSAGE: platform.handle_regular_chat,
        PAID_MESSAGE: platform.handle_super_chat,
        PAID_STICKER: platform.handle_super_sticker,
        MEMBERSHIP_ITEM: platform.handle_membership,
        GIFT_PURCHASE: platform.handle_gift_membership_purchase,
        GIFT_REDEMPTION: platform.handle_gift_membership_redemption,
        VIEWER_ENGAGEMENT: platform.handle_viewer_engagement,
    }

    for renderer_type in RENDERER_VARIANTS:
        table[renderer_type] = partial(
            platform.handle_renderer_variant,
            renderer_type=renderer_type,
        )

    for event_type in LOW_PRIORITY_EVENTS:
        table[event_type] = partial(
            platform.handle_low_priority_event,
            event_type=event_type,
        )

    return table


__all__ = ["ChatHandler", "build_dispatch_table"]
