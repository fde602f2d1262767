"""
Chat connection factory.

The YouTube client is an injected dependency. The factory relies on this
surface only:

- client.get_info(video_id) -> awaitable video info
- info.get_live_chat() -> chat handle (or an awaitable resolving to one)
- handle.on(event, listener) for "start", "chat-update", "error", "end"
- handle.start(), handle.stop(), handle.remove_all_listeners()

Listeners registered here are coroutine functions; handles await them in
delivery order.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

from services.youtube.chat.normalizer import extract_chat_items
from services.youtube.connections.instances import (
    DEFAULT_CREATION_TIMEOUT,
    SHARED_INSTANCE_ID,
    ClientInstanceManager,
)
from services.youtube.connections.liveness import validate_video_for_connection
from services.youtube.errors import NotLive
from shared.logging.logger import get_logger

log = get_logger("youtube.connection_factory")

TEMPORARY_ERROR_MARKERS = ("ECONNRESET", "ETIMEDOUT", "502", "503", "timed out", "Timeout")
API_ERROR_MARKERS = ("400", "403", "429")


def classify_stream_error(error: Any) -> str:
    """Return "temporary", "api" or "fatal" for a chat stream error."""
    message = str(error) if error is not None else ""
    if isinstance(error, (asyncio.TimeoutError, ConnectionResetError)):
        return "temporary"
    if any(marker in message for marker in TEMPORARY_ERROR_MARKERS):
        return "temporary"
    if any(marker in message for marker in API_ERROR_MARKERS):
        return "api"
    return "fatal"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ConnectionFactory:
    """
    Creates chat handles for live videos and wires their listeners.

    Responsibilities:
    - Acquire the shared client through the instance manager
    - Validate liveness, falling back to a chat check when validation says not-live
    - Register start / chat-update / error / end listeners that call back
      into the platform
    """

    def __init__(
        self,
        *,
        platform: Any,
        instance_manager: ClientInstanceManager,
        client_factory: Optional[Callable[[], Awaitable[Any]]],
        creation_timeout: float = DEFAULT_CREATION_TIMEOUT,
        request_timeout: Optional[float] = None,
    ):
        if platform is None:
            raise RuntimeError("Connection factory requires a platform")
        if instance_manager is None:
            raise RuntimeError("Connection factory requires an instance manager")
        if creation_timeout <= 0:
            raise RuntimeError("creation_timeout must be positive")

        self.platform = platform
        self.instance_manager = instance_manager
        self.client_factory = client_factory
        self.creation_timeout = float(creation_timeout)
        self.request_timeout = float(request_timeout or max(creation_timeout, 10.0))

    # ------------------------------------------------------------------ #

    async def get_client(self) -> Any:
        return await self.instance_manager.get_instance(
            SHARED_INSTANCE_ID,
            self.client_factory,
            timeout=self.creation_timeout,
        )

    async def create_connection(self, video_id: str) -> Any:
        client = await self.get_client()

        info = await asyncio.wait_for(
            client.get_info(video_id),
            timeout=self.request_timeout,
        )
        validation = validate_video_for_connection(info)

        if not validation.should_connect:
            live_chat = None
            try:
                live_chat = await asyncio.wait_for(
                    _resolve(info.get_live_chat()),
                    timeout=self.request_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.debug(f"[YouTube][{video_id}] Live chat check failed: {e}")

            if live_chat is None:
                raise NotLive(video_id, validation.reason)

            log.warning(
                f"[YouTube][{video_id}] Live chat available despite validation "
                f"failure ({validation.reason}); bypassing live validation"
            )
            return live_chat

        if validation.is_premiere:
            log.info(
                f"[YouTube][{video_id}] Premiere detected; chat starts when the "
                "premiere begins"
            )

        return await asyncio.wait_for(
            _resolve(info.get_live_chat()),
            timeout=self.request_timeout,
        )

    # ------------------------------------------------------------------ #
    # Listeners
    # ------------------------------------------------------------------ #

    def setup_listeners(self, handle: Any, video_id: str) -> None:
        if handle is None or not callable(getattr(handle, "on", None)):
            raise RuntimeError(
                "YouTube chat handle is missing the listener interface (on)"
            )

        platform = self.platform

        async def on_start(data: Any = None) -> None:
            log.info(f"[YouTube][{video_id}] Chat listener started")
            if isinstance(data, dict) and isinstance(data.get("actions"), list):
                log.debug(
                    f"[YouTube][{video_id}] Skipping {len(data['actions'])} "
                    "initial chat actions"
                )
            await platform.handle_connection_ready(video_id)

        async def on_chat_update(update: Any = None) -> None:
            if not isinstance(update, dict):
                log.debug(f"[YouTube][{video_id}] Ignoring invalid chat-update")
                return
            platform.log_raw_chat(video_id, update)
            for chat_item in extract_chat_items(update, video_id):
                await platform.handle_chat_message(chat_item)

        async def on_error(error: Any = None) -> None:
            kind = classify_stream_error(error)
            if kind == "temporary":
                log.warning(
                    f"[YouTube][{video_id}] Temporary chat error, not disconnecting: {error}"
                )
                return
            if kind == "api":
                log.warning(f"[YouTube][{video_id}] YouTube API error: {error}")
                await platform.handle_stream_error(
                    video_id, error, reason=f"API error: {error}", processing=False
                )
                return
            await platform.handle_stream_error(
                video_id, error, reason=f"Error: {error}", processing=True
            )

        async def on_end(*_: Any) -> None:
            log.info(f"[YouTube][{video_id}] Stream ended")
            await platform.disconnect_from_stream(video_id, reason="stream ended")

        handle.on("start", on_start)
        handle.on("chat-update", on_chat_update)
        handle.on("error", on_error)
        handle.on("end", on_end)


__all__ = [
    "API_ERROR_MARKERS",
    "ConnectionFactory",
    "TEMPORARY_ERROR_MARKERS",
    "classify_stream_error",
]
