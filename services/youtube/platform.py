"""
YouTube platform facade.

Owns every collaborator of the ingestion subsystem and exposes one surface
to the host runtime: lifecycle (initialize / cleanup / reconnect), stream
connections, chat item processing, viewer counts, and the event bus.

Every normalized event is delivered twice: to `platform:event` listeners as
`{platform, type, data}` and to the injected handler map.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from services.youtube.chat.data_log import ChatDataLogger
from services.youtube.chat.dispatch import ChatHandler, build_dispatch_table
from services.youtube.chat.extract import (
    extract_author,
    extract_message_text,
    extract_notification_id,
    extract_timestamp,
)
from services.youtube.chat.normalizer import normalize_chat_item
from services.youtube.chat.notifications import (
    BaseEventHandler,
    NotificationDispatcher,
    SuppressionPredicate,
    UnifiedNotificationProcessor,
    suppress_anonymous,
)
from services.youtube.connections.factory import ConnectionFactory
from services.youtube.connections.instances import ClientInstanceManager, client_instances
from services.youtube.connections.manager import ConnectionManager, release_handle
from services.youtube.errors import ConfigurationError
from services.youtube.events.factory import YouTubeEventFactory
from services.youtube.streams.detection import StreamDetectionService
from services.youtube.streams.multistream import MultiStreamManager
from services.youtube.viewers.aggregator import ViewerCountAggregator
from services.youtube.viewers.service import ViewerCountExtractionService
from shared.chat.events import PLATFORM_EVENT, EventType, PlatformEvent, utc_now_iso
from shared.config.youtube import YouTubeConfig, repair_loop_settings
from shared.logging.logger import get_logger
from shared.runtime.errors import ErrorKind, ErrorRecord, PlatformErrorHandler
from shared.runtime.retry import RetrySystem

log = get_logger("youtube.platform")

PLATFORM = "youtube"

# event type -> handler map key
HANDLER_KEYS: Dict[str, str] = {
    EventType.CHAT_MESSAGE: "on_chat",
    EventType.GIFT: "on_gift",
    EventType.GIFTPAYPIGGY: "on_gift_paypiggy",
    EventType.PAYPIGGY: "on_membership",
    EventType.STREAM_STATUS: "on_stream_status",
    EventType.STREAM_DETECTED: "on_stream_detected",
    EventType.VIEWER_COUNT: "on_viewer_count",
}


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class _ClientStreamSource:
    """Detection source backed by the shared client's live search."""

    def __init__(self, get_client: Callable[[], Awaitable[Any]]):
        self._get_client = get_client

    async def get_live_video_ids(self, handle: str) -> List[str]:
        client = await self._get_client()
        return await client.get_live_video_ids(handle)


class YouTubePlatform:
    """
    Multi-stream YouTube chat platform.

    Responsibilities:
    - Validate configuration and drive the monitoring lifecycle
    - Connect and disconnect chat handles as broadcasts come and go
    - Normalize chat items and route them through the dispatch table
    - Emit normalized events to bus listeners and injected handlers
    - Aggregate viewer counts across concurrent broadcasts
    - Retry failed initialization with backoff

    Every collaborator can be injected; defaults are built from `config`.
    """

    def __init__(
        self,
        config: Optional[YouTubeConfig] = None,
        *,
        client_factory: Optional[Callable[[], Awaitable[Any]]] = None,
        stream_source: Any = None,
        detection: Optional[StreamDetectionService] = None,
        connection_manager: Optional[ConnectionManager] = None,
        instance_manager: Optional[ClientInstanceManager] = None,
        event_factory: Optional[YouTubeEventFactory] = None,
        retry: Optional[RetrySystem] = None,
        data_logger: Optional[ChatDataLogger] = None,
        viewer_provider: Any = None,
        should_suppress: SuppressionPredicate = suppress_anonymous,
        creation_timeout: float = 3.0,
    ):
        self.config = config or YouTubeConfig()
        self.platform = PLATFORM

        self.handlers: Dict[str, Callable[..., Any]] = {}
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._background: Set[asyncio.Task] = set()

        self.is_initialized = False
        self.initialization_failed = False
        self.configuration_validated = False
        self.last_recovery_at: Optional[str] = None

        self.error_handler = PlatformErrorHandler(
            platform=PLATFORM,
            listener=self._on_error_record,
        )
        self.event_factory = event_factory or YouTubeEventFactory()
        self.connection_manager = connection_manager or ConnectionManager(platform=PLATFORM)
        self.retry = retry or RetrySystem(
            platform=PLATFORM,
            max_attempts=max(1, _as_int(self.config.retry_attempts, 1)),
        )
        self.data_logger = data_logger or ChatDataLogger(
            base_path=self.config.data_logging_path,
            enabled=self.config.data_logging_enabled,
        )

        self.connection_factory = ConnectionFactory(
            platform=self,
            instance_manager=instance_manager or client_instances,
            client_factory=client_factory,
            creation_timeout=creation_timeout,
        )

        source = stream_source or _ClientStreamSource(self.connection_factory.get_client)
        self.detection = detection or StreamDetectionService(source=source)
        self.multistream = MultiStreamManager(platform=self, detection=self.detection)

        self.viewer_service = viewer_provider or ViewerCountExtractionService(
            get_client=self.connection_factory.get_client,
        )
        self.viewer_aggregator = ViewerCountAggregator(
            connection_manager=self.connection_manager,
            provider=self.viewer_service,
            event_factory=self.event_factory,
            emit=self.emit_event,
            error_handler=self.error_handler,
        )

        self.notification_dispatcher = NotificationDispatcher(
            event_factory=self.event_factory,
            emit=self.emit_event,
            error_handler=self.error_handler,
        )
        self.base_event_handler = BaseEventHandler(
            dispatcher=self.notification_dispatcher,
            error_handler=self.error_handler,
            should_suppress=should_suppress,
        )
        self.unified_processor = UnifiedNotificationProcessor(
            dispatcher=self.notification_dispatcher,
            error_handler=self.error_handler,
            get_handler=self._get_notification_handler,
            should_suppress=should_suppress,
        )

        self._dispatch_table: Optional[Dict[str, ChatHandler]] = None
        self._logged_unknown: Set[str] = set()
        self._retrying = False

    # ------------------------------------------------------------------ #
    # Event bus
    # ------------------------------------------------------------------ #

    def on(self, event_name: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event_name, []).append(listener)

    def off(self, event_name: str, listener: Optional[Callable[..., Any]] = None) -> None:
        if listener is None:
            self._listeners.pop(event_name, None)
            return
        listeners = self._listeners.get(event_name, [])
        if listener in listeners:
            listeners.remove(listener)

    async def _notify(self, event_name: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event_name, [])):
            try:
                await _maybe_await(listener(payload))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_handler.handle_processing_error(
                    e, event_name, payload, f"Event listener failed: {e}"
                )

    async def emit_event(self, event: PlatformEvent) -> None:
        data = event.to_dict()
        await self._notify(
            PLATFORM_EVENT,
            {"platform": event.platform, "type": event.type, "data": data},
        )

        key = HANDLER_KEYS.get(event.type)
        handler = self.handlers.get(key) if key else None
        if not callable(handler):
            log.debug(f"[YouTube] No handler registered for event type: {event.type}")
            return
        try:
            await _maybe_await(handler(data))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_processing_error(
                e, event.type, data, f"Handler {key} failed: {e}"
            )

    def _get_notification_handler(self, event_type: str) -> Optional[Callable[..., Any]]:
        return self.handlers.get(f"on_{event_type.replace('-', '_')}")

    def _on_error_record(self, record: ErrorRecord, error: Optional[BaseException]) -> None:
        # connection failures surface as error events; others are log-only
        if record.kind is not ErrorKind.CONNECTION or error is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        event = self.event_factory.create_error(
            error=error,
            operation=record.operation,
            timestamp=utc_now_iso(),
            recoverable=True,
            video_id=record.context.get("video_id"),
        )
        task = loop.create_task(self.emit_event(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _validate_configuration(self) -> None:
        if self.configuration_validated:
            return

        adjusted = repair_loop_settings(self.config)
        if adjusted:
            self.error_handler.handle_configuration_error(
                f"Invalid settings reset to defaults: {', '.join(adjusted)}",
                error=ConfigurationError("invalid loop settings", adjusted),
                context={"adjusted": adjusted},
            )
            if any(entry.startswith("retry_attempts=") for entry in adjusted):
                self.retry.max_attempts = self.config.retry_attempts

        result = self.validate_config()
        if self.config.enabled and not self.config.username:
            self.error_handler.handle_configuration_error(
                "Username is required when YouTube is enabled",
                error=ConfigurationError("username missing", result["issues"]),
                context={"issues": result["issues"]},
            )
        self.configuration_validated = True

    def _ensure_data_logging_path(self) -> None:
        try:
            self.data_logger.ensure_path()
        except OSError as e:
            self.error_handler.handle_configuration_error(
                f"Failed to prepare data logging path "
                f"'{self.config.data_logging_path}': {e}",
                error=e,
                context={"path": self.config.data_logging_path},
            )

    async def initialize(
        self,
        handlers: Optional[Dict[str, Callable[..., Any]]] = None,
        force_reconnect: bool = False,
    ) -> None:
        self._validate_configuration()

        if self.is_initialized:
            active = self.connection_manager.count()
            if active > 0 and not force_reconnect:
                log.debug(
                    f"[YouTube] Already initialized with {active} active stream(s); "
                    "skipping reinitialization"
                )
                return
            log.debug("[YouTube] Reinitializing platform")

        try:
            log.info("[YouTube] Initializing platform")
            if not self._retrying:
                self.retry.reset()
            self.handlers = {**self.handlers, **(handlers or {})}
            self.initialization_failed = False
            self._ensure_data_logging_path()

            if self.config.enabled and self.config.username:
                await self.multistream.start_monitoring()
            else:
                log.info("[YouTube] Platform disabled or no username; monitoring not started")

            self.retry.handle_connection_success("YouTube Live Chat")
            self.is_initialized = True

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_processing_error(
                e, "initialization", None, f"Error during initialization: {e}"
            )
            await self.retry.handle_connection_error(
                e,
                lambda: self._retry_initialize(handlers),
                self.cleanup,
            )
            raise

    async def _retry_initialize(self, handlers: Optional[Dict[str, Callable[..., Any]]]) -> None:
        self._retrying = True
        try:
            await self.initialize(handlers, True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # the failed attempt has already scheduled the next one
            log.debug(f"[YouTube] Reinitialization attempt failed: {e}")
        finally:
            self._retrying = False

    async def handle_monitoring_failure(self, error: BaseException) -> None:
        log.error(f"[YouTube] Monitoring failed: {error}")
        self.initialization_failed = True
        await self.cleanup()

    async def reconnect(self) -> None:
        log.info("[YouTube] Attempting to reconnect")
        try:
            await self.initialize(self.handlers, True)
            self.last_recovery_at = utc_now_iso()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_connection_error(
                e, "reconnect", f"Reconnection failed: {e}"
            )
            raise

    async def cleanup(self) -> None:
        log.debug("[YouTube] Cleaning up platform resources")

        try:
            await self.multistream.stop_monitoring()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_cleanup_error(e, "monitoring")

        self.retry.cancel_pending()

        try:
            await self.connection_manager.cleanup_all()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_cleanup_error(
                e, "connections", f"Error disconnecting from YouTube: {e}"
            )

        self.viewer_aggregator.reset()
        self.is_initialized = False

    # ------------------------------------------------------------------ #
    # Connections
    # ------------------------------------------------------------------ #

    async def connect_to_stream(self, video_id: str, reason: str = "stream detected") -> bool:
        if self.connection_manager.has(video_id):
            return True

        previous = self.connection_manager.count()
        handle = None
        try:
            handle = await self.connection_factory.create_connection(video_id)
            self.connection_factory.setup_listeners(handle, video_id)
            self.connection_manager.add(video_id, handle, metadata={"reason": reason})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if handle is not None and self.connection_manager.get_handle(video_id) is not handle:
                await self._release_orphan(video_id, handle)
            self.error_handler.handle_connection_error(
                e,
                "stream-connect",
                f"Failed to connect to YouTube stream {video_id}: {e}",
                context={"video_id": video_id},
            )
            raise

        log.info(f"[YouTube][{video_id}] Connected ({reason})")
        await self._emit_stream_status_if_needed(previous, video_id=video_id, reason=reason)

        try:
            await _maybe_await(handle.start())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_connection_error(
                e,
                "stream-start",
                f"Failed to start chat for {video_id}: {e}",
                context={"video_id": video_id},
            )
            await self.disconnect_from_stream(video_id, reason=f"start failed: {e}")
            raise
        return True

    async def _release_orphan(self, video_id: str, handle: Any) -> None:
        try:
            await release_handle(handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_cleanup_error(
                e, "stream-connect", f"Failed to release chat handle for {video_id}: {e}"
            )

    async def disconnect_from_stream(self, video_id: str, reason: str = "unknown") -> bool:
        previous = self.connection_manager.count()
        removed = await self.connection_manager.remove(video_id, reason)
        if not removed:
            return False

        log.info(f"[YouTube][{video_id}] Disconnected ({reason})")
        await self.emit_event(
            self.event_factory.create_chat_disconnected(
                video_id=video_id,
                timestamp=utc_now_iso(),
                reason=reason,
                will_reconnect=False,
            )
        )
        await self._emit_stream_status_if_needed(previous, video_id=video_id, reason=reason)
        return True

    async def _emit_stream_status_if_needed(
        self,
        previous: int,
        *,
        video_id: Optional[str],
        reason: str,
    ) -> None:
        current = self.connection_manager.count()
        became_live = previous == 0 and current > 0
        went_offline = previous > 0 and current == 0
        if not became_live and not went_offline:
            return
        await self.emit_event(
            self.event_factory.create_stream_status(
                is_live=became_live,
                timestamp=utc_now_iso(),
                video_id=video_id,
                reason=reason,
                active_connections=current,
            )
        )

    async def handle_connection_ready(self, video_id: str) -> None:
        if not self.connection_manager.set_ready(video_id):
            log.debug(f"[YouTube][{video_id}] Ready signal for unknown connection")
            return
        self.retry.handle_connection_success(video_id)
        await self.emit_event(
            self.event_factory.create_chat_connected(
                video_id=video_id,
                timestamp=utc_now_iso(),
            )
        )

    async def handle_stream_error(
        self,
        video_id: str,
        error: Any,
        reason: str = "error",
        processing: bool = False,
    ) -> None:
        self.connection_manager.mark_error(video_id)
        if processing:
            exc = error if isinstance(error, BaseException) else RuntimeError(str(error))
            self.error_handler.handle_processing_error(
                exc,
                "live-chat",
                {"video_id": video_id},
                f"A live chat error occurred for {video_id}: {error}",
            )
        await self.disconnect_from_stream(video_id, reason=reason)

    def get_active_video_ids(self) -> List[str]:
        return self.connection_manager.get_active_video_ids()

    async def send_message(self, text: str) -> bool:
        for video_id in self.connection_manager.get_all_video_ids():
            if not self.connection_manager.is_ready(video_id):
                continue
            handle = self.connection_manager.get_handle(video_id)
            sender = getattr(handle, "send_message", None)
            if not callable(sender):
                continue
            try:
                if await _maybe_await(sender(text)):
                    log.debug(f"[YouTube][{video_id}] Message sent")
                    return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.debug(f"[YouTube][{video_id}] Failed to send message: {e}")
        return False

    # ------------------------------------------------------------------ #
    # Chat items
    # ------------------------------------------------------------------ #

    @property
    def dispatch_table(self) -> Dict[str, ChatHandler]:
        if self._dispatch_table is None:
            self._dispatch_table = build_dispatch_table(self)
        return self._dispatch_table

    def log_raw_chat(self, video_id: str, update: Any) -> None:
        self.data_logger.log_raw(video_id, update)

    async def handle_chat_message(self, chat_item: Any) -> None:
        normalization = normalize_chat_item(chat_item)
        if normalization.normalized_item is None:
            log.debug(f"[YouTube] Ignoring chat item: {normalization.debug_metadata}")
            return
        if normalization.skip:
            log.debug(f"[YouTube] Skipping {normalization.event_type}")
            return

        item = normalization.normalized_item
        event_type = normalization.event_type
        handler = self.dispatch_table.get(event_type)

        if handler is None:
            if event_type not in self._logged_unknown:
                self._logged_unknown.add(event_type)
                log.debug(
                    f"[YouTube] Unknown chat event type {event_type}: "
                    f"{normalization.debug_metadata}"
                )
            author = extract_author(item)
            self.data_logger.log_unknown(event_type, item, author.name if author else None)
            return

        try:
            await handler(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_processing_error(
                e, event_type, item, f"Error handling {event_type}: {e}"
            )

    async def handle_regular_chat(self, chat_item: Dict[str, Any]) -> None:
        author = extract_author(chat_item)
        if author is None or not author.id:
            log.debug("[YouTube] Chat message without author; dropped")
            return

        item = chat_item.get("item") or {}
        text = extract_message_text(item.get("message")).strip()
        if not text:
            log.debug(f"[YouTube] Empty chat message from {author.name}; dropped")
            return

        event = self.event_factory.create_chat_message(
            username=author.name,
            user_id=author.id,
            message=text,
            timestamp=extract_timestamp(chat_item) or utc_now_iso(),
            video_id=chat_item.get("video_id"),
            message_id=extract_notification_id(chat_item),
            is_mod=author.is_moderator,
            is_subscriber=author.is_member,
            is_broadcaster=author.is_owner,
            is_verified=author.is_verified,
        )
        await self.emit_event(event)

    async def handle_super_chat(self, chat_item: Dict[str, Any]) -> None:
        await self.base_event_handler.handle_event(
            chat_item, event_type=EventType.GIFT, dispatch_method="dispatch_super_chat"
        )

    async def handle_super_sticker(self, chat_item: Dict[str, Any]) -> None:
        await self.base_event_handler.handle_event(
            chat_item, event_type=EventType.GIFT, dispatch_method="dispatch_super_sticker"
        )

    async def handle_membership(self, chat_item: Dict[str, Any]) -> None:
        await self.base_event_handler.handle_event(
            chat_item, event_type=EventType.PAYPIGGY, dispatch_method="dispatch_membership"
        )

    async def handle_gift_membership_purchase(self, chat_item: Dict[str, Any]) -> None:
        await self.base_event_handler.handle_event(
            chat_item,
            event_type=EventType.GIFTPAYPIGGY,
            dispatch_method="dispatch_gift_membership",
        )

    async def handle_gift_membership_redemption(self, chat_item: Dict[str, Any]) -> None:
        # the purchase announcement already carries the gift
        return None

    async def handle_viewer_engagement(self, chat_item: Dict[str, Any]) -> None:
        await self.unified_processor.process_notification(
            chat_item, "engagement", {"is_system_message": True}
        )

    async def handle_renderer_variant(
        self, chat_item: Dict[str, Any], *, renderer_type: str
    ) -> None:
        item = chat_item.get("item") or {}
        log.debug(
            f"[YouTube] Ignoring renderer variant {renderer_type} (id={item.get('id')})"
        )

    async def handle_low_priority_event(
        self, chat_item: Dict[str, Any], *, event_type: str
    ) -> None:
        log.debug(f"[YouTube] Low-priority event {event_type} ignored")

    # ------------------------------------------------------------------ #
    # Viewer counts
    # ------------------------------------------------------------------ #

    async def get_viewer_count(self) -> Any:
        return await self.viewer_aggregator.get_total_viewers()

    def get_total_viewer_count(self) -> Any:
        return self.viewer_aggregator.get_total_viewer_count()

    async def update_viewer_count_for_stream(self, stream_id: str, count: Any) -> Any:
        return await self.viewer_aggregator.update_stream_count(stream_id, count)

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def is_connected(self) -> bool:
        return self.connection_manager.count() > 0

    def is_active(self) -> bool:
        return self.is_connected() and self.config.enabled is True

    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.username)

    def validate_config(self) -> Dict[str, Any]:
        issues: List[str] = []
        if not self.config.enabled:
            issues.append("Platform is disabled")
        if not self.config.username:
            issues.append("No username configured")
        return {"is_valid": not issues, "issues": issues}

    def get_connection_state(self) -> Dict[str, Any]:
        total = self.connection_manager.count()
        return {
            "is_connected": total > 0,
            "is_monitoring": self.multistream.is_monitoring,
            "active_connections": self.get_active_video_ids(),
            "total_connections": total,
        }

    def get_stats(self) -> Dict[str, Any]:
        total = self.connection_manager.count()
        return {
            "platform": PLATFORM,
            "enabled": self.config.enabled,
            "initialized": self.is_initialized,
            "connected": total > 0,
            "monitoring": self.multistream.is_monitoring,
            "active_connections": self.connection_manager.ready_count(),
            "total_connections": total,
            "errors": self.error_handler.counts(),
            "retry": self.retry.get_statistics(),
            "detection": self.detection.get_metrics(),
            "multistream": self.multistream.get_status(),
        }

    def get_health_status(self) -> Dict[str, Any]:
        total = self.connection_manager.count()
        ready = self.connection_manager.ready_count()
        monitoring = self.multistream.is_monitoring
        failing = self.initialization_failed or self.multistream.consecutive_failures > 0

        if ready > 0 and not failing:
            overall = "healthy"
        elif failing or total > 0:
            overall = "degraded"
        else:
            overall = "idle"

        return {
            "overall": overall,
            "services": {
                "connection_manager": "healthy" if ready > 0 else ("pending" if total else "idle"),
                "monitoring": "active" if monitoring else "stopped",
                "detection": "circuit-open" if self.detection.circuit_open else "ok",
            },
            "last_recovery": self.last_recovery_at,
        }


__all__ = ["HANDLER_KEYS", "PLATFORM", "YouTubePlatform"]
