"""End-to-end tests for the YouTube platform facade with a fake client."""
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from services.youtube.chat.data_log import ChatDataLogger
from services.youtube.errors import ConfigurationError, NotLive
from shared.config.youtube import YouTubeConfig
from shared.runtime.errors import ErrorKind

from conftest import TIMESTAMP_ISO, TIMESTAMP_USEC, VIDEO_A, VIDEO_B, FakeVideoInfo

DIRECT_UPDATE = {
    "author": {"id": "UC_direct", "name": "Direct Viewer"},
    "text": "hello there",
    "timestamp_usec": TIMESTAMP_USEC,
}


@pytest.mark.unit
@pytest.mark.asyncio
class TestStreamLifecycle:
    """Detection, connection, readiness and disconnection."""

    async def test_premiere_connects_and_becomes_ready(self, make_platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A]
        handle = fake_client.add_live(VIDEO_A, is_live=True, is_upcoming=True)
        platform = make_platform()

        await platform.initialize()
        try:
            assert platform.is_initialized is True
            assert handle.started is True
            assert recorder.types == ["stream-status", "stream-detected"]
            assert recorder.of_type("stream-status")[0]["is_live"] is True
            assert platform.get_active_video_ids() == []

            await handle.fire("start", {"actions": []})

            assert platform.get_active_video_ids() == [VIDEO_A]
            connected = recorder.of_type("chat-connected")
            assert connected[0]["video_id"] == VIDEO_A
            assert connected[0]["connection_id"] == f"youtube-{VIDEO_A}"
        finally:
            await platform.cleanup()

    async def test_upcoming_without_chat_not_connected(self, make_platform, fake_client, recorder):
        fake_client.infos[VIDEO_A] = FakeVideoInfo(None, is_upcoming=True)
        platform = make_platform()

        with pytest.raises(NotLive):
            await platform.connect_to_stream(VIDEO_A)
        await asyncio.sleep(0)

        assert platform.is_connected() is False
        errors = recorder.of_type("error")
        assert len(errors) == 1
        assert errors[0]["metadata"]["video_id"] == VIDEO_A

    async def test_connect_is_idempotent(self, make_platform):
        platform = make_platform()

        assert await platform.connect_to_stream(VIDEO_A) is True
        assert await platform.connect_to_stream(VIDEO_A) is True
        assert platform.connection_manager.count() == 1

    async def test_start_failure_disconnects(self, make_platform, fake_client, recorder):
        handle = fake_client.add_live(VIDEO_A)
        handle.start = AsyncMock(side_effect=RuntimeError("socket closed"))
        platform = make_platform()

        with pytest.raises(RuntimeError):
            await platform.connect_to_stream(VIDEO_A)

        assert platform.is_connected() is False
        assert [s["is_live"] for s in recorder.of_type("stream-status")] == [True, False]
        assert platform.error_handler.counts()["connection"] == 1

    async def test_listener_setup_failure_releases_handle(self, make_platform, fake_client):
        handle = fake_client.add_live(VIDEO_A)
        platform = make_platform()
        platform.connection_factory.setup_listeners = Mock(side_effect=RuntimeError("no emitter"))

        with pytest.raises(RuntimeError):
            await platform.connect_to_stream(VIDEO_A)

        assert platform.connection_manager.has(VIDEO_A) is False
        assert handle.listeners_removed is True
        assert handle.stopped is True
        assert handle.started is False
        assert platform.error_handler.counts()["connection"] == 1

    async def test_end_disconnects_and_goes_offline(self, make_platform, fake_client, recorder):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)
        await platform.connect_to_stream(VIDEO_B)

        await fake_client.handles[VIDEO_A].fire("end")
        assert [d["video_id"] for d in recorder.of_type("chat-disconnected")] == [VIDEO_A]
        assert recorder.of_type("chat-disconnected")[0]["reason"] == "stream ended"
        assert [s["is_live"] for s in recorder.of_type("stream-status")] == [True]

        await fake_client.handles[VIDEO_B].fire("end")
        statuses = recorder.of_type("stream-status")
        assert [s["is_live"] for s in statuses] == [True, False]
        assert statuses[-1]["active_connections"] == 0
        assert fake_client.handles[VIDEO_A].listeners_removed

    async def test_fatal_stream_error_disconnects(self, make_platform, fake_client, recorder):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)

        await fake_client.handles[VIDEO_A].fire("error", RuntimeError("renderer crashed"))

        assert platform.is_connected() is False
        assert platform.error_handler.counts()["processing"] == 1
        assert recorder.of_type("chat-disconnected")[0]["reason"] == "Error: renderer crashed"

    async def test_temporary_stream_error_keeps_connection(self, make_platform, fake_client):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)

        await fake_client.handles[VIDEO_A].fire("error", RuntimeError("ECONNRESET"))

        assert platform.is_connected() is True

    async def test_disconnect_unknown(self, make_platform):
        assert await make_platform().disconnect_from_stream(VIDEO_A) is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestChatRouting:
    """chat-update payloads through normalization, dispatch and handlers."""

    async def test_direct_text_update_with_sync_handler(self, make_platform, fake_client, recorder):
        platform = make_platform()
        on_chat = Mock()
        platform.handlers["on_chat"] = on_chat
        await platform.connect_to_stream(VIDEO_A)

        await fake_client.handles[VIDEO_A].fire("chat-update", DIRECT_UPDATE)

        on_chat.assert_called_once()
        data = on_chat.call_args.args[0]
        assert data["type"] == "chat-message"
        assert data["platform"] == "youtube"
        assert data["username"] == "Direct Viewer"
        assert data["user_id"] == "UC_direct"
        assert data["message"] == {"text": "hello there"}
        assert data["timestamp"] == TIMESTAMP_ISO
        assert data["metadata"]["video_id"] == VIDEO_A
        assert recorder.of_type("chat-message") == [data]

    async def test_async_handler_awaited(self, make_platform, text_item):
        platform = make_platform()
        on_chat = AsyncMock()
        platform.handlers["on_chat"] = on_chat

        await platform.handle_chat_message(text_item)

        on_chat.assert_awaited_once()
        data = on_chat.await_args.args[0]
        assert data["message"] == {"text": "hello :wave:"}
        assert data["is_mod"] is True

    async def test_handler_failure_is_contained(self, make_platform, text_item, recorder):
        platform = make_platform()
        platform.handlers["on_chat"] = Mock(side_effect=RuntimeError("handler broke"))

        await platform.handle_chat_message(text_item)

        assert len(recorder.of_type("chat-message")) == 1
        assert platform.error_handler.counts()["processing"] == 1

    async def test_super_chat_routed_to_gift_handler(self, make_platform, paid_item):
        platform = make_platform()
        on_gift = Mock()
        platform.handlers["on_gift"] = on_gift

        await platform.handle_chat_message(paid_item)

        data = on_gift.call_args.args[0]
        assert data["amount"] == 5.0
        assert data["currency"] == "USD"

    async def test_gift_purchase_routed(self, make_platform, gift_purchase_item):
        platform = make_platform()
        on_gift_paypiggy = Mock()
        platform.handlers["on_gift_paypiggy"] = on_gift_paypiggy

        await platform.handle_chat_message(gift_purchase_item)

        assert on_gift_paypiggy.call_args.args[0]["gift_count"] == 5

    async def test_renderer_variant_emits_nothing(self, make_platform, fake_client, recorder, paid_item):
        platform = make_platform()
        on_gift = Mock()
        platform.handlers["on_gift"] = on_gift
        await platform.connect_to_stream(VIDEO_A)
        renderer = {**paid_item["item"], "type": "LiveChatPaidMessageRenderer"}

        await fake_client.handles[VIDEO_A].fire("chat-update", {"item": paid_item["item"]})
        await fake_client.handles[VIDEO_A].fire("chat-update", {"item": renderer})

        gifts = recorder.of_type("gift")
        assert len(gifts) == 1
        assert gifts[0]["id"] == "sc-1"
        on_gift.assert_called_once()

    async def test_empty_text_dropped(self, make_platform, text_item, recorder):
        platform = make_platform()
        text_item["item"]["message"] = {"runs": [{"text": "   "}]}

        await platform.handle_chat_message(text_item)

        assert recorder.of_type("chat-message") == []

    async def test_unknown_type_logged_once(self, make_platform):
        data_logger = Mock()
        platform = make_platform(data_logger=data_logger)
        item = {"item": {"type": "LiveChatSomethingNew", "id": "n1", "author": {"id": "UC", "name": "Who"}}}

        with patch("services.youtube.platform.log") as log:
            await platform.handle_chat_message(item)
            await platform.handle_chat_message(item)

        unknown = [c for c in log.debug.call_args_list if "Unknown chat event type" in c.args[0]]
        assert len(unknown) == 1
        assert data_logger.log_unknown.call_count == 2
        assert data_logger.log_unknown.call_args.args[0] == "LiveChatSomethingNew"
        assert data_logger.log_unknown.call_args.args[2] == "Who"

    async def test_engagement_uses_notification_handler(self, make_platform):
        platform = make_platform()
        on_engagement = Mock()
        platform.handlers["on_engagement"] = on_engagement

        await platform.handle_chat_message({
            "item": {
                "type": "LiveChatViewerEngagementMessage",
                "id": "e1",
                "timestampUsec": TIMESTAMP_USEC,
                "author": {"id": "UC_yt", "name": "YouTube"},
                "message": {"runs": [{"text": "Welcome"}]},
            },
            "video_id": VIDEO_A,
        })

        notification = on_engagement.call_args.args[0]
        assert notification["is_system_message"] is True
        assert notification["message"] == "Welcome"

    async def test_raw_updates_written_to_data_log(self, make_platform, youtube_config, fake_client, tmp_path):
        youtube_config.data_logging_enabled = True
        youtube_config.data_logging_path = str(tmp_path / "chatlogs")
        platform = make_platform(youtube_config)
        platform.data_logger.ensure_path()
        await platform.connect_to_stream(VIDEO_A)

        await fake_client.handles[VIDEO_A].fire("chat-update", DIRECT_UPDATE)

        files = list((tmp_path / "chatlogs").glob("youtube-chat-*.jsonl"))
        assert len(files) == 1
        assert "hello there" in files[0].read_text(encoding="utf-8")


@pytest.mark.unit
@pytest.mark.asyncio
class TestInitialization:
    """initialize / cleanup / reconnect."""

    async def test_initialize_is_idempotent_with_connections(self, make_platform, fake_client):
        fake_client.live_ids = [VIDEO_A]
        platform = make_platform()
        handlers = {"on_chat": Mock()}

        await platform.initialize(handlers)
        try:
            await platform.initialize()
            assert fake_client.detection_calls == 1
            assert platform.handlers == handlers

            await platform.initialize(force_reconnect=True)
            assert fake_client.detection_calls == 2
            assert platform.connection_manager.get_all_video_ids() == [VIDEO_A]
        finally:
            await platform.cleanup()

        assert platform.is_initialized is False
        assert platform.is_connected() is False
        assert platform.multistream.is_monitoring is False
        assert fake_client.handles[VIDEO_A].stopped

    async def test_disabled_platform_does_not_monitor(self, make_platform, fake_client):
        platform = make_platform(YouTubeConfig(enabled=False))

        await platform.initialize()

        assert platform.is_initialized is True
        assert platform.multistream.is_monitoring is False
        assert fake_client.detection_calls == 0

    async def test_missing_username_is_configuration_error(self, make_platform):
        platform = make_platform(YouTubeConfig(enabled=True))

        await platform.initialize()

        assert platform.error_handler.counts()["configuration"] == 1
        assert platform.multistream.is_monitoring is False

    async def test_zero_polling_interval_reset_to_default(self, make_platform):
        config = YouTubeConfig(enabled=True, username="testchannel", stream_polling_interval=0)
        platform = make_platform(config)

        await platform.initialize()
        try:
            assert config.stream_polling_interval == 60
            assert platform.multistream.poll_interval == 60
            assert platform.multistream.is_monitoring is True
            assert platform.error_handler.counts()["configuration"] == 1
        finally:
            await platform.cleanup()

    async def test_invalid_loop_settings_reported_together(self, make_platform):
        config = YouTubeConfig(
            enabled=True, username="testchannel", max_streams=-1, full_check_interval=0
        )
        platform = make_platform(config)

        await platform.initialize()
        try:
            record = platform.error_handler.last_error(ErrorKind.CONFIGURATION)
            assert platform.error_handler.counts()["configuration"] == 1
            assert record.context["adjusted"] == [
                "max_streams=-1 -> 5",
                "full_check_interval=0 -> 300",
            ]
            assert config.max_streams == 5
            assert config.full_check_interval == 300
        finally:
            await platform.cleanup()

    async def test_bad_logging_path_is_configuration_error(self, make_platform, youtube_config):
        data_logger = ChatDataLogger(base_path="/unused", enabled=True)
        data_logger.ensure_path = Mock(side_effect=PermissionError("read-only"))
        youtube_config.enabled = False
        platform = make_platform(youtube_config, data_logger=data_logger)

        await platform.initialize()

        assert platform.is_initialized is True
        assert platform.error_handler.counts()["configuration"] == 1

    async def test_failed_initialization_retries_until_exhausted(self, make_platform):
        platform = make_platform()
        platform.multistream.start_monitoring = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await platform.initialize()
        while platform.retry.has_pending_retry:
            await platform.retry._pending

        assert platform.multistream.start_monitoring.await_count == 4
        assert platform.retry.get_statistics()["exhausted"] == 1
        assert platform.is_initialized is False

    async def test_retry_recovers(self, make_platform):
        platform = make_platform()
        platform.multistream.start_monitoring = AsyncMock(side_effect=[RuntimeError("boom"), None])

        with pytest.raises(RuntimeError):
            await platform.initialize()
        while platform.retry.has_pending_retry:
            await platform.retry._pending

        assert platform.is_initialized is True
        assert platform.retry.attempts == 0

    async def test_reconnect_records_recovery(self, make_platform):
        platform = make_platform(YouTubeConfig(enabled=False))

        await platform.reconnect()

        assert platform.last_recovery_at is not None
        assert platform.get_health_status()["last_recovery"] == platform.last_recovery_at

    async def test_monitoring_failure_cleans_up(self, make_platform):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)

        await platform.handle_monitoring_failure(RuntimeError("detection down"))

        assert platform.initialization_failed is True
        assert platform.is_connected() is False
        assert platform.get_health_status()["overall"] == "degraded"


@pytest.mark.unit
@pytest.mark.asyncio
class TestStatusAndMessaging:
    async def test_send_message_uses_first_ready_stream(self, make_platform, fake_client):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)
        await platform.connect_to_stream(VIDEO_B)
        fake_client.handles[VIDEO_A].send_result = False
        await platform.handle_connection_ready(VIDEO_A)
        await platform.handle_connection_ready(VIDEO_B)

        assert await platform.send_message("hi chat") is True
        assert fake_client.handles[VIDEO_A].sent == ["hi chat"]
        assert fake_client.handles[VIDEO_B].sent == ["hi chat"]

    async def test_send_message_without_ready_streams(self, make_platform):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)
        assert await platform.send_message("hi") is False

    async def test_health_status(self, make_platform):
        platform = make_platform()
        assert platform.get_health_status()["overall"] == "idle"

        await platform.connect_to_stream(VIDEO_A)
        health = platform.get_health_status()
        assert health["overall"] == "degraded"
        assert health["services"]["connection_manager"] == "pending"

        await platform.handle_connection_ready(VIDEO_A)
        health = platform.get_health_status()
        assert health["overall"] == "healthy"
        assert health["services"]["detection"] == "ok"

    async def test_connection_state_and_stats(self, make_platform):
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)
        await platform.handle_connection_ready(VIDEO_A)

        assert platform.get_connection_state() == {
            "is_connected": True,
            "is_monitoring": False,
            "active_connections": [VIDEO_A],
            "total_connections": 1,
        }
        stats = platform.get_stats()
        assert stats["platform"] == "youtube"
        assert stats["active_connections"] == 1
        assert stats["errors"]["connection"] == 0
        assert stats["retry"]["max_attempts"] == 3

    async def test_viewer_counts(self, make_platform, fake_client, recorder):
        fake_client.viewers.update({VIDEO_A: 1000, VIDEO_B: 60})
        platform = make_platform()
        await platform.connect_to_stream(VIDEO_A)
        await platform.connect_to_stream(VIDEO_B)
        on_viewer_count = Mock()
        platform.handlers["on_viewer_count"] = on_viewer_count

        assert await platform.get_viewer_count() == 1060
        assert platform.get_total_viewer_count() == 1060
        assert on_viewer_count.call_args.args[0]["count"] == 1060

        assert await platform.update_viewer_count_for_stream(VIDEO_B, 40) == 1040

    async def test_unready_signal_ignored(self, make_platform, recorder):
        platform = make_platform()
        await platform.handle_connection_ready(VIDEO_A)
        assert recorder.of_type("chat-connected") == []

    async def test_listener_failure_contained(self, make_platform):
        platform = make_platform()
        platform.on("platform:event", Mock(side_effect=RuntimeError("listener broke")))

        await platform.connect_to_stream(VIDEO_A)

        assert platform.is_connected() is True
        assert platform.error_handler.counts()["processing"] == 1

    async def test_off_removes_listener(self, make_platform, recorder):
        platform = make_platform()
        platform.off("platform:event", recorder)

        await platform.connect_to_stream(VIDEO_A)

        assert recorder.envelopes == []


@pytest.mark.unit
class TestConfigurationQueries:
    def test_validate_config(self, make_platform):
        result = make_platform(YouTubeConfig()).validate_config()

        assert result == {
            "is_valid": False,
            "issues": ["Platform is disabled", "No username configured"],
        }

    def test_configured_platform(self, make_platform):
        platform = make_platform()

        assert platform.validate_config() == {"is_valid": True, "issues": []}
        assert platform.is_configured() is True
        assert platform.is_active() is False

    def test_configuration_error_carries_issues(self):
        error = ConfigurationError("bad", ["No username configured"])
        assert error.issues == ["No username configured"]
