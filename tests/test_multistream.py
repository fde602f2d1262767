"""Unit tests for the multi-stream monitor tick."""
import time
from unittest.mock import patch

import pytest

from services.youtube.streams.multistream import MIN_POLLING_INTERVAL, MultiStreamManager

from conftest import VIDEO_A, VIDEO_B, VIDEO_C, FakeVideoInfo


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def platform(make_platform, clock):
    platform = make_platform()
    platform.multistream = MultiStreamManager(
        platform=platform, detection=platform.detection, clock=clock
    )
    return platform


@pytest.mark.unit
@pytest.mark.asyncio
class TestMultiStreamTick:
    """check_multi_stream connection reconciliation."""

    async def test_connects_up_to_max_streams(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A, VIDEO_B, VIDEO_C]
        before_ms = time.time() * 1000.0

        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.get_all_video_ids() == [VIDEO_A, VIDEO_B]
        assert fake_client.handles[VIDEO_A].started
        detected = recorder.of_type("stream-detected")
        assert len(detected) == 1
        assert detected[0]["new_stream_ids"] == [VIDEO_A, VIDEO_B]
        assert detected[0]["all_stream_ids"] == [VIDEO_A, VIDEO_B, VIDEO_C]
        assert detected[0]["connection_count"] == 2
        assert detected[0]["detection_time"] >= before_ms

    async def test_first_connection_emits_stream_status(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        await platform.multistream.check_multi_stream()

        statuses = recorder.of_type("stream-status")
        assert len(statuses) == 1
        assert statuses[0]["is_live"] is True
        assert statuses[0]["video_id"] == VIDEO_A

    async def test_never_evicts_at_capacity(self, platform, fake_client, clock):
        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        await platform.multistream.check_multi_stream()

        fake_client.live_ids = [VIDEO_A, VIDEO_B, VIDEO_C]
        clock.advance(400)
        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.get_all_video_ids() == [VIDEO_A, VIDEO_B]

    async def test_at_capacity_skips_detection_until_full_check(self, platform, fake_client, clock):
        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        monitor = platform.multistream

        await monitor.check_multi_stream()
        assert fake_client.detection_calls == 1

        # first at-capacity tick performs the periodic full check
        await monitor.check_multi_stream()
        assert fake_client.detection_calls == 2

        clock.advance(100)
        await monitor.check_multi_stream()
        assert fake_client.detection_calls == 2

        clock.advance(250)
        await monitor.check_multi_stream()
        assert fake_client.detection_calls == 3

    async def test_disconnects_ended_streams(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        await platform.multistream.check_multi_stream()

        fake_client.live_ids = [VIDEO_A]
        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.get_all_video_ids() == [VIDEO_A]
        assert fake_client.handles[VIDEO_B].stopped
        disconnected = recorder.of_type("chat-disconnected")
        assert [d["video_id"] for d in disconnected] == [VIDEO_B]
        assert disconnected[0]["reason"] == "no longer live"
        assert [s["is_live"] for s in recorder.of_type("stream-status")] == [True]

    async def test_empty_detection_preserves_connections(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A]
        await platform.multistream.check_multi_stream()

        fake_client.live_ids = []
        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.get_all_video_ids() == [VIDEO_A]
        assert recorder.of_type("chat-disconnected") == []

    async def test_connect_failure_does_not_abort_tick(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        fake_client.infos[VIDEO_A] = FakeVideoInfo(None, is_upcoming=True)

        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.get_all_video_ids() == [VIDEO_B]
        assert platform.error_handler.counts()["connection"] == 1
        assert recorder.of_type("stream-detected")[0]["new_stream_ids"] == [VIDEO_A, VIDEO_B]

    async def test_unlimited_streams_when_max_is_zero(self, make_platform, youtube_config, fake_client):
        youtube_config.max_streams = 0
        platform = make_platform(youtube_config)
        fake_client.live_ids = [VIDEO_A, VIDEO_B, VIDEO_C]

        await platform.multistream.check_multi_stream()

        assert platform.connection_manager.count() == 3


@pytest.mark.unit
@pytest.mark.asyncio
class TestStreamShortage:
    """Shortage warnings are throttled to one per full check interval."""

    async def test_warning_throttled(self, platform, fake_client, clock):
        fake_client.live_ids = [VIDEO_A]
        monitor = platform.multistream

        with patch("services.youtube.streams.multistream.log") as log:
            await monitor.check_multi_stream()
            await monitor.check_multi_stream()
            clock.advance(100)
            await monitor.check_multi_stream()

            assert monitor.shortage.warning_count == 1
            shortage_warnings = [
                c for c in log.warning.call_args_list if "shortage" in c.args[0]
            ]
            assert len(shortage_warnings) == 1

            clock.advance(250)
            await monitor.check_multi_stream()
            assert monitor.shortage.warning_count == 2

        assert monitor.shortage.in_shortage is True
        assert monitor.shortage.last_known_available == 1
        assert monitor.shortage.last_known_required == 2

    async def test_shortage_resolves(self, platform, fake_client):
        fake_client.live_ids = [VIDEO_A]
        monitor = platform.multistream
        await monitor.check_multi_stream()

        fake_client.live_ids = [VIDEO_A, VIDEO_B]
        await monitor.check_multi_stream()

        assert monitor.shortage.in_shortage is False
        assert monitor.get_status()["in_shortage"] is False

    def test_no_shortage_without_limit(self, platform):
        platform.multistream.check_stream_shortage(0, 0)
        assert platform.multistream.shortage.in_shortage is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestDetectionFailures:
    async def test_failure_emits_error_event(self, platform, fake_client, recorder):
        fake_client.detection_error = RuntimeError("HTTP 500")

        await platform.multistream.check_multi_stream()

        errors = recorder.of_type("error")
        assert len(errors) == 1
        assert errors[0]["context"]["operation"] == "stream-detection"
        assert errors[0]["context"]["consecutive_failures"] == 1
        assert errors[0]["recoverable"] is True
        assert platform.multistream.consecutive_failures == 1

    async def test_consecutive_failures_stop_monitoring(self, platform, fake_client, recorder):
        fake_client.live_ids = [VIDEO_A]
        await platform.multistream.check_multi_stream()

        fake_client.detection_error = RuntimeError("HTTP 500")
        for _ in range(3):
            await platform.multistream.check_multi_stream()

        assert platform.initialization_failed is True
        assert platform.connection_manager.count() == 0
        assert fake_client.handles[VIDEO_A].stopped
        assert len(recorder.of_type("error")) == 3

    async def test_success_resets_failures(self, platform, fake_client):
        fake_client.detection_error = RuntimeError("HTTP 500")
        await platform.multistream.check_multi_stream()

        fake_client.detection_error = None
        await platform.multistream.check_multi_stream()

        assert platform.multistream.consecutive_failures == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestMonitoringLifecycle:
    async def test_start_and_stop(self, platform, fake_client):
        fake_client.live_ids = [VIDEO_A]
        monitor = platform.multistream

        await monitor.start_monitoring()
        assert monitor.is_monitoring is True
        assert monitor.poll_interval == 60
        assert platform.connection_manager.has(VIDEO_A)

        await monitor.stop_monitoring()
        assert monitor.is_monitoring is False

    async def test_small_interval_clamped(self, make_platform, youtube_config):
        youtube_config.stream_polling_interval = 0
        platform = make_platform(youtube_config)

        await platform.multistream.start_monitoring()
        try:
            assert platform.multistream.poll_interval == MIN_POLLING_INTERVAL
        finally:
            await platform.multistream.stop_monitoring()
