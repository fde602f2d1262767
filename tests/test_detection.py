"""Unit tests for live stream detection and its circuit breaker."""
import asyncio

import pytest

from services.youtube.streams.detection import StreamDetectionService, normalize_handle

from conftest import VIDEO_A, VIDEO_B, FakeClient


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SlowSource:
    async def get_live_video_ids(self, handle):
        await asyncio.sleep(1)
        return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.mark.unit
class TestDetectionSetup:
    def test_source_required(self):
        with pytest.raises(RuntimeError):
            StreamDetectionService(source=object())

    @pytest.mark.parametrize(
        "raw, expected",
        [("@channel", "channel"), ("  @@chan  ", "chan"), ("plain", "plain"), (None, ""), ("@", "")],
    )
    def test_normalize_handle(self, raw, expected):
        assert normalize_handle(raw) == expected


@pytest.mark.unit
@pytest.mark.asyncio
class TestDetectLiveStreams:
    """detect_live_streams outcomes."""

    async def test_filters_and_dedupes(self):
        source = FakeClient([VIDEO_A, "short", VIDEO_A, 42, f" {VIDEO_B} ", "bad id with!"])
        service = StreamDetectionService(source=source)

        result = await service.detect_live_streams("@testchannel")

        assert result.success is True
        assert result.video_ids == [VIDEO_A, VIDEO_B]
        assert result.has_content is True
        assert result.message == "Found 2 live stream(s)"

    async def test_no_streams(self):
        result = await StreamDetectionService(source=FakeClient()).detect_live_streams("chan")

        assert result.success is True
        assert result.video_ids == []
        assert result.has_content is False
        assert result.message == "No live streams"

    async def test_invalid_handle_not_retryable(self):
        source = FakeClient()
        result = await StreamDetectionService(source=source).detect_live_streams("  ")

        assert result.success is False
        assert result.retryable is False
        assert source.detection_calls == 0

    async def test_source_error_is_retryable(self):
        source = FakeClient()
        source.detection_error = RuntimeError("HTTP 500")
        result = await StreamDetectionService(source=source).detect_live_streams("chan")

        assert result.success is False
        assert result.retryable is True
        assert result.error == "HTTP 500"

    async def test_timeout(self):
        service = StreamDetectionService(source=SlowSource(), timeout=0.01)
        result = await service.detect_live_streams("chan")

        assert result.success is False
        assert result.error == "timeout"
        assert result.retryable is True

    async def test_circuit_opens_and_half_opens(self, clock):
        source = FakeClient([VIDEO_A])
        source.detection_error = RuntimeError("boom")
        service = StreamDetectionService(
            source=source, failure_threshold=2, cooldown=30, clock=clock
        )

        await service.detect_live_streams("chan")
        assert service.circuit_open is False
        await service.detect_live_streams("chan")
        assert service.circuit_open is True

        clock.advance(10)
        rejected = await service.detect_live_streams("chan")
        assert rejected.success is False
        assert rejected.error == "circuit open"
        assert rejected.retry_after == pytest.approx(20)
        assert source.detection_calls == 2

        clock.advance(25)
        source.detection_error = None
        recovered = await service.detect_live_streams("chan")
        assert recovered.success is True
        assert recovered.video_ids == [VIDEO_A]
        assert source.detection_calls == 3

    async def test_metrics(self, clock):
        source = FakeClient([VIDEO_A])
        service = StreamDetectionService(source=source, clock=clock)

        await service.detect_live_streams("chan")
        source.detection_error = RuntimeError("down")
        await service.detect_live_streams("chan")

        metrics = service.get_metrics()
        assert metrics["total_requests"] == 2
        assert metrics["successful_requests"] == 1
        assert metrics["failed_requests"] == 1
        assert metrics["consecutive_failures"] == 1
        assert metrics["circuit_open"] is False
        assert metrics["average_response_time"] == 0.0
