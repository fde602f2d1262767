from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from services.youtube.errors import StreamDetectionError
from services.youtube.streams.detection import StreamDetectionService
from shared.chat.events import utc_now_iso
from shared.logging.logger import get_logger

log = get_logger("youtube.multistream")

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
MIN_POLLING_INTERVAL = 1.0


@dataclass
class ShortageState:
    in_shortage: bool = False
    last_warning_at: Optional[float] = None
    last_known_available: int = 0
    last_known_required: int = 0
    warning_count: int = 0

    def reset(self) -> None:
        self.in_shortage = False
        self.last_warning_at = None
        self.last_known_available = 0
        self.last_known_required = 0


class MultiStreamManager:
    """
    Periodic live-stream monitor for one channel.

    Responsibilities:
    - Poll the detection service on a validated interval
    - Connect newly detected broadcasts up to max_streams, never evicting
    - Disconnect broadcasts that are no longer detected
    - Throttle stream-shortage warnings to one per full_check_interval
    - Stop and clean the platform up after retry_attempts consecutive
      detection failures

    The platform provides `config`, `connection_manager`, `event_factory`,
    `error_handler`, and the coroutines `connect_to_stream`,
    `disconnect_from_stream`, `emit_event` and `handle_monitoring_failure`.
    """

    def __init__(
        self,
        *,
        platform: Any,
        detection: StreamDetectionService,
        clock: Callable[[], float] = time.monotonic,
    ):
        if platform is None:
            raise RuntimeError("Multi-stream manager requires a platform")
        if detection is None:
            raise RuntimeError("Multi-stream manager requires a detection service")

        self.platform = platform
        self.detection = detection
        self._clock = clock

        self.shortage = ShortageState()
        self.last_full_check: Optional[float] = None
        self.last_detection_at: Optional[float] = None
        self.consecutive_failures = 0
        self.poll_interval = MIN_POLLING_INTERVAL

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # Config accessors
    # ------------------------------------------------------------------ #

    @property
    def config(self):
        return self.platform.config

    @property
    def max_streams(self) -> int:
        return max(0, int(self.config.max_streams or 0))

    @property
    def full_check_interval(self) -> float:
        return max(MIN_POLLING_INTERVAL, float(self.config.full_check_interval))

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start_monitoring(self) -> None:
        if self._task is not None:
            log.debug("[MultiStream] Replacing existing monitoring loop")
            await self.stop_monitoring()

        interval = self.config.stream_polling_interval
        try:
            interval = float(interval)
        except (TypeError, ValueError):
            interval = MIN_POLLING_INTERVAL
        if interval < MIN_POLLING_INTERVAL:
            log.warning(
                f"[MultiStream] Polling interval {interval}s too small; "
                f"using {MIN_POLLING_INTERVAL:.0f}s"
            )
            interval = MIN_POLLING_INTERVAL
        self.poll_interval = interval

        log.info(
            f"[MultiStream] Starting multi-stream monitoring for "
            f"@{self.config.username} (interval={self.poll_interval:.0f}s)"
        )

        self._stop_event = asyncio.Event()
        self.consecutive_failures = 0

        await self.check_multi_stream(raise_on_error=True)

        self._task = asyncio.create_task(self._run())

    async def stop_monitoring(self) -> None:
        """
        Stop polling. A tick already running completes first. Safe to call
        from inside a tick.
        """
        self._stop_event.set()
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            log.debug("[MultiStream] Monitoring loop cancelled")
        except Exception as e:
            log.warning(f"[MultiStream] Monitoring loop ended with error: {e}")
        log.info("[MultiStream] Monitoring stopped")

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.poll_interval,
                    )
                    break
                except asyncio.TimeoutError:
                    pass
                await self.check_multi_stream()
        except asyncio.CancelledError:
            log.debug("[MultiStream] Monitoring loop cancelled")
            raise

    # ------------------------------------------------------------------ #
    # Tick
    # ------------------------------------------------------------------ #

    async def check_multi_stream(self, *, raise_on_error: bool = False) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.platform.error_handler.handle_processing_error(
                e, "multi-stream-check", None,
                f"Error in multi-stream check: {e}",
            )
            if raise_on_error:
                raise

    async def _tick(self) -> None:
        manager = self.platform.connection_manager
        max_streams = self.max_streams
        now = self._clock()

        if max_streams > 0 and manager.count() >= max_streams:
            since_full = (
                now - self.last_full_check
                if self.last_full_check is not None
                else float("inf")
            )
            if since_full < self.full_check_interval:
                log.debug(
                    f"[MultiStream] At capacity ({manager.count()}/{max_streams}); "
                    f"next full check in {self.full_check_interval - since_full:.0f}s"
                )
                self.log_status()
                return
            log.debug("[MultiStream] Performing periodic full check at capacity")
            self.last_full_check = now

        result = await self.detection.detect_live_streams(self.config.username)
        if not result.success:
            await self._handle_detection_failure(result)
            return

        self.consecutive_failures = 0
        self.last_detection_at = now
        detected: List[str] = list(result.video_ids)

        self.check_stream_shortage(len(detected), max_streams)

        if detected:
            log.info(f"[MultiStream] Detected {len(detected)} live stream(s)")
            for index, video_id in enumerate(detected, start=1):
                log.debug(f"  {index}. {video_id} - {WATCH_URL.format(video_id=video_id)}")

        previous = set(manager.get_all_video_ids())
        candidates = [vid for vid in detected if vid not in previous]
        if max_streams > 0:
            slots = max(0, max_streams - len(previous))
            if len(candidates) > slots:
                log.debug(
                    f"[MultiStream] Limiting new connections to {slots} "
                    f"(max_streams={max_streams}, found {len(detected)})"
                )
            candidates = candidates[:slots]

        for video_id in candidates:
            try:
                await self.platform.connect_to_stream(video_id, reason="stream detected")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # already recorded by the platform
                log.warning(f"[MultiStream] Failed to connect to stream {video_id}: {e}")

        if candidates:
            event = self.platform.event_factory.create_stream_detected(
                new_stream_ids=candidates,
                all_stream_ids=detected,
                timestamp=utc_now_iso(),
                detection_time=time.time() * 1000.0,
                connection_count=manager.count(),
            )
            await self.platform.emit_event(event)

        if not detected and manager.count() > 0:
            log.warning(
                "[MultiStream] Detection returned no streams; preserving existing connections"
            )
            return

        for video_id in manager.get_all_video_ids():
            if video_id not in detected:
                log.info(f"[MultiStream] Stream ended, disconnecting: {video_id}")
                await self.platform.disconnect_from_stream(video_id, reason="no longer live")

        self.log_status(include_details=True)

    async def _handle_detection_failure(self, result) -> None:
        self.consecutive_failures += 1
        error = StreamDetectionError(
            result.message or "Stream detection failed",
            retryable=result.retryable,
            retry_after=result.retry_after,
        )
        log.warning(
            f"[MultiStream] Detection failed "
            f"({self.consecutive_failures}/{self.config.retry_attempts}): {result.message}"
        )

        event = self.platform.event_factory.create_error(
            error=error,
            operation="stream-detection",
            timestamp=utc_now_iso(),
            recoverable=result.retryable,
            context={"consecutive_failures": self.consecutive_failures},
        )
        await self.platform.emit_event(event)

        if self.consecutive_failures >= self.config.retry_attempts:
            log.error(
                f"[MultiStream] Detection failed {self.consecutive_failures} times "
                "in a row; stopping monitoring"
            )
            self._stop_event.set()
            await self.platform.handle_monitoring_failure(error)

    # ------------------------------------------------------------------ #
    # Shortage / status
    # ------------------------------------------------------------------ #

    def check_stream_shortage(self, available: int, max_streams: int) -> None:
        now = self._clock()
        state = self.shortage

        if max_streams > 0 and available < max_streams:
            throttled = (
                state.last_warning_at is not None
                and (now - state.last_warning_at) < self.full_check_interval
            )
            if throttled:
                log.info(
                    f"[MultiStream] Stream status: {available}/{max_streams} "
                    "streams available (shortage persists)"
                )
            else:
                log.warning(
                    f"[MultiStream] Stream shortage detected: found "
                    f"{available}/{max_streams} streams. Some content may be missed."
                )
                state.last_warning_at = now
                state.warning_count += 1
            state.in_shortage = True
            state.last_known_available = available
            state.last_known_required = max_streams
            return

        if state.in_shortage:
            log.info(
                f"[MultiStream] Stream shortage resolved: "
                f"{available}/{max_streams} streams available"
            )
            state.reset()

    def log_status(self, *, include_details: bool = False) -> None:
        manager = self.platform.connection_manager
        stored = manager.get_all_video_ids()
        ready = manager.get_active_video_ids()

        if not stored:
            log.debug("[MultiStream] No YouTube connections established")
            return

        log.info(
            f"[MultiStream] Status: {len(ready)} ready, {len(stored)} total connections"
        )
        if include_details:
            for video_id in stored:
                if video_id not in ready:
                    log.info(f"[MultiStream] Waiting for stream to start: {video_id}")

    def get_status(self):
        return {
            "monitoring": self.is_monitoring,
            "poll_interval": self.poll_interval,
            "consecutive_failures": self.consecutive_failures,
            "in_shortage": self.shortage.in_shortage,
            "shortage_warnings": self.shortage.warning_count,
            "last_detection_at": self.last_detection_at,
        }


__all__ = ["MultiStreamManager", "ShortageState"]
