from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from shared.logging.logger import get_logger

log = get_logger("youtube.detection")

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


@dataclass
class StreamDetectionResult:
    success: bool
    video_ids: List[str] = field(default_factory=list)
    message: str = ""
    response_time: float = 0.0
    detection_method: str = "source"
    has_content: bool = False
    retryable: bool = False
    retry_after: Optional[float] = None
    error: Optional[str] = None


def normalize_handle(handle: Any) -> str:
    if not isinstance(handle, str):
        return ""
    return handle.strip().lstrip("@").strip()


class StreamDetectionService:
    """
    Detects the currently live broadcasts for a channel handle.

    Responsibilities:
    - Call the injected source (`async get_live_video_ids(handle)`) with a
      timeout
    - Filter and de-duplicate video ids
    - Open a circuit after consecutive failures and fail fast during the
      cooldown
    - Track request metrics
    """

    def __init__(
        self,
        *,
        source: Any,
        timeout: float = 2.0,
        failure_threshold: int = 3,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if source is None or not callable(getattr(source, "get_live_video_ids", None)):
            raise RuntimeError("Stream detection source must provide get_live_video_ids()")
        self.source = source
        self.timeout = float(timeout)
        self.failure_threshold = max(1, int(failure_threshold))
        self.cooldown = float(cooldown)
        self._clock = clock

        self._consecutive_failures = 0
        self._circuit_opened_at: Optional[float] = None

        self._metrics: Dict[str, Any] = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "circuit_rejections": 0,
            "total_response_time": 0.0,
        }

    # ------------------------------------------------------------------ #
    # Circuit breaker
    # ------------------------------------------------------------------ #

    def _circuit_remaining(self) -> float:
        if self._circuit_opened_at is None:
            return 0.0
        remaining = self.cooldown - (self._clock() - self._circuit_opened_at)
        if remaining <= 0:
            # half-open: allow the next request through
            self._circuit_opened_at = None
            self._consecutive_failures = 0
            log.info("[YouTube] Stream detection circuit closed after cooldown")
            return 0.0
        return remaining

    @property
    def circuit_open(self) -> bool:
        return self._circuit_remaining() > 0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        self._metrics["failed_requests"] += 1
        if (
            self._consecutive_failures >= self.failure_threshold
            and self._circuit_opened_at is None
        ):
            self._circuit_opened_at = self._clock()
            log.warning(
                f"[YouTube] Stream detection circuit opened after "
                f"{self._consecutive_failures} consecutive failures "
                f"(cooldown={self.cooldown:.0f}s)"
            )

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._metrics["successful_requests"] += 1

    # ------------------------------------------------------------------ #

    async def detect_live_streams(self, handle: Any) -> StreamDetectionResult:
        channel = normalize_handle(handle)
        if not channel:
            return StreamDetectionResult(
                success=False,
                message="Channel handle is required",
                error="invalid handle",
                retryable=False,
            )

        remaining = self._circuit_remaining()
        if remaining > 0:
            self._metrics["circuit_rejections"] += 1
            return StreamDetectionResult(
                success=False,
                message="Stream detection temporarily unavailable (circuit open)",
                error="circuit open",
                retryable=True,
                retry_after=remaining,
            )

        self._metrics["total_requests"] += 1
        started = self._clock()

        try:
            raw_ids = await asyncio.wait_for(
                self.source.get_live_video_ids(channel),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            elapsed = self._clock() - started
            self._metrics["total_response_time"] += elapsed
            self._record_failure()
            log.warning(f"[YouTube] Stream detection timed out for @{channel}")
            return StreamDetectionResult(
                success=False,
                message=f"Stream detection timed out after {self.timeout:.1f}s",
                response_time=elapsed,
                error="timeout",
                retryable=True,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            elapsed = self._clock() - started
            self._metrics["total_response_time"] += elapsed
            self._record_failure()
            log.warning(f"[YouTube] Stream detection failed for @{channel}: {e}")
            return StreamDetectionResult(
                success=False,
                message=f"Stream detection failed: {e}",
                response_time=elapsed,
                error=str(e) or type(e).__name__,
                retryable=True,
            )

        elapsed = self._clock() - started
        self._metrics["total_response_time"] += elapsed
        self._record_success()

        video_ids = self._filter_ids(raw_ids)
        message = (
            f"Found {len(video_ids)} live stream(s)" if video_ids else "No live streams"
        )
        log.debug(f"[YouTube] Detection for @{channel}: {message}")
        return StreamDetectionResult(
            success=True,
            video_ids=video_ids,
            message=message,
            response_time=elapsed,
            has_content=bool(video_ids),
        )

    @staticmethod
    def _filter_ids(raw_ids: Any) -> List[str]:
        video_ids: List[str] = []
        for raw in raw_ids or []:
            if not isinstance(raw, str):
                continue
            candidate = raw.strip()
            if not VIDEO_ID_PATTERN.match(candidate):
                log.debug(f"[YouTube] Ignoring invalid video id from detection: {raw!r}")
                continue
            if candidate not in video_ids:
                video_ids.append(candidate)
        return video_ids

    def get_metrics(self) -> Dict[str, Any]:
        completed = self._metrics["successful_requests"] + self._metrics["failed_requests"]
        average = (
            self._metrics["total_response_time"] / completed if completed else 0.0
        )
        return {
            "total_requests": self._metrics["total_requests"],
            "successful_requests": self._metrics["successful_requests"],
            "failed_requests": self._metrics["failed_requests"],
            "circuit_rejections": self._metrics["circuit_rejections"],
            "average_response_time": average,
            "consecutive_failures": self._consecutive_failures,
            "circuit_open": self._circuit_opened_at is not None,
        }


__all__ = [
    "StreamDetectionResult",
    "StreamDetectionService",
    "VIDEO_ID_PATTERN",
    "normalize_handle",
]
