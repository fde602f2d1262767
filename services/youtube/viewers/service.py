from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from services.youtube.viewers.extractor import DEFAULT_STRATEGIES, extract_concurrent_viewers
from shared.logging.logger import get_logger

log = get_logger("youtube.viewers")

DEFAULT_TIMEOUT = 8.0
DEFAULT_BATCH_CONCURRENCY = 3


@dataclass
class ViewerCountResult:
    success: bool
    video_id: str
    count: int = 0
    strategy: Optional[str] = None
    response_time: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "count": self.count,
            "success": self.success,
            "strategy": self.strategy,
            "error": self.error,
        }


@dataclass
class AggregatedViewerCount:
    total_count: int = 0
    successful_streams: int = 0
    failed_streams: int = 0
    streams: List[ViewerCountResult] = field(default_factory=list)


class ViewerCountExtractionService:
    """
    Fetches video info through the shared client and extracts concurrent
    viewer counts.

    Responsibilities:
    - Bound each lookup with a timeout
    - Batch lookups with limited concurrency
    - Keep success / failure / timing statistics
    """

    def __init__(
        self,
        *,
        get_client: Callable[[], Awaitable[Any]],
        timeout: float = DEFAULT_TIMEOUT,
        strategies: Sequence[str] = DEFAULT_STRATEGIES,
    ):
        if get_client is None:
            raise RuntimeError("Viewer count service requires a client accessor")
        self.get_client = get_client
        self.timeout = float(timeout)
        self.strategies = tuple(strategies)

        self._started = time.monotonic()
        self._total_requests = 0
        self._successful = 0
        self._failed = 0
        self._total_time = 0.0
        self._errors_by_type: Counter = Counter()

    # ------------------------------------------------------------------ #

    async def extract_viewer_count(self, video_id: str) -> ViewerCountResult:
        started = time.monotonic()
        self._total_requests += 1

        try:
            client = await self.get_client()
            info = await asyncio.wait_for(client.get_info(video_id), timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            elapsed = time.monotonic() - started
            self._record(False, elapsed, e)
            log.debug(f"[YouTube][{video_id}] Viewer count lookup failed: {e}")
            return ViewerCountResult(
                success=False,
                video_id=video_id,
                response_time=elapsed,
                error=str(e) or type(e).__name__,
            )

        extraction = extract_concurrent_viewers(info, self.strategies)
        elapsed = time.monotonic() - started
        self._record(extraction.success, elapsed)

        if not extraction.success:
            log.debug(
                f"[YouTube][{video_id}] No viewer count found "
                f"(tried: {', '.join(extraction.strategies_attempted) or 'none'})"
            )
            return ViewerCountResult(
                success=False,
                video_id=video_id,
                response_time=elapsed,
                error=extraction.error,
            )

        log.debug(
            f"[YouTube][{video_id}] {extraction.count} viewers via {extraction.strategy}"
        )
        return ViewerCountResult(
            success=True,
            video_id=video_id,
            count=extraction.count,
            strategy=extraction.strategy,
            response_time=elapsed,
        )

    async def get_viewer_count_for_video(self, video_id: str) -> Optional[int]:
        result = await self.extract_viewer_count(video_id)
        return result.count if result.success else None

    async def extract_batch(
        self,
        video_ids: Sequence[str],
        *,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> List[ViewerCountResult]:
        concurrency = max(1, int(concurrency))
        ids = list(video_ids)
        results: List[ViewerCountResult] = []

        for start in range(0, len(ids), concurrency):
            batch = ids[start:start + concurrency]
            outcomes = await asyncio.gather(
                *(self.extract_viewer_count(video_id) for video_id in batch),
                return_exceptions=True,
            )
            for video_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    results.append(ViewerCountResult(
                        success=False,
                        video_id=video_id,
                        error=str(outcome) or type(outcome).__name__,
                    ))
                else:
                    results.append(outcome)
        return results

    async def get_aggregated_viewer_count(
        self,
        video_ids: Sequence[str],
        *,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> AggregatedViewerCount:
        if not video_ids:
            return AggregatedViewerCount()

        results = await self.extract_batch(video_ids, concurrency=concurrency)
        aggregated = AggregatedViewerCount(streams=results)
        for result in results:
            if result.success and result.count >= 0:
                aggregated.total_count += result.count
                aggregated.successful_streams += 1
            else:
                aggregated.failed_streams += 1

        log.debug(
            f"[YouTube] Aggregated {aggregated.total_count} viewers from "
            f"{aggregated.successful_streams}/{len(results)} streams"
        )
        return aggregated

    # ------------------------------------------------------------------ #

    def _record(
        self,
        success: bool,
        elapsed: float,
        error: Optional[BaseException] = None,
    ) -> None:
        self._total_time += elapsed
        if success:
            self._successful += 1
        else:
            self._failed += 1
            if error is not None:
                self._errors_by_type[type(error).__name__] += 1

    def get_stats(self) -> Dict[str, Any]:
        total = self._total_requests
        return {
            "total_requests": total,
            "successful_extractions": self._successful,
            "failed_extractions": self._failed,
            "average_response_time": self._total_time / total if total else 0.0,
            "errors_by_type": dict(self._errors_by_type),
            "success_rate": (self._successful / total * 100.0) if total else 0.0,
            "uptime": time.monotonic() - self._started,
        }


__all__ = [
    "AggregatedViewerCount",
    "ViewerCountExtractionService",
    "ViewerCountResult",
]
