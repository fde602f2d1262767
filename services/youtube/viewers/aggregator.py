from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.chat.events import PlatformEvent, utc_now_iso
from shared.logging.logger import get_logger

log = get_logger("youtube.viewer_aggregator")


class ViewerCountAggregator:
    """
    Sums per-broadcast viewer counts across every stored connection.

    Counts are taken for all stored connections, ready or not, with one
    `provider.get_aggregated_viewer_count(video_ids)` call per poll. The
    per-stream map is rebuilt from that call's successful results, so a
    stream whose lookup fails drops out of the total. Values pushed through
    `update_stream_count` are kept as reported: zero, negative, NaN and
    infinity flow through to observers unchanged.
    """

    def __init__(
        self,
        *,
        connection_manager: Any,
        provider: Any,
        event_factory: Any,
        emit: Callable[[PlatformEvent], Awaitable[None]],
        error_handler: Any = None,
    ):
        if connection_manager is None:
            raise RuntimeError("Viewer aggregator requires a connection manager")
        if event_factory is None:
            raise RuntimeError("Viewer aggregator requires an event factory")
        self.connection_manager = connection_manager
        self.provider = provider
        self.event_factory = event_factory
        self.emit = emit
        self.error_handler = error_handler
        self.stream_counts: Dict[str, Any] = {}

    # ------------------------------------------------------------------ #

    async def get_total_viewers(self) -> Any:
        if self.provider is None:
            log.warning("[YouTube] No viewer count provider configured; reporting 0 viewers")
            return 0

        video_ids: List[str] = self.connection_manager.get_all_video_ids()
        try:
            aggregated = await self.provider.get_aggregated_viewer_count(video_ids)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.debug(f"[YouTube] Viewer count lookup failed: {e}")
            aggregated = None

        # replaced every poll; failed lookups contribute nothing
        counts: Dict[str, Any] = {}
        last_updated: Optional[str] = None
        for result in (aggregated.streams if aggregated is not None else []):
            if not result.success or result.video_id not in video_ids:
                continue
            counts[result.video_id] = result.count
            last_updated = result.video_id
        self.stream_counts = counts

        total = self.get_total_viewer_count()
        if last_updated is not None:
            await self._emit_total(total, last_updated, self.stream_counts[last_updated])
        return total

    async def update_stream_count(self, stream_id: str, count: Any) -> Any:
        self.stream_counts[stream_id] = count
        log.debug(f"[YouTube][{stream_id}] Viewer count updated: {count}")
        total = self.get_total_viewer_count()
        await self._emit_total(total, stream_id, count)
        return total

    def get_total_viewer_count(self) -> Any:
        total: Any = 0
        for count in self.stream_counts.values():
            try:
                total = total + count
            except TypeError:
                log.debug(f"[YouTube] Skipping non-numeric viewer count: {count!r}")
        return total

    def reset(self) -> None:
        self.stream_counts.clear()

    # ------------------------------------------------------------------ #

    async def _emit_total(self, total: Any, stream_id: str, stream_count: Any) -> None:
        try:
            event = self.event_factory.create_viewer_count(
                count=total,
                stream_id=stream_id,
                stream_viewer_count=stream_count,
                timestamp=utc_now_iso(),
            )
            await self.emit(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.error_handler is not None:
                self.error_handler.handle_processing_error(
                    e, "viewer-count",
                    {"stream_id": stream_id, "count": stream_count},
                    f"Error emitting viewer count event: {e}",
                )
            else:
                log.error(f"[YouTube] Error emitting viewer count event: {e}")


__all__ = ["ViewerCountAggregator"]
