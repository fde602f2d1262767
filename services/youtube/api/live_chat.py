import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from services.youtube.models.message import is_chat_ended, to_chat_action
from shared.logging.logger import get_logger
from shared.runtime.quotas import QuotaBufferWarning, QuotaExceeded, QuotaTracker

log = get_logger("youtube.live_chat")

LIFECYCLE_EVENTS = ("start", "chat-update", "error", "end")


class LiveChatPoller:
    """
    Chat handle over the YouTube Data API v3 liveChat/messages endpoint.

    Responsibilities:
    - Poll liveChat/messages, honouring pollingIntervalMillis
    - Deduplicate messages
    - Translate resources into chat-update actions
    - Enforce YouTube API quota before each call
    - Deliver start / chat-update / error / end to listeners in order
    """

    BASE_URL = "https://www.googleapis.com/youtube/v3/liveChat/messages"

    # YouTube Data API v3 cost
    QUOTA_COST_PER_CALL = 5

    # error reasons after which the chat can never be polled again
    TERMINAL_REASONS = frozenset({"liveChatEnded", "liveChatDisabled", "liveChatNotFound"})

    def __init__(
        self,
        *,
        api_key: str,
        live_chat_id: str,
        video_id: str,
        http_client: httpx.AsyncClient,
        quota_tracker: Optional[QuotaTracker] = None,
        poll_interval: float = 2.5,
    ):
        if not api_key:
            raise RuntimeError("YouTube API key is required")
        if not live_chat_id:
            raise RuntimeError("YouTube live_chat_id is required")
        if http_client is None:
            raise RuntimeError("An httpx client is required for chat polling")

        self.api_key = api_key
        self.live_chat_id = live_chat_id
        self.video_id = video_id
        self.quota_tracker = quota_tracker
        self.poll_interval = poll_interval
        self._http = http_client

        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._page_token: Optional[str] = None
        self._seen_ids: Set[str] = set()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.started = False

    # ------------------------------------------------------------------ #
    # Listener interface
    # ------------------------------------------------------------------ #

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        if event not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unsupported chat event: {event}")
        self._listeners.setdefault(event, []).append(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    async def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"[YouTube][{self.video_id}] {event} listener failed: {e}")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        log.info(
            f"[YouTube][{self.video_id}] Starting live chat polling "
            f"(liveChatId={self.live_chat_id})"
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Signal the polling loop to stop. Safe to call from a listener."""
        self._stop_event.set()
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            log.debug(f"[YouTube][{self.video_id}] Chat polling cancelled")

    async def send_message(self, text: str) -> bool:
        log.warning(
            f"[YouTube][{self.video_id}] Sending chat messages requires OAuth; "
            "the API key backend is read-only"
        )
        return False

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                sleep_seconds = await self.poll_once()
                if sleep_seconds is None:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            raise
        finally:
            log.info(f"[YouTube][{self.video_id}] Live chat polling stopped")

    async def poll_once(self) -> Optional[float]:
        """
        Run one poll. Returns the delay before the next poll, or None when
        polling must stop.
        """
        if self.quota_tracker is not None:
            try:
                self.quota_tracker.consume(self.QUOTA_COST_PER_CALL)
            except QuotaBufferWarning as warn:
                log.warning(f"[YouTube][{self.video_id}] {warn}")
            except QuotaExceeded as fatal:
                log.error(f"[YouTube][{self.video_id}] {fatal} - polling halted")
                await self._emit("error", fatal)
                return None

        params = {
            "part": "snippet,authorDetails",
            "liveChatId": self.live_chat_id,
            "key": self.api_key,
        }
        if self._page_token:
            params["pageToken"] = self._page_token

        try:
            response = await self._http.get(self.BASE_URL, params=params)
            if response.status_code >= 400:
                reason = _error_reason(response)
                if reason in self.TERMINAL_REASONS:
                    log.info(f"[YouTube][{self.video_id}] Live chat closed ({reason})")
                    await self._emit("end", {"reason": reason})
                    return None
            response.raise_for_status()
            data = response.json()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[YouTube][{self.video_id}] chat poll error: {e}")
            await self._emit("error", e)
            return self.poll_interval

        self._page_token = data.get("nextPageToken")

        actions: List[Dict[str, Any]] = []
        ended = False
        for resource in data.get("items", []):
            msg_id = resource.get("id")
            if not msg_id or msg_id in self._seen_ids:
                continue
            self._seen_ids.add(msg_id)
            if is_chat_ended(resource):
                ended = True
                continue
            action = to_chat_action(resource)
            if action is not None:
                actions.append(action)

        if not self.started:
            # the first page is chat history; it accompanies "start"
            self.started = True
            await self._emit("start", {"actions": actions})
        elif actions:
            await self._emit("chat-update", {"actions": actions, "video_id": self.video_id})

        if ended or data.get("offlineAt"):
            await self._emit("end", {"reason": "chat ended"})
            return None

        interval_ms = data.get("pollingIntervalMillis")
        sleep_seconds = (
            interval_ms / 1000.0
            if isinstance(interval_ms, (int, float))
            else self.poll_interval
        )

        snapshot = self.quota_tracker.snapshot() if self.quota_tracker else None
        log.debug(
            f"[YouTube][{self.video_id}] Poll complete "
            f"(messages={len(actions)}, quota={snapshot}, sleep={sleep_seconds}s)"
        )
        return sleep_seconds


def _error_reason(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    for entry in error.get("errors") or []:
        reason = entry.get("reason") if isinstance(entry, dict) else None
        if reason:
            return reason
    return None


__all__ = ["LIFECYCLE_EVENTS", "LiveChatPoller"]
