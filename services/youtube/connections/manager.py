from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from services.youtube.errors import DuplicateConnection
from shared.logging.logger import get_logger

log = get_logger("youtube.connections")


class ConnectionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    @classmethod
    def from_value(
        cls, value: Any, *, default: "ConnectionState" = None
    ) -> "ConnectionState":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in {member.name.lower(), member.value}:
                    return member
        return default or cls.DISCONNECTED


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConnectionEntry:
    video_id: str
    handle: Any
    state: ConnectionState = ConnectionState.CONNECTED
    ready: bool = False
    created_at: datetime = field(default_factory=_utc_now)
    ready_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat().replace("+00:00", "Z") if value else None

        return {
            "video_id": self.video_id,
            "state": self.state.value,
            "ready": self.ready,
            "created_at": iso(self.created_at),
            "ready_at": iso(self.ready_at),
            "last_error_at": iso(self.last_error_at),
            "metadata": dict(self.metadata),
        }


async def release_handle(handle: Any) -> None:
    """Best-effort release of a chat handle: drop listeners, then stop it."""
    if handle is None:
        return

    remove_listeners = getattr(handle, "remove_all_listeners", None)
    if callable(remove_listeners):
        result = remove_listeners()
        if inspect.isawaitable(result):
            await result

    stop = getattr(handle, "stop", None)
    if callable(stop):
        result = stop()
        if inspect.isawaitable(result):
            await result


class ConnectionManager:
    """
    Registry of per-broadcast chat connections.

    Responsibilities:
    - Hold at most one entry per video id
    - Track ready / not-ready state separately from presence
    - Release chat handles on removal
    - Hand out snapshots only; entries are never mutated from outside
    """

    def __init__(self, *, platform: str = "youtube"):
        self.platform = platform
        self._connections: Dict[str, ConnectionEntry] = {}

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def add(
        self,
        video_id: str,
        handle: Any,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Register a chat handle for `video_id`.

        Returns False when the same handle is already registered. Raises
        DuplicateConnection when a different handle exists for the id.
        """
        if not video_id:
            raise RuntimeError("video_id is required")

        existing = self._connections.get(video_id)
        if existing is not None:
            if existing.handle is handle:
                return False
            raise DuplicateConnection(video_id)

        self._connections[video_id] = ConnectionEntry(
            video_id=video_id,
            handle=handle,
            metadata=dict(metadata or {}),
        )
        log.info(
            f"[YouTube][{video_id}] Connection stored "
            f"(total={self.count()}, ready={self.ready_count()})"
        )
        return True

    async def remove(self, video_id: str, reason: str = "removed") -> bool:
        entry = self._connections.pop(video_id, None)
        if entry is None:
            return False

        entry.state = ConnectionState.DISCONNECTING
        try:
            await release_handle(entry.handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[YouTube][{video_id}] Error releasing chat handle: {e}")
        entry.state = ConnectionState.DISCONNECTED

        log.info(
            f"[YouTube][{video_id}] Connection removed ({reason}); "
            f"remaining={self.count()}"
        )
        return True

    def set_ready(self, video_id: str) -> bool:
        entry = self._connections.get(video_id)
        if entry is None:
            log.debug(f"[YouTube][{video_id}] set_ready ignored: unknown connection")
            return False
        if not entry.ready:
            entry.ready = True
            entry.ready_at = _utc_now()
            entry.state = ConnectionState.READY
            log.info(f"[YouTube][{video_id}] Connection ready")
        return True

    def mark_error(self, video_id: str) -> None:
        entry = self._connections.get(video_id)
        if entry is not None:
            entry.last_error_at = _utc_now()
            entry.state = ConnectionState.ERROR

    async def cleanup_all(self) -> int:
        video_ids = list(self._connections.keys())
        for video_id in video_ids:
            try:
                await self.remove(video_id, reason="cleanup")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"[YouTube][{video_id}] Cleanup error ignored: {e}")
                self._connections.pop(video_id, None)
        return len(video_ids)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def has(self, video_id: str) -> bool:
        return video_id in self._connections

    def is_ready(self, video_id: str) -> bool:
        entry = self._connections.get(video_id)
        return bool(entry and entry.ready)

    def get(self, video_id: str) -> Optional[ConnectionEntry]:
        entry = self._connections.get(video_id)
        if entry is None:
            return None
        return replace(entry, metadata=dict(entry.metadata))

    def get_handle(self, video_id: str) -> Any:
        entry = self._connections.get(video_id)
        return entry.handle if entry else None

    def get_all_video_ids(self) -> List[str]:
        return list(self._connections.keys())

    def get_active_video_ids(self) -> List[str]:
        return [vid for vid, entry in self._connections.items() if entry.ready]

    def count(self) -> int:
        return len(self._connections)

    def ready_count(self) -> int:
        return sum(1 for entry in self._connections.values() if entry.ready)

    def get_state(self) -> Dict[str, Any]:
        return {
            "total_connections": self.count(),
            "ready_connections": self.ready_count(),
            "video_ids": self.get_all_video_ids(),
            "active_video_ids": self.get_active_video_ids(),
            "connections": {
                vid: entry.to_dict() for vid, entry in self._connections.items()
            },
        }


__all__ = [
    "ConnectionEntry",
    "ConnectionManager",
    "ConnectionState",
    "release_handle",
]
