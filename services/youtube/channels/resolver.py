"""
Channel handle → channel id resolution with a memory cache and an optional
JSON file cache mapping lowercase handles to channel ids.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("youtube.channel_resolver")

DEFAULT_TIMEOUT = 3.0
CHANNEL_ID_PATTERN = re.compile(r"^UC[A-Za-z0-9_-]{22}$")

Lookup = Callable[[str], Awaitable[Optional[str]]]


def normalize_handle_for_cache(handle: Any) -> str:
    if not isinstance(handle, str):
        return ""
    return handle.strip().lstrip("@").strip().lower()


class ChannelResolver:
    """
    Resolves channel handles to channel ids.

    Responsibilities:
    - Serve repeat lookups from memory, then from the file cache
    - Share one in-flight lookup per handle between concurrent callers
    - Bound each lookup with a timeout; failures resolve to None
    """

    def __init__(
        self,
        lookup: Lookup,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        cache_enabled: bool = False,
        cache_path: Optional[str] = None,
    ):
        if lookup is None:
            raise RuntimeError("Channel resolver requires a lookup function")
        self.lookup = lookup
        self.timeout = float(timeout)
        self._memory: Dict[str, str] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self.cache_enabled = False
        self.cache_path: Optional[Path] = None
        self.configure_cache(cache_enabled, cache_path)

    # ------------------------------------------------------------------ #
    # Cache configuration
    # ------------------------------------------------------------------ #

    def configure_cache(self, enabled: bool, path: Optional[str] = None) -> None:
        if enabled and not path:
            raise RuntimeError("Channel cache requires a file path when enabled")
        self.cache_enabled = bool(enabled)
        self.cache_path = Path(path) if enabled else None

    def clear_cache(self) -> None:
        self._memory.clear()

    def _load_file_cache(self) -> Dict[str, str]:
        if not self.cache_enabled or self.cache_path is None:
            return {}
        if not self.cache_path.exists():
            return {}
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning(f"[YouTube] Failed to read channel cache {self.cache_path}: {e}")
            return {}
        if not isinstance(data, dict):
            log.warning(f"[YouTube] Channel cache {self.cache_path} is not a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def _save_file_cache(self, key: str, channel_id: str) -> None:
        if not self.cache_enabled or self.cache_path is None:
            return
        cache = self._load_file_cache()
        cache[key] = channel_id
        target = self.cache_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=target.parent, delete=False, encoding="utf-8"
            ) as tmp:
                tmp.write(json.dumps(cache, indent=2))
                tmp.flush()
                os.fsync(tmp.fileno())
                temp_path = Path(tmp.name)
            temp_path.replace(target)
        except OSError as e:
            log.warning(f"[YouTube] Failed to write channel cache {target}: {e}")

    # ------------------------------------------------------------------ #
    # Resolution
    # ------------------------------------------------------------------ #

    async def resolve_channel_id(self, handle: Any) -> Optional[str]:
        if isinstance(handle, str) and CHANNEL_ID_PATTERN.match(handle.strip()):
            return handle.strip()

        key = normalize_handle_for_cache(handle)
        if not key:
            log.warning("[YouTube] Cannot resolve channel id: invalid handle")
            return None

        cached = self._memory.get(key)
        if cached:
            log.debug(f"[YouTube] Found cached channel id ({cached}) for @{key}")
            return cached

        from_file = self._load_file_cache().get(key)
        if from_file:
            self._memory[key] = from_file
            log.info(f"[YouTube] Found file-cached channel id ({from_file}) for @{key}")
            return from_file

        pending = self._pending.get(key)
        if pending is not None:
            log.debug(f"[YouTube] Resolution already in progress for @{key}; waiting")
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            channel_id = await self._lookup(key)
            if not future.done():
                future.set_result(channel_id)
            return channel_id
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        finally:
            self._pending.pop(key, None)

    async def _lookup(self, key: str) -> Optional[str]:
        log.info(f"[YouTube] Resolving channel @{key}")
        try:
            channel_id = await asyncio.wait_for(self.lookup(key), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning(f"[YouTube] Channel resolution for @{key} timed out after {self.timeout:.1f}s")
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"[YouTube] Channel resolution for @{key} failed: {e}")
            return None

        if not channel_id:
            log.warning(f"[YouTube] No channel id found for @{key}")
            return None

        channel_id = str(channel_id)
        self._memory[key] = channel_id
        self._save_file_cache(key, channel_id)
        log.info(f"[YouTube] Resolved @{key} to channel id {channel_id}")
        return channel_id


__all__ = [
    "CHANNEL_ID_PATTERN",
    "ChannelResolver",
    "normalize_handle_for_cache",
]
