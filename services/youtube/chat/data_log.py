from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("youtube.data_log")


class ChatDataLogger:
    """
    Append-only JSON-lines logs of raw chat updates and unknown chat items.

    Files live under `base_path`:
    - youtube-chat-{date}.jsonl
    - youtube-unknown-events.jsonl
    """

    RAW_PREFIX = "youtube-chat"
    UNKNOWN_FILE = "youtube-unknown-events.jsonl"

    def __init__(self, *, base_path: Optional[str], enabled: bool = False):
        self.enabled = bool(enabled and base_path)
        self.base_path = Path(base_path) if base_path else None

    def ensure_path(self) -> None:
        """
        Create the log directory.

        Raises OSError when the directory cannot be created; callers treat
        that as a configuration error.
        """
        if not self.enabled or self.base_path is None:
            return
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _append(self, filename: str, record: Dict[str, Any]) -> None:
        if not self.enabled or self.base_path is None:
            return
        path = self.base_path / filename
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str, ensure_ascii=False) + "\n")
        except OSError as e:
            log.warning(f"[YouTube] Failed to write data log {path}: {e}")

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def log_raw(self, video_id: Optional[str], payload: Any) -> None:
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        self._append(
            f"{self.RAW_PREFIX}-{day}.jsonl",
            {"logged_at": self._now(), "video_id": video_id, "payload": payload},
        )

    def log_unknown(
        self,
        event_type: str,
        chat_item: Any,
        author: Optional[str],
    ) -> None:
        self._append(
            self.UNKNOWN_FILE,
            {
                "logged_at": self._now(),
                "event_type": event_type,
                "author": author,
                "payload": chat_item,
            },
        )


__all__ = ["ChatDataLogger"]
