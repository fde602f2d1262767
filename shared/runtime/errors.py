"""
Error classification for platform runtimes.

Errors fall into four kinds, each with its own handling policy:

- CONFIGURATION : bad or missing options; surfaced, defaults applied
- CONNECTION    : acquiring or losing chat handles; retried with backoff
- PROCESSING    : failures while handling a single chat item; logged only
- CLEANUP       : failures while releasing resources; logged, never raised
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from shared.logging.logger import get_logger


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    PROCESSING = "processing"
    CLEANUP = "cleanup"


@dataclass
class ErrorRecord:
    kind: ErrorKind
    message: str
    operation: str
    error_name: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    occurred_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "operation": self.operation,
            "error_name": self.error_name,
            "context": dict(self.context),
            "occurred_at": self.occurred_at,
        }


# Keys that must never be written to logs verbatim
_SENSITIVE_KEYS = ("api_key", "access_token", "client_secret", "password", "key=")


def sanitize_message(message: str) -> str:
    lowered = message.lower()
    for key in _SENSITIVE_KEYS:
        index = lowered.find(key)
        if index != -1:
            return message[:index] + f"{key}[redacted]"
    return message


class PlatformErrorHandler:
    """
    Classifies and logs platform errors.

    Responsibilities:
    - Log every error with a platform-tagged prefix at the level its kind
      warrants
    - Keep the most recent record per kind and a count per kind
    - Notify an optional listener (the platform uses it to emit error events)
    - Never raise from processing or cleanup paths
    """

    def __init__(
        self,
        *,
        platform: str,
        listener: Optional[Callable[[ErrorRecord, Optional[BaseException]], None]] = None,
    ):
        if not platform:
            raise RuntimeError("platform is required for error handling")
        self.platform = platform
        self.listener = listener
        self.log = get_logger(f"{platform}.errors")
        self._last: Dict[ErrorKind, ErrorRecord] = {}
        self._counts: Counter = Counter()

    # ------------------------------------------------------------------ #

    def _record(
        self,
        kind: ErrorKind,
        message: str,
        operation: str,
        error: Optional[BaseException],
        context: Optional[Dict[str, Any]],
    ) -> ErrorRecord:
        record = ErrorRecord(
            kind=kind,
            message=sanitize_message(message),
            operation=operation,
            error_name=type(error).__name__ if error is not None else None,
            context=dict(context or {}),
        )
        self._last[kind] = record
        self._counts[kind] += 1

        if self.listener is not None:
            try:
                self.listener(record, error)
            except Exception as e:
                self.log.debug(f"[{self.platform}] error listener failed: {e}")

        return record

    def handle_configuration_error(
        self,
        message: str,
        *,
        error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        self.log.warning(f"[{self.platform}][config] {sanitize_message(message)}")
        return self._record(ErrorKind.CONFIGURATION, message, "configuration", error, context)

    def handle_connection_error(
        self,
        error: BaseException,
        operation: str,
        message: Optional[str] = None,
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        text = message or f"Connection error during {operation}: {error}"
        self.log.error(f"[{self.platform}][{operation}] {sanitize_message(text)}")
        return self._record(ErrorKind.CONNECTION, text, operation, error, context)

    def handle_processing_error(
        self,
        error: BaseException,
        event_type: str,
        payload: Any = None,
        message: Optional[str] = None,
    ) -> ErrorRecord:
        text = message or f"Error processing {event_type}: {error}"
        summary = _summarize_payload(payload)
        self.log.error(
            f"[{self.platform}][{event_type}] {sanitize_message(text)} "
            f"(payload={summary})"
        )
        return self._record(
            ErrorKind.PROCESSING,
            text,
            event_type,
            error,
            {"event_type": event_type, "payload": summary},
        )

    def handle_cleanup_error(
        self,
        error: BaseException,
        resource: str,
        message: Optional[str] = None,
    ) -> ErrorRecord:
        text = message or f"Cleanup of {resource} failed: {error}"
        self.log.warning(f"[{self.platform}][cleanup] {sanitize_message(text)}")
        return self._record(ErrorKind.CLEANUP, text, resource, error, {"resource": resource})

    # ------------------------------------------------------------------ #

    def last_error(self, kind: ErrorKind) -> Optional[ErrorRecord]:
        return self._last.get(kind)

    def counts(self) -> Dict[str, int]:
        return {kind.value: self._counts.get(kind, 0) for kind in ErrorKind}

    def reset(self) -> None:
        self._last.clear()
        self._counts.clear()


def _summarize_payload(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return {"type": type(payload).__name__}
    item = payload.get("item") if isinstance(payload.get("item"), dict) else payload
    return {
        "type": item.get("type"),
        "id": item.get("id"),
        "video_id": payload.get("video_id"),
    }


__all__ = [
    "ErrorKind",
    "ErrorRecord",
    "PlatformErrorHandler",
    "sanitize_message",
]
