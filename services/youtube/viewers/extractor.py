"""
Concurrent viewer extraction from video info.

Strategies are tried in order; the first that yields a non-negative integer
wins:

- view_text:     primary_info.view_count.view_count.text ("1,234 watching now")
- video_details: video_details.viewer_count / video_details.concurrent_viewers
- basic_info:    basic_info.view_count, only while the video is live
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from services.youtube.connections.liveness import read_field

DEFAULT_STRATEGIES: Tuple[str, ...] = ("view_text", "video_details", "basic_info")

WATCHING_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("watching_now", re.compile(r"([0-9,]+)\s*watching\s*now", re.IGNORECASE)),
    ("watching", re.compile(r"([0-9,]+)\s*watching", re.IGNORECASE)),
    ("currently_watching", re.compile(r"([0-9,]+)\s*currently\s*watching", re.IGNORECASE)),
    ("viewers_watching", re.compile(r"([0-9,]+)\s*viewers?\s*watching", re.IGNORECASE)),
    ("people_watching", re.compile(r"([0-9,]+)\s*people\s*watching", re.IGNORECASE)),
)


@dataclass
class ExtractionResult:
    success: bool = False
    count: int = 0
    strategy: Optional[str] = None
    pattern: Optional[str] = None
    strategies_attempted: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _to_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None
    return count if count >= 0 else None


def parse_watching_text(text: Any) -> Tuple[Optional[int], Optional[str]]:
    if not isinstance(text, str):
        return None, None
    for name, pattern in WATCHING_PATTERNS:
        match = pattern.search(text)
        if match:
            count = _to_count(match.group(1))
            if count is not None:
                return count, name
    return None, None


def _from_view_text(info: Any) -> Tuple[Optional[int], Optional[str]]:
    text = read_field(info, "primary_info", "view_count", "view_count", "text")
    return parse_watching_text(text)


def _from_video_details(info: Any) -> Tuple[Optional[int], Optional[str]]:
    details = read_field(info, "video_details")
    if details is None:
        return None, None
    for name in ("viewer_count", "concurrent_viewers"):
        count = _to_count(read_field(details, name))
        if count is not None:
            return count, name
    return None, None


def _from_basic_info(info: Any) -> Tuple[Optional[int], Optional[str]]:
    if read_field(info, "basic_info", "is_live") is not True:
        return None, None
    count = _to_count(read_field(info, "basic_info", "view_count"))
    return (count, "view_count") if count is not None else (None, None)


_STRATEGIES = {
    "view_text": _from_view_text,
    "video_details": _from_video_details,
    "basic_info": _from_basic_info,
}


def extract_concurrent_viewers(
    info: Any,
    strategies: Sequence[str] = DEFAULT_STRATEGIES,
) -> ExtractionResult:
    result = ExtractionResult()
    if info is None:
        result.error = "No video info provided"
        return result

    for name in strategies:
        strategy = _STRATEGIES.get(name)
        if strategy is None:
            continue
        result.strategies_attempted.append(name)
        count, pattern = strategy(info)
        if count is not None:
            result.success = True
            result.count = count
            result.strategy = name
            result.pattern = pattern
            return result

    result.error = "Extraction failed"
    return result


__all__ = [
    "DEFAULT_STRATEGIES",
    "ExtractionResult",
    "extract_concurrent_viewers",
    "parse_watching_text",
]
