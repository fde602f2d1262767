from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("shared.config.youtube")

_CONFIG_PATH = Path(__file__).parent / "youtube.json"

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


@dataclass
class YouTubeConfig:
    enabled: bool = False
    username: Optional[str] = None
    api_key: Optional[str] = None
    retry_attempts: int = 3
    max_streams: int = 5
    stream_polling_interval: int = 60
    full_check_interval: int = 300
    data_logging_enabled: bool = False
    data_logging_path: str = "./logs"
    channel_cache_path: Optional[str] = None
    daily_units_max: int = 10000
    daily_units_buffer: int = 500

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data.get("api_key"):
            data["api_key"] = "***"
        return data


# (minimum) per integer field
_INT_MINIMUMS: Dict[str, int] = {
    "retry_attempts": 1,
    "max_streams": 0,
    "stream_polling_interval": 1,
    "full_check_interval": 1,
    "daily_units_max": 0,
    "daily_units_buffer": 0,
}

_BOOL_FIELDS = ("enabled", "data_logging_enabled")


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            try:
                parsed = float(value.strip())
            except ValueError:
                return None
            return int(parsed) if parsed.is_integer() else None
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_youtube_config(
    raw: Optional[Dict[str, Any]],
) -> Tuple[YouTubeConfig, List[str]]:
    """
    Build a YouTubeConfig from a raw mapping.

    Never raises: invalid values are replaced by their defaults and reported
    in the returned issue list. Unknown keys are ignored.
    """
    config = YouTubeConfig()
    issues: List[str] = []

    if raw is None:
        return config, issues
    if not isinstance(raw, dict):
        issues.append("youtube config must be an object; using defaults")
        return config, issues

    for name in _BOOL_FIELDS:
        if name not in raw:
            continue
        value = _coerce_bool(raw[name])
        if value is None:
            issues.append(f"{name} must be boolean; using default {getattr(config, name)}")
        else:
            setattr(config, name, value)

    for name, minimum in _INT_MINIMUMS.items():
        if name not in raw:
            continue
        value = _coerce_int(raw[name])
        default = getattr(config, name)
        if value is None:
            issues.append(f"{name} must be an integer; using default {default}")
        elif value < minimum:
            issues.append(f"{name} must be >= {minimum} (got {value}); using default {default}")
        else:
            setattr(config, name, value)

    config.username = _optional_str(raw.get("username"))
    if config.username:
        config.username = config.username.lstrip("@") or None
    config.api_key = _optional_str(raw.get("api_key"))
    config.channel_cache_path = _optional_str(raw.get("channel_cache_path"))

    path = _optional_str(raw.get("data_logging_path"))
    if "data_logging_path" in raw and path is None:
        issues.append(f"data_logging_path must be a non-empty string; using default {config.data_logging_path}")
    elif path is not None:
        config.data_logging_path = path

    if config.daily_units_buffer > config.daily_units_max:
        issues.append("daily_units_buffer exceeds daily_units_max; buffer disabled")
        config.daily_units_buffer = 0

    if config.enabled and not config.username:
        issues.append("username is required when the platform is enabled")

    return config, issues


# settings the monitoring loop cannot run without
LOOP_SETTINGS = ("retry_attempts", "stream_polling_interval", "max_streams", "full_check_interval")


def repair_loop_settings(config: YouTubeConfig) -> List[str]:
    """
    Reset loop settings that are not integers at or above their minimum.

    Mutates `config` in place and returns one entry per adjusted key.
    """
    defaults = YouTubeConfig()
    adjusted: List[str] = []
    for name in LOOP_SETTINGS:
        current = getattr(config, name)
        value = _coerce_int(current)
        if value is not None and value >= _INT_MINIMUMS[name]:
            setattr(config, name, value)
            continue
        default = getattr(defaults, name)
        setattr(config, name, default)
        adjusted.append(f"{name}={current!r} -> {default}")
    return adjusted


def load_youtube_raw(path: Path = _CONFIG_PATH) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"youtube.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.warning(f"Failed to load youtube.json ({e}); using defaults")
        return {}

    if not isinstance(data, dict):
        log.warning("youtube.json root is not an object; using defaults")
        return {}
    return data


__all__ = [
    "LOOP_SETTINGS",
    "YouTubeConfig",
    "load_youtube_raw",
    "normalize_youtube_config",
    "repair_loop_settings",
]
