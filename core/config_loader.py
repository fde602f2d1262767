"""
Configuration loader for the YouTube chat runtime.

Reads shared/config/youtube.json, validates it against its JSON schema, and
applies environment overrides. Failures are treated as warnings so the
runtime can continue booting with best-effort defaults.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator

from shared.config.youtube import YouTubeConfig, load_youtube_raw, normalize_youtube_config
from shared.logging.logger import get_logger

log = get_logger("core.config_loader")


class ConfigLoader:
    """
    Loads and validates the YouTube platform configuration.

    Files:
      - shared/config/youtube.json
      - shared/config/youtube.schema.json

    Environment overrides (after .env is loaded):
      - YOUTUBE_API_KEY
      - YOUTUBE_USERNAME
    """

    CONFIG_PATH = Path("shared/config/youtube.json")
    SCHEMA_PATH = Path("shared/config/youtube.schema.json")

    ENV_OVERRIDES = {
        "YOUTUBE_API_KEY": "api_key",
        "YOUTUBE_USERNAME": "username",
    }

    def __init__(
        self,
        *,
        config_path: Optional[Path] = None,
        schema_path: Optional[Path] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.config_path = Path(config_path) if config_path else self.CONFIG_PATH
        self.schema_path = Path(schema_path) if schema_path else self.SCHEMA_PATH
        self.environ = environ if environ is not None else os.environ

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, payload: Dict[str, Any]) -> List[str]:
        if not self.schema_path.exists():
            log.debug(f"Schema for youtube config not found at {self.schema_path}; skipping")
            return []

        try:
            schema = json.loads(self.schema_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning(f"Failed to load youtube schema ({e}); skipping validation")
            return []

        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))

        warnings: List[str] = []
        for err in errors:
            loc = "/".join(str(p) for p in err.path) or "<root>"
            message = f"youtube config validation warning at '{loc}': {err.message}"
            log.warning(message)
            warnings.append(message)
        return warnings

    def _apply_env_overrides(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        updated = dict(raw)
        for env_name, key in self.ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value:
                updated[key] = value
                log.debug(f"Applied {env_name} override")
        return updated

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_raw(self) -> Dict[str, Any]:
        raw = load_youtube_raw(self.config_path)
        self._validate(raw)
        return self._apply_env_overrides(raw)

    def load_youtube_config(self) -> Tuple[YouTubeConfig, List[str]]:
        config, issues = normalize_youtube_config(self.load_raw())
        for issue in issues:
            log.warning(f"[config] {issue}")
        log.info(
            f"YouTube config loaded (enabled={config.enabled}, "
            f"username={config.username}, max_streams={config.max_streams})"
        )
        return config, issues


__all__ = ["ConfigLoader"]
