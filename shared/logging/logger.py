import logging
import os
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(os.getenv("MULTISTREAM_LOG_DIR", "logs"))

_LOGGERS = {}

_FALSE_VALUES = {"0", "false", "no", "off"}


def _file_logging_enabled() -> bool:
    raw = os.getenv("MULTISTREAM_LOG_TO_FILE", "1")
    return raw.strip().lower() not in _FALSE_VALUES


def get_logger(
    name: str,
    *,
    runtime: str = "multistream",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. youtube.platform, youtube.multistream)
    - runtime: log file prefix

    File output goes to LOG_DIR (MULTISTREAM_LOG_DIR) and can be switched
    off with MULTISTREAM_LOG_TO_FILE=0.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    if _file_logging_enabled():
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        logfile = LOG_DIR / f"{runtime}-{timestamp}.log"

        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
