"""Logging configuration for the application."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def parse_level(value: Optional[str], default: int = logging.WARNING) -> int:
    if not value:
        return default
    return _LEVELS.get(str(value).upper(), default)


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
) -> Optional[Path]:
    """
    Console handler on stderr (so streamed replies on stdout stay clean), plus
    a rotating file handler when `log_file` is given. CHORUS_LOG_LEVEL
    overrides the configured level.
    """
    level_value = parse_level(os.getenv("CHORUS_LOG_LEVEL") or level)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    path: Optional[Path] = None
    if log_file:
        path = Path(log_file).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=2 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            print(f"[logging] cannot open {path}: {e}", file=sys.stderr)
            path = None

    logging.basicConfig(level=level_value, handlers=handlers, force=True)
    logging.captureWarnings(True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level_value, logging.WARNING))

    logging.getLogger(__name__).debug("Logging initialized (file=%s)", path)
    return path
