from __future__ import annotations

import logging
import os
import sys
from typing import Dict, Optional, TextIO


SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
NC = "\033[0m"

_LABELS: Dict[int, str] = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUCCESS: "SUCCESS",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}

_COLORS: Dict[int, str] = {
    logging.INFO: BLUE,
    SUCCESS: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED,
}


def _supports_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class ColorFormatter(logging.Formatter):
    """Render records as ``[LEVEL] message``, colorizing the tag on a TTY."""

    def __init__(self, *, color: bool = False) -> None:
        super().__init__("%(message)s")
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        label = _LABELS.get(record.levelno, record.levelname)
        if self._color and record.levelno in _COLORS:
            return f"{_COLORS[record.levelno]}[{label}]{NC} {message}"
        return f"[{label}] {message}"


def setup_logging(*, verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Handler:
    """Install a single colored stream handler on the root logger.

    Safe to call more than once; an earlier handler installed here is replaced.
    """
    out = stream or sys.stdout
    handler = logging.StreamHandler(out)
    handler.setFormatter(ColorFormatter(color=_supports_color(out)))
    handler.set_name("pipeline-console")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "pipeline-console":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    # boto's debug chatter is never useful in status output
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    # project-config.sh holds shell statements python-dotenv reports as unparsable
    logging.getLogger("dotenv").setLevel(logging.ERROR)
    return handler


def success(logger: logging.Logger, msg: str, *args: object) -> None:
    logger.log(SUCCESS, msg, *args)


def banner(logger: logging.Logger, title: str) -> None:
    logger.info("=" * 40)
    logger.info(" %s", title)
    logger.info("=" * 40)


__all__ = [
    "SUCCESS",
    "ColorFormatter",
    "setup_logging",
    "success",
    "banner",
]
