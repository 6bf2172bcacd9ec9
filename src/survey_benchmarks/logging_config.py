"""Utilities to configure consistent logging across the engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

# Driver chatter drowns out per-survey warnings at INFO.
NOISY_LOGGERS = ("pymongo", "pymongo.serverSelection", "pymongo.connection")


def configure_logging(
    log_path: Path | None = None,
    level: int = logging.INFO,
    stream: TextIO | None = None,
) -> None:
    """Configure root logging handlers and formatting.

    Args:
        log_path: Optional path to a file where logs will be written.
        level: Logging level for the engine's own loggers (defaults to INFO).
        stream: Console stream (stdout by default); the CLI uses stderr so stdout stays parseable.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=handlers,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
