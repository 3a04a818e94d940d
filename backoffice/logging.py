"""Logging setup for processes embedding the job engine."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Per-request chatter from the report download client.
HTTP_CLIENT_LOGGERS = ("httpx", "httpcore")


def resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: str | int = "INFO",
    log_file: Optional[str] = None,
    *,
    quiet_loggers: Iterable[str] = HTTP_CLIENT_LOGGERS,
) -> None:
    """Install stdout (and optionally file) handlers on the root logger.

    The HTTP client loggers stay at WARNING unless the engine itself runs at
    DEBUG.
    """
    root_level = resolve_level(level)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=root_level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    client_level = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(client_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
