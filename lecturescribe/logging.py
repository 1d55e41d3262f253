"""Logging helpers for LectureScribe."""

from __future__ import annotations

import logging
from typing import Optional, Union

_LOGGER_CONFIGURED = False

# Libraries that log every HTTP request at INFO; kept at WARNING unless debugging.
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai")


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure root logging once for the application.

    ``level`` defaults to the ``log_level`` setting so ``LECTURESCRIBE_LOG_LEVEL``
    controls verbosity without touching code.
    """

    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED:
        return

    if level is None:
        from .config import get_settings

        level = get_settings().log_level
    numeric = _coerce_level(level)

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    quiet = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)
    _LOGGER_CONFIGURED = True


def set_level(level: Union[int, str]) -> None:
    """Change the level of the project loggers after configuration."""

    numeric = _coerce_level(level)
    logging.getLogger().setLevel(numeric)
    logging.getLogger("lecturescribe").setLevel(numeric)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Convenience helper that ensures logging is configured."""

    configure_logging()
    return logging.getLogger(name or "lecturescribe")


__all__ = ["configure_logging", "get_logger", "set_level"]
