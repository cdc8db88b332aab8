"""
Logging setup for pvesync.

Console logging in text or JSON form, with credential material masked:
- PVESYNC_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
- PVESYNC_LOG_FORMAT: text|json (default: text)
"""
from __future__ import annotations

import logging
import os
from typing import Optional, Set

from pythonjsonlogger import jsonlogger

MASK = "***"


class SecretRedactionFilter(logging.Filter):
    """Replaces registered secrets (key paths, passwords) in log messages."""

    def __init__(self):
        super().__init__()
        self.secrets: Set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            message = record.getMessage()
            masked = message
            for secret in self.secrets:
                masked = masked.replace(secret, MASK)
            if masked != message:
                record.msg = masked
                record.args = None
        return True


_redaction = SecretRedactionFilter()


def redact(*secrets: Optional[str]) -> None:
    """Register values that must never appear in log output."""
    _redaction.secrets.update(s for s in secrets if s)


def _level_from_env() -> int:
    name = os.getenv("PVESYNC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def _build_formatter() -> logging.Formatter:
    if os.getenv("PVESYNC_LOG_FORMAT", "text").lower() == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def setup_logging(
    force: bool = False,
    *,
    level: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Attach a console handler to ``logger`` (the root logger by default).

    Does nothing when the logger already has handlers, unless ``force``.
    An explicit ``level`` wins over PVESYNC_LOG_LEVEL.
    """
    target = logger or logging.getLogger()
    if target.handlers and not force:
        return

    for existing in list(target.handlers):
        target.removeHandler(existing)

    target.setLevel(level if level is not None else _level_from_env())

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter())
    handler.addFilter(_redaction)
    target.addHandler(handler)
