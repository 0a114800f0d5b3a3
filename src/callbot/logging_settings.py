"""Helpers for parsing the simple logging settings file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

_LEVEL_MAP: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "off": None,
}

_LEVEL_KEYS = ("terminal", "conversations")
_DEFAULT_LEVEL = logging.INFO
_DEFAULT_RETENTION_HOURS = 48


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = _DEFAULT_LEVEL
    conversations_level: int | None = _DEFAULT_LEVEL
    retention_hours: int = _DEFAULT_RETENTION_HOURS


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Parse ``key = value`` lines; unknown keys and bad values fall back to defaults."""

    levels: dict[str, int | None] = {key: _DEFAULT_LEVEL for key in _LEVEL_KEYS}
    retention_hours = _DEFAULT_RETENTION_HOURS

    if not path.exists():
        return LoggingSettings()

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip().lower() for part in line.split("=", 1))
        if key == "retention_hours":
            try:
                retention_hours = max(0, int(value))
            except ValueError:
                retention_hours = _DEFAULT_RETENTION_HOURS
        elif key in levels:
            levels[key] = _LEVEL_MAP.get(value, _DEFAULT_LEVEL)

    return LoggingSettings(
        terminal_level=levels["terminal"],
        conversations_level=levels["conversations"],
        retention_hours=retention_hours,
    )


__all__ = ["LoggingSettings", "parse_logging_settings"]
