"""
Apply log level from the LOGLEVEL setting.

Single log level for all scopes (bridge and broker client). Accepts the
trace/debug/info/warn/error names used by broker SDKs; trace maps to a
dedicated TRACE level below DEBUG.
"""

from __future__ import annotations

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(raw: str | None) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    return _LEVELS.get(str(raw).strip().lower(), logging.INFO)


def apply_log_level(level: int) -> None:
    """Set root logger level so all loggers use this level."""
    root = logging.getLogger()
    root.setLevel(level)


def configure_logging(raw_level: str | None = None) -> int:
    """
    Install the bridge log format and apply the resolved level.
    Returns the numeric level applied.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    level = parse_level(raw_level)
    apply_log_level(level)
    return level
