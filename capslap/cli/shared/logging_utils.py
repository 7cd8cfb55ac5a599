"""Loguru helpers for consistent logging in CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from capslap.config.loader import get_data_dir

_SINK_IDS: dict[str, int] = {}

DEBUG_FORMAT = "<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | <level>{message}</level>"


def ensure_rotating_log_file(name: str, level: str = "INFO") -> Path:
    """Ensure a rotating log sink for the given command name."""
    log_path = get_data_dir() / "logs" / f"{name}.log"
    if name in _SINK_IDS:
        return log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    _SINK_IDS[name] = sink_id
    return log_path


def configure_cli_logging(command: str, *, logs: bool, debug: bool, level: str = "INFO", to_file: bool = False) -> None:
    """Enable capslap logs for --logs/--debug runs, silence them otherwise."""
    if debug:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG", format=DEBUG_FORMAT)
        logger.enable("capslap")
        if to_file:
            ensure_rotating_log_file(command, level="DEBUG")
    elif logs:
        logger.remove()
        logger.add(sys.stderr, level=level, format=DEBUG_FORMAT)
        logger.enable("capslap")
        if to_file:
            ensure_rotating_log_file(command, level=level)
    else:
        logger.disable("capslap")
