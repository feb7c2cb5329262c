"""
Logging configuration — one setup call for the nixmaint CLI.

Every module logs through ``logging.getLogger(__name__)``; this module
decides where those records go.

Console (stderr) levels resolve in precedence order:
    --debug / --verbose / --quiet  >  NIXMAINT_LOG_LEVEL  >  WARNING

An optional log file (NIXMAINT_LOG_FILE, level NIXMAINT_LOG_FILE_LEVEL)
receives plain ``[timestamp] [LEVEL] message`` lines, the same shape the
old /var/log/nixos-*.log files had, so existing log greps keep working.
"""

from __future__ import annotations

import logging
import sys

import click

# ── Format strings ──────────────────────────────────────────────

_FMT_CONSOLE = "%(message)s"
_FMT_CONSOLE_DEBUG = "%(asctime)s %(name)s:%(lineno)d %(message)s"
_DATEFMT_CONSOLE = "%H:%M:%S"

_FMT_FILE = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_LEVEL_COLORS = {
    logging.DEBUG: "blue",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}

_LEVEL_TAGS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


class LevelTagFormatter(logging.Formatter):
    """Prefix console lines with a colored ``[LEVEL]`` tag."""

    def __init__(self, fmt: str, datefmt: str | None = None, color: bool = True):
        super().__init__(fmt, datefmt=datefmt)
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = f"[{_LEVEL_TAGS.get(record.levelno, record.levelname)}]"
        if self._color:
            tag = click.style(tag, fg=_LEVEL_COLORS.get(record.levelno))
        return f"{tag} {message}"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    color: bool | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path of a log file to append to.
        log_file_level: Level for the log file; defaults to ``level``.
        color: Force colored tags on or off (default: when stderr is a tty).
    """
    numeric_level = parse_level(level)
    if color is None:
        color = sys.stderr.isatty()

    fmt = _FMT_CONSOLE_DEBUG if numeric_level <= logging.DEBUG else _FMT_CONSOLE
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(LevelTagFormatter(fmt, datefmt=_DATEFMT_CONSOLE, color=color))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    file_error: OSError | None = None
    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else numeric_level
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            file_error = e
        else:
            effective_level = min(effective_level, file_level)
            fh.setLevel(file_level)
            fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
            root.addHandler(fh)

    root.setLevel(effective_level)
    logging.raiseExceptions = False

    if file_error is not None:
        logging.getLogger(__name__).warning(
            "Cannot open log file %s (%s); logging to console only", log_file, file_error
        )


def parse_level(level: str | None) -> int:
    """Convert a level name to its numeric constant (WARNING if unknown)."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
