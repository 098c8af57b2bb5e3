"""
Logging setup for the converge CLI.

main.py calls ``setup_logging`` once, before any command runs.  Modules
log through ``logging.getLogger(__name__)`` and inherit whatever is
configured here; importing converge as a library configures nothing.

Console level: ``-v``/``--debug``/``-q`` flag, then CONVERGE_LOG_LEVEL,
then WARNING.  A log file is opened when CONVERGE_LOG_FILE (or the
``log_file`` argument) names one; its level comes from
CONVERGE_LOG_FILE_LEVEL and otherwise follows the console.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "CONVERGE_LOG_LEVEL"
ENV_FILE = "CONVERGE_LOG_FILE"
ENV_FILE_LEVEL = "CONVERGE_LOG_FILE_LEVEL"

_DETAILED = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"

# Console formats, most detailed first; the first entry whose threshold
# is >= the console level is used.  Targets compile on worker threads,
# so the detailed format names the thread.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, _DETAILED, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
)
_PLAIN = ("%(message)s", None)

_FILE_FORMAT = (_DETAILED, "%Y-%m-%d %H:%M:%S")

# Stdlib loggers that chatter below WARNING while scripts run
_NOISY_LOGGERS = ("asyncio", "concurrent.futures")


def resolve_level(flag_level: str | None) -> str:
    """The console level: CLI flag, else env var, else WARNING."""
    return flag_level or os.environ.get(ENV_LEVEL) or "WARNING"


def _level_number(name: str | None) -> int:
    value = getattr(logging, name.upper(), None) if name else None
    return value if isinstance(value, int) else logging.WARNING


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next(
        ((f, d) for threshold, f, d in _CONSOLE_FORMATS if level <= threshold),
        _PLAIN,
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
    return handler


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install converge's handlers on the root logger.

    Args:
        level: Console level name from the CLI; None defers to the env var.
        log_file: Log file path; None defers to CONVERGE_LOG_FILE.
        log_file_level: File level name; None defers to
            CONVERGE_LOG_FILE_LEVEL, then to the console level.
        quiet_third_party: Hold the stdlib's noisy loggers at WARNING
            unless the console is at DEBUG.
    """
    console_level = _level_number(resolve_level(level))
    handlers = [_console_handler(console_level)]

    path = log_file or os.environ.get(ENV_FILE)
    if path:
        file_level_name = log_file_level or os.environ.get(ENV_FILE_LEVEL)
        file_level = _level_number(file_level_name) if file_level_name else console_level
        handlers.append(_file_handler(path, file_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # root passes everything any handler wants; handlers filter further
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False
