"""
Logging configuration — one setup call per process.

Called by the CLI entry points before any command runs. Every module
does ``logger = logging.getLogger(__name__)`` and inherits this.

Console level precedence:
    --log-level / -v flags  >  AGENTVM_LOG_LEVEL  >  WARNING

A log file is written only when AGENTVM_LOG_FILE is set; its level is
AGENTVM_LOG_FILE_LEVEL (defaults to the console level). Step output
that an adapter captured never goes to the log, only to step results.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

# ── Formats ─────────────────────────────────────────────────────

# WARNING and above: the message is all the operator needs
_FMT_CONSOLE = "%(message)s"

# INFO: step progress with time and origin
_FMT_PROGRESS = "%(asctime)s [%(name)s] %(message)s"

# DEBUG and file output: full location
_FMT_DETAIL = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"

_DATEFMT_SHORT = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Libraries that are chatty below WARNING (urllib3 via probes, werkzeug in tests)
_NOISY_LOGGERS = ("urllib3", "werkzeug")


def setup_logging(
    level: str | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Configure the root logger for the process.

    Args:
        level: Level name from the command line, if any.
        env: Environment to read AGENTVM_LOG_* from (defaults to os.environ).

    Returns:
        The numeric console level that was applied.
    """
    env = os.environ if env is None else env
    console_level = _parse_level(level or env.get("AGENTVM_LOG_LEVEL"))

    if console_level <= logging.DEBUG:
        console_fmt = logging.Formatter(_FMT_DETAIL, datefmt=_DATEFMT_SHORT)
    elif console_level <= logging.INFO:
        console_fmt = logging.Formatter(_FMT_PROGRESS, datefmt=_DATEFMT_SHORT)
    else:
        console_fmt = logging.Formatter(_FMT_CONSOLE)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(console_fmt)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    # ── Optional file sink ──────────────────────────────────────
    log_file = env.get("AGENTVM_LOG_FILE")
    if log_file:
        file_level_name = env.get("AGENTVM_LOG_FILE_LEVEL")
        file_level = _parse_level(file_level_name) if file_level_name else console_level
        root_level = min(root_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DETAIL, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(root_level)

    if console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False
    return console_level


def _parse_level(level: str | None) -> int:
    """Convert a level name to its numeric value, WARNING if unknown."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
