"""Log output for processes hosting the announcer.

On the console, announcer messages carry the "DNS-SD: " prefix the TNC uses
for them and are colored by level: errors red, warnings yellow, debug
detail dimmed. JSON output keeps the worker thread so that events from
the announcer's background thread can be told apart from the host's.
"""

import json
import logging
import sys
import traceback
from datetime import datetime

PACKAGE_LOGGER = "tnc_dnssd"
PRINT_PREFIX = "DNS-SD: "

RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[2m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def is_announcer_record(record: logging.LogRecord) -> bool:
    return record.name == PACKAGE_LOGGER or record.name.startswith(PACKAGE_LOGGER + ".")


class ConsoleFormatter(logging.Formatter):
    """One line per record, prefixed for the announcer and colored by level."""

    def __init__(self, color: bool = False):
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        prefix = PRINT_PREFIX if is_announcer_record(record) else f"{record.name}: "
        line = f"{self.formatTime(record, self.datefmt)} {prefix}{record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        if self.color and record.levelno in LEVEL_COLORS:
            line = f"{LEVEL_COLORS[record.levelno]}{line}{RESET}"
        return line


class JSONFormatter(logging.Formatter):
    """JSON lines for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data)


def setup_logging(
    verbose: bool = False,
    log_level: str | None = None,
    json_output: bool = False,
    color: bool | None = None,
) -> None:
    """Configure logging for a host process.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (error, warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
        color: Color console output by level. Defaults to whether stderr
            is a terminal; never applied to JSON output.
    """
    if log_level:
        level = LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        if color is None:
            color = sys.stderr.isatty()
        handler.setFormatter(ConsoleFormatter(color=color))

    logging.basicConfig(level=level, handlers=[handler], force=True)
