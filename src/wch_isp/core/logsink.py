"""
Logging adapters.

CallbackLogHandler forwards records to a front-end log sink with the
signature (message, timestamp, level_name, level_short_code), e.g. a GUI log
pane. Short codes are fixed-width for column alignment.
"""

import logging
from datetime import datetime
from typing import Callable

LogSink = Callable[[str, datetime, str, str], None]

LEVEL_NAMES = {
    logging.DEBUG: ("Debug", "DEBUG"),
    logging.INFO: ("Info", " INFO"),
    logging.WARNING: ("Warning", " WARN"),
    logging.ERROR: ("Error", "ERROR"),
    logging.CRITICAL: ("Error", "ERROR"),
}


def level_names(levelno: int):
    """Map a logging level to (name, short code), rounding down to a known level."""
    for level in sorted(LEVEL_NAMES, reverse=True):
        if levelno >= level:
            return LEVEL_NAMES[level]
    return LEVEL_NAMES[logging.DEBUG]


class CallbackLogHandler(logging.Handler):
    """Send each record's message to a callback."""

    def __init__(self, sink: LogSink, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            name, short = level_names(record.levelno)
            self.sink(record.getMessage(), datetime.fromtimestamp(record.created), name, short)
        except Exception:
            self.handleError(record)


class ListLogHandler(logging.Handler):
    """Collect the messages of WARNING records."""

    def __init__(self) -> None:
        super().__init__(logging.WARNING)
        self.warnings = []

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno == logging.WARNING:
            self.warnings.append(record.getMessage())
