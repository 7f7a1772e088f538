"""Logger construction for the ClickHouse output.

Each output builds its own :class:`logging.Logger` writing to the stream the
host hands over. The logger is not registered with :mod:`logging`'s global
manager, so configuring it never touches the process-wide logging setup.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

from .constants import EXTENSION_NAME

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _is_terminal(stream: IO[str]) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:  # closed stream
        return False


def new_logger(
    level: int = logging.INFO,
    stream: IO[str] | None = None,
    name: str = EXTENSION_NAME,
) -> logging.Logger:
    """Create a standalone logger for one output instance."""
    stream = stream if stream is not None else sys.stdout

    logger = logging.Logger(name, level=level)
    handler = logging.StreamHandler(stream)
    if _is_terminal(stream):
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    logger.debug("Logger initialized (level=%s)", logging.getLevelName(level))
    return logger


def flush_logger(logger: logging.Logger) -> None:
    """Flush every handler of *logger*, raising the first failure."""
    for handler in logger.handlers:
        handler.flush()
