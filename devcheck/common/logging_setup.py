"""
Logging setup for devcheck.

Modules log through ``logging.getLogger(__name__)``; this module installs the
handlers on the ``devcheck`` logger: a rich console handler or a JSON-lines
handler, plus an optional log file.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from devcheck.common.config import LoggingSettings

ROOT_LOGGER = "devcheck"

# Attributes present on every LogRecord; anything else came from ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0]:
            log_dict["error.type"] = record.exc_info[0].__name__
            log_dict["error.message"] = str(record.exc_info[1])
            log_dict["error.stack_trace"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_dict[key] = value

        return json.dumps(log_dict, default=str)


def configure_logging(
    settings: LoggingSettings | None = None,
    console: Console | None = None,
) -> logging.Logger:
    """
    Install handlers on the devcheck logger.

    Calling this again replaces previously installed handlers.

    Parameters
    ----------
    settings : LoggingSettings, optional
        Level, format and optional file (default: LoggingSettings())
    console : Console, optional
        Rich console for the console format (default: stderr console)

    Returns
    -------
    logging.Logger
        The configured ``devcheck`` logger

    Examples
    --------
    >>> logger = configure_logging(LoggingSettings(log_level="DEBUG"))
    >>> logger.level == logging.DEBUG
    True
    """
    settings = settings or LoggingSettings()
    level = getattr(logging, settings.log_level)

    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if settings.log_format == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    root.addHandler(handler)

    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        if settings.log_format == "json":
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        file_handler.setLevel(level)
        root.addHandler(file_handler)

    root.setLevel(level)
    root.propagate = False
    return root
