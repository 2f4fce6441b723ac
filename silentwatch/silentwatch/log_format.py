"""Log formatting and handler setup for the ``silentwatch`` logger tree.

With ``structured_logging`` enabled each record is emitted as a single-line
JSON object so log aggregators can index fields without regex parsing::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "DEBUG",
        "logger": "silentwatch.correlation.engine",
        "message": "click on <BUTTON> superseded",
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from silentwatch.config import WatchSettings

_ROOT_LOGGER = "silentwatch"
_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: WatchSettings) -> logging.Handler:
    """Attach one handler to the ``silentwatch`` logger.

    Internal errors that public entry points swallow are logged at DEBUG,
    so they only become visible when ``settings.debug`` is set.  Calling
    again replaces the previously installed handler.
    """
    root = logging.getLogger(_ROOT_LOGGER)
    for existing in list(root.handlers):
        if getattr(existing, "_silentwatch_handler", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if settings.structured_logging else logging.Formatter(_TEXT_FORMAT))
    handler._silentwatch_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.debug else logging.WARNING)
    return handler
