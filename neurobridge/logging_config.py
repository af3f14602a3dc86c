"""Logging configuration for the NeuroBridge access core.

Environment variables:
    NB_LOG_FORMAT  -- ``json`` for one JSON object per line, ``text`` for human-readable (default).
    NB_LOG_LEVEL   -- Python log level name (default: ``INFO``).

Decision logs carry ``user_id``, ``organization_id``, ``action``, ``outcome``,
``reason`` and ``cause`` as record extras.  In JSON mode they are top-level
keys and exception tracebacks appear as a ``traceback`` list of lines; in
text mode the extras are omitted.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from pythonjsonlogger.json import JsonFormatter

DECISION_FIELDS = (
    "user_id",
    "organization_id",
    "action",
    "outcome",
    "reason",
    "cause",
)

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _is_json_mode() -> bool:
    return os.environ.get("NB_LOG_FORMAT", "text").lower() == "json"


def _get_log_level() -> int:
    """Numeric level named by NB_LOG_LEVEL; unknown names mean INFO."""
    numeric = getattr(logging, os.environ.get("NB_LOG_LEVEL", "INFO").upper(), None)
    return numeric if isinstance(numeric, int) else logging.INFO


class StructuredJsonFormatter(JsonFormatter):
    """``JsonFormatter`` tuned for authorization decision logs.

    Record extras are emitted as top-level keys by ``JsonFormatter`` itself;
    this subclass renames the exception text to ``traceback``, splits it into
    lines, and drops decision fields that were logged as None (an allow has
    no reason code).  The LogRecord is never modified, so other handlers on
    the same logger still see ``exc_info``.
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=_JSON_FORMAT,
            datefmt="%Y-%m-%dT%H:%M:%S",
            rename_fields={"exc_info": "traceback"},
            exc_info_as_array=True,
        )

    def process_log_record(self, log_data: dict[str, Any]) -> dict[str, Any]:
        for key in DECISION_FIELDS:
            if key in log_data and log_data[key] is None:
                del log_data[key]
        return log_data


def setup_logging() -> None:
    """Configure the root logger according to NB_LOG_FORMAT and NB_LOG_LEVEL.

    Replaces any handlers already on the root logger with a single stream
    handler.
    """
    level = _get_log_level()
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)
    if _is_json_mode():
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    root.addHandler(handler)
