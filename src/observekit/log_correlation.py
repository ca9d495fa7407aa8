"""Log correlation: trace identity on stdlib log records and JSON log lines."""

from __future__ import annotations

import logging
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from observekit.context import current_observation

__all__ = ["JSON_LOG_FORMAT", "TraceContextFilter", "TraceJsonFormatter"]

JSON_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_FIELDS = ("trace_id", "span_id", "observation")
_UNSET = "-"


def _live_identity() -> tuple[str | None, str | None, str | None]:
    observation = current_observation()
    if observation is None:
        return None, None, None
    context = observation.context
    return context.trace_id, context.span_id, context.technical_name


class TraceContextFilter(logging.Filter):
    """Stamps ``trace_id``, ``span_id`` and ``observation`` onto log records.

    Attach it to a handler and reference the fields from the formatter, e.g.
    ``%(levelname)s [%(trace_id)s,%(span_id)s] %(message)s``. Values passed
    explicitly through ``extra`` are left untouched. Outside of any
    observation scope the fields are set to ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for attr, value in zip(_FIELDS, _live_identity()):
            if not hasattr(record, attr):
                setattr(record, attr, _UNSET if value is None else value)
        return True


class TraceJsonFormatter(JsonFormatter):
    """JSON formatter whose every line carries the trace identity.

    Record attributes (from TraceContextFilter or ``extra``) win; otherwise
    the current observation is used. Outside an observation the fields
    are null.
    """

    def add_fields(self, log_data: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_data, record, message_dict)
        for attr, live in zip(_FIELDS, _live_identity()):
            stamped = getattr(record, attr, None)
            log_data[attr] = live if stamped in (None, _UNSET) else stamped
