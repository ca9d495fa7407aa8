"""LoggingHandler for structured observation logging."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from observekit.handlers.base import ObservationHandler

if TYPE_CHECKING:
    from observekit.observation import ObservationContext

__all__ = ["LoggingHandler"]


class LoggingHandler(ObservationHandler):
    """Logs observation start, completion (with duration) and errors.

    Every record carries the observation's trace and span ids in ``extra``
    so it correlates with the exported span.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        log_start: bool = True,
        log_stop: bool = True,
        log_errors: bool = True,
    ) -> None:
        self._logger = logger or logging.getLogger("observekit.observations")
        self._log_start = log_start
        self._log_stop = log_stop
        self._log_errors = log_errors

    @staticmethod
    def _extra(context: ObservationContext, **fields: Any) -> dict[str, Any]:
        return {
            "trace_id": context.trace_id,
            "span_id": context.span_id,
            "observation": context.technical_name,
            "contextual_name": context.contextual_name,
            "tags": {**context.low_cardinality_tags, **context.high_cardinality_tags},
            **fields,
        }

    def on_start(self, context: ObservationContext) -> None:
        if self._log_start:
            self._logger.debug(
                f"[{context.trace_id}] START {context.display_name}",
                extra=self._extra(context),
            )

    def on_stop(self, context: ObservationContext) -> None:
        if not self._log_stop:
            return
        duration_ms = (context.duration or 0.0) * 1000
        outcome = "ERROR" if context.error is not None else "END"
        self._logger.info(
            f"[{context.trace_id}] {outcome} {context.display_name} ({duration_ms:.2f}ms)",
            extra=self._extra(context, duration_ms=duration_ms),
        )

    def on_error(self, context: ObservationContext) -> None:
        error = context.error
        if not self._log_errors or error is None:
            return
        exc = error.exception
        self._logger.error(
            f"[{context.trace_id}] ERROR {context.display_name}: {error.message}",
            extra=self._extra(context, error=error.message, error_type=error.type),
            exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
        )
