"""ObservationRegistry -- fan-out point from observations to handlers."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Mapping

from observekit.context import current_observation
from observekit.errors import InvalidInputError

if TYPE_CHECKING:
    from observekit.handlers.base import ObservationHandler
    from observekit.observation import Observation, ObservationContext

__all__ = ["CommonTagsFilter", "ObservationRegistry"]

logger = logging.getLogger(__name__)

ObservationFilter = Callable[["ObservationContext"], Any]


class CommonTagsFilter:
    """Adds fixed low-cardinality tags to every observation without overriding its own."""

    def __init__(self, tags: Mapping[str, Any]) -> None:
        self._tags = {str(k): str(v) for k, v in tags.items()}

    def __call__(self, context: ObservationContext) -> None:
        for key, value in self._tags.items():
            context.low_cardinality_tags.setdefault(key, value)


class ObservationRegistry:
    """Distributes observation lifecycle events to zero or more handlers.

    A registry without handlers is valid: observations still run, they just
    produce no telemetry. Handler and filter failures are logged and isolated
    so that one failing backend can neither break the others nor alter the
    outcome of the observed work.
    """

    def __init__(self) -> None:
        self._handlers: list[ObservationHandler] = []
        self._filters: list[ObservationFilter] = []
        self._lock = threading.Lock()

    # ----- Configuration -----

    def add_handler(self, handler: ObservationHandler) -> None:
        """Append a handler to the end of the notification list."""
        if handler is None:
            raise InvalidInputError(message="Handler must not be None")
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: ObservationHandler) -> bool:
        """Remove a handler by identity (is). Returns True if found and removed."""
        with self._lock:
            for i, entry in enumerate(self._handlers):
                if entry is handler:
                    self._handlers.pop(i)
                    return True
            return False

    def handlers(self) -> list[ObservationHandler]:
        """Return a snapshot (copy) of the current handler list."""
        with self._lock:
            return list(self._handlers)

    def add_filter(self, observation_filter: ObservationFilter) -> None:
        """Register a callable that may adjust the context on stop, before handlers run."""
        if not callable(observation_filter):
            raise InvalidInputError(message=f"Filter must be callable, got {observation_filter!r}")
        with self._lock:
            self._filters.append(observation_filter)

    def add_common_tags(self, tags: Mapping[str, Any]) -> None:
        """Add low-cardinality tags to every observation of this registry."""
        if tags:
            self.add_filter(CommonTagsFilter(tags))

    @property
    def is_noop(self) -> bool:
        with self._lock:
            return not self._handlers

    def current_observation(self) -> Observation | None:
        """Return the current observation if it belongs to this registry."""
        observation = current_observation()
        if observation is not None and observation.registry is self:
            return observation
        return None

    # ----- Notification -----

    def supporting_handlers(self, context: ObservationContext) -> list[ObservationHandler]:
        """Snapshot of the handlers that accept *context*, taken once per observation."""
        selected = []
        for handler in self.handlers():
            try:
                if handler.supports(context):
                    selected.append(handler)
            except Exception:
                logger.error(
                    "Handler %r failed in supports() for '%s'", handler, context.technical_name, exc_info=True
                )
        return selected

    def apply_filters(self, context: ObservationContext) -> None:
        with self._lock:
            filters = list(self._filters)
        for observation_filter in filters:
            try:
                observation_filter(context)
            except Exception:
                logger.error(
                    "Observation filter %r failed for '%s'", observation_filter, context.technical_name, exc_info=True
                )

    def _dispatch(self, method: str, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        for handler in handlers:
            try:
                getattr(handler, method)(context)
            except Exception:
                logger.error(
                    "Handler %r failed in %s() for '%s'", handler, method, context.technical_name, exc_info=True
                )

    def notify_start(self, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        self._dispatch("on_start", context, handlers)

    def notify_scope_opened(self, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        self._dispatch("on_scope_opened", context, handlers)

    def notify_scope_closed(self, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        self._dispatch("on_scope_closed", context, list(reversed(handlers)))

    def notify_error(self, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        self._dispatch("on_error", context, handlers)

    def notify_stop(self, context: ObservationContext, handlers: list[ObservationHandler]) -> None:
        """Stop runs in reverse registration order (onion model)."""
        self._dispatch("on_stop", context, list(reversed(handlers)))
