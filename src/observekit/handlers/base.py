"""Observation handler base class."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from observekit.observation import ObservationContext

__all__ = ["ObservationHandler"]


class ObservationHandler:
    """Base handler class with default no-op implementations.

    Subclass and override the methods you need. Handlers are shared between
    all observations of a registry and may be invoked from several threads
    at once; keep per-observation state in ``context.data``.
    """

    def supports(self, context: ObservationContext) -> bool:
        """Return False to skip this handler for the given observation."""
        return True

    def on_start(self, context: ObservationContext) -> None:
        """Called after the observation has started."""

    def on_scope_opened(self, context: ObservationContext) -> None:
        """Called when the observation becomes current."""

    def on_scope_closed(self, context: ObservationContext) -> None:
        """Called right before the previous observation becomes current again."""

    def on_error(self, context: ObservationContext) -> None:
        """Called once when a failure is recorded; ``context.error`` is set."""

    def on_stop(self, context: ObservationContext) -> None:
        """Called once after the observation has stopped."""
