"""Shared fixtures for the observekit test suite."""

from __future__ import annotations

import pytest

from observekit.handlers.base import ObservationHandler
from observekit.handlers.metrics import MetricsCollector, MetricsHandler
from observekit.handlers.tracing import InMemoryExporter, TracingHandler
from observekit.observation import ObservationContext
from observekit.registry import ObservationRegistry


class RecordingHandler(ObservationHandler):
    """Handler that records every lifecycle event for test assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.stopped: list[ObservationContext] = []
        self.errors: list[ObservationContext] = []

    def on_start(self, context: ObservationContext) -> None:
        self.events.append(("start", context.technical_name))

    def on_scope_opened(self, context: ObservationContext) -> None:
        self.events.append(("scope_opened", context.technical_name))

    def on_scope_closed(self, context: ObservationContext) -> None:
        self.events.append(("scope_closed", context.technical_name))

    def on_error(self, context: ObservationContext) -> None:
        self.events.append(("error", context.technical_name))
        self.errors.append(context)

    def on_stop(self, context: ObservationContext) -> None:
        self.events.append(("stop", context.technical_name))
        self.stopped.append(context)


@pytest.fixture
def registry() -> ObservationRegistry:
    """A registry with no handlers."""
    return ObservationRegistry()


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def recording_registry(recorder: RecordingHandler) -> ObservationRegistry:
    """Registry with a single RecordingHandler."""
    reg = ObservationRegistry()
    reg.add_handler(recorder)
    return reg


@pytest.fixture
def span_exporter() -> InMemoryExporter:
    return InMemoryExporter()


@pytest.fixture
def collector() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def full_registry(span_exporter: InMemoryExporter, collector: MetricsCollector) -> ObservationRegistry:
    """Registry with metrics and in-memory tracing handlers."""
    reg = ObservationRegistry()
    reg.add_handler(MetricsHandler(collector))
    reg.add_handler(TracingHandler(span_exporter))
    return reg
