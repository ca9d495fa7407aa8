"""Observation handlers: metrics, tracing and logging backends."""

from observekit.handlers.base import ObservationHandler
from observekit.handlers.logging import LoggingHandler
from observekit.handlers.metrics import MetricsCollector, MetricsHandler
from observekit.handlers.tracing import (
    InMemoryExporter,
    Span,
    SpanExporter,
    StdoutExporter,
    TracingHandler,
)

__all__ = [
    "InMemoryExporter",
    "LoggingHandler",
    "MetricsCollector",
    "MetricsHandler",
    "ObservationHandler",
    "Span",
    "SpanExporter",
    "StdoutExporter",
    "TracingHandler",
]
