"""Wire an ObservationRegistry from validated settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from observekit.config import ObservabilitySettings, TracingSettings
from observekit.handlers.logging import LoggingHandler
from observekit.handlers.metrics import MetricsCollector, MetricsHandler
from observekit.handlers.tracing import (
    InMemoryExporter,
    OTLPExporter,
    SpanExporter,
    StdoutExporter,
    TracingHandler,
)
from observekit.registry import ObservationRegistry

__all__ = ["RegistryBundle", "build_registry", "build_span_exporter"]

logger = logging.getLogger(__name__)


@dataclass
class RegistryBundle:
    """A configured registry plus the backends it writes to."""

    registry: ObservationRegistry
    settings: ObservabilitySettings
    collector: MetricsCollector | None = None
    exporter: SpanExporter | None = None

    def close(self) -> None:
        """Flush exporters that buffer spans."""
        shutdown = getattr(self.exporter, "shutdown", None)
        if callable(shutdown):
            shutdown()


def build_span_exporter(settings: TracingSettings) -> SpanExporter | None:
    """Create the span exporter named by ``settings.exporter``, or None."""
    if settings.exporter == "stdout":
        return StdoutExporter()
    if settings.exporter == "memory":
        return InMemoryExporter(max_spans=settings.max_spans)
    if settings.exporter == "otlp":
        return OTLPExporter(endpoint=settings.otlp_endpoint, service_name=settings.service_name)
    return None


def build_registry(settings: ObservabilitySettings | None = None, **overrides: Any) -> RegistryBundle:
    """Build a registry with the handlers enabled in *settings*.

    With every backend disabled the registry has no handlers and all
    observations are no-ops.
    """
    if settings is None:
        settings = ObservabilitySettings()
    if overrides:
        settings = settings.model_copy(update=overrides)

    registry = ObservationRegistry()
    bundle = RegistryBundle(registry=registry, settings=settings)

    if settings.metrics.enabled:
        bundle.collector = MetricsCollector(buckets=settings.metrics.buckets)
        registry.add_handler(MetricsHandler(bundle.collector))

    exporter = build_span_exporter(settings.tracing)
    if exporter is not None:
        bundle.exporter = exporter
        registry.add_handler(
            TracingHandler(
                exporter,
                sampling_rate=settings.tracing.sampling_rate,
                sampling_strategy=settings.tracing.sampling_strategy,
            )
        )

    if settings.logging.enabled:
        registry.add_handler(LoggingHandler(logging.getLogger(settings.logging.logger_name)))

    registry.add_common_tags(settings.common_tags)

    logger.debug(
        "Observation registry built: metrics=%s tracing=%s logging=%s",
        settings.metrics.enabled,
        settings.tracing.exporter,
        settings.logging.enabled,
    )
    return bundle
