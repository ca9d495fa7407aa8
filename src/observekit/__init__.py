"""observekit - observation-scoped instrumentation for metrics, tracing and logs."""

from __future__ import annotations

# Core
from observekit.observation import (
    ErrorInfo,
    Observation,
    ObservationContext,
    ObservationConvention,
    ObservationScope,
    ObservationState,
    observed,
)
from observekit.registry import CommonTagsFilter, ObservationRegistry
from observekit.context import current_observation, current_trace_ids

# Config
from observekit.config import Config, ObservabilitySettings
from observekit.bootstrap import RegistryBundle, build_registry

# Errors
from observekit.errors import (
    ConfigError,
    ConfigNotFoundError,
    ErrorCodes,
    InvalidInputError,
    ObservationError,
    ObservationStateError,
    RegistryRequiredError,
)

# Handlers
from observekit.handlers import (
    InMemoryExporter,
    LoggingHandler,
    MetricsCollector,
    MetricsHandler,
    ObservationHandler,
    Span,
    SpanExporter,
    StdoutExporter,
    TracingHandler,
)

# Logging
from observekit.log_correlation import TraceContextFilter, TraceJsonFormatter

# HTTP
from observekit.http_client import HttpClientConvention, ObservedClient

__version__ = "0.1.0"

__all__ = [
    # Core
    "Observation",
    "ObservationContext",
    "ObservationConvention",
    "ObservationScope",
    "ObservationState",
    "ErrorInfo",
    "observed",
    "ObservationRegistry",
    "CommonTagsFilter",
    "current_observation",
    "current_trace_ids",
    # Config
    "Config",
    "ObservabilitySettings",
    "RegistryBundle",
    "build_registry",
    # Errors
    "ErrorCodes",
    "ObservationError",
    "ConfigError",
    "ConfigNotFoundError",
    "InvalidInputError",
    "ObservationStateError",
    "RegistryRequiredError",
    # Handlers
    "ObservationHandler",
    "MetricsCollector",
    "MetricsHandler",
    "TracingHandler",
    "LoggingHandler",
    "Span",
    "SpanExporter",
    "StdoutExporter",
    "InMemoryExporter",
    # Logging
    "TraceJsonFormatter",
    "TraceContextFilter",
    # HTTP
    "ObservedClient",
    "HttpClientConvention",
]
