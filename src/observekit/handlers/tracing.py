"""Tracing backend: observations become spans that are handed to an exporter."""

from __future__ import annotations

import collections
import dataclasses
import json
import logging
import os
import random
import sys
import threading
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TextIO, runtime_checkable

from observekit.context import new_span_id
from observekit.handlers.base import ObservationHandler

if TYPE_CHECKING:
    from observekit.observation import ObservationContext

__all__ = [
    "SAMPLED_KEY",
    "InMemoryExporter",
    "OTLPExporter",
    "Span",
    "SpanExporter",
    "StdoutExporter",
    "TracingHandler",
    "sampling_decision",
]

logger = logging.getLogger(__name__)

# Key under which TracingHandler stores its sampling decision in ``context.data``.
SAMPLED_KEY = "_tracing_sampled"
_SPAN_KEY = "_tracing_span"

SAMPLING_STRATEGIES = frozenset({"full", "proportional", "error_first", "off"})


def sampling_decision(context: ObservationContext | None) -> bool | None:
    """Return the sampling decision of *context* or its nearest ancestor.

    None means no tracing handler has decided, e.g. because the registry
    has no TracingHandler.
    """
    node = context
    while node is not None:
        decision = node.data.get(SAMPLED_KEY)
        if isinstance(decision, bool):
            return decision
        node = node.parent
    return None


@dataclass
class Span:
    """Exporter-neutral record of one observation."""

    trace_id: str
    name: str
    start_time: float
    span_id: str = field(default_factory=new_span_id)
    parent_span_id: str | None = None
    end_time: float | None = None
    status: str = "ok"
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_context(cls, context: ObservationContext) -> Span:
        """Open a span carrying the observation's own trace identity."""
        return cls(
            trace_id=context.trace_id,
            span_id=context.span_id,
            parent_span_id=context.parent_span_id,
            name=context.display_name,
            start_time=context.start_time if context.start_time is not None else time.time(),
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@runtime_checkable
class SpanExporter(Protocol):
    """Destination for finished spans."""

    def export(self, span: Span) -> None:
        ...


class StdoutExporter:
    """Writes each span as one JSON line, to stdout unless a stream is given."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def export(self, span: Span) -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps(span.to_dict(), default=str, sort_keys=True) + "\n")


class InMemoryExporter:
    """Keeps the most recent spans in memory, oldest first."""

    def __init__(self, max_spans: int = 10_000) -> None:
        self._spans: collections.deque[Span] = collections.deque(maxlen=max_spans)
        self._lock = threading.Lock()

    def export(self, span: Span) -> None:
        with self._lock:
            self._spans.append(span)

    def get_spans(self) -> list[Span]:
        with self._lock:
            return list(self._spans)

    def find(self, name: str) -> list[Span]:
        """Spans with the given (contextual) name."""
        return [span for span in self.get_spans() if span.name == name]

    def trace(self, trace_id: str) -> list[Span]:
        """Spans belonging to one trace."""
        return [span for span in self.get_spans() if span.trace_id == trace_id]

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()


# Ids of the span currently being replayed into the OpenTelemetry SDK.
_replay_ids: ContextVar[tuple[int, int] | None] = ContextVar("observekit_otlp_replay_ids", default=None)


class _ObservationIdGenerator:
    """OpenTelemetry id generator that reuses the observation's ids during export."""

    def generate_trace_id(self) -> int:
        ids = _replay_ids.get()
        return ids[0] if ids is not None else int.from_bytes(os.urandom(16), "big")

    def generate_span_id(self) -> int:
        ids = _replay_ids.get()
        return ids[1] if ids is not None else int.from_bytes(os.urandom(8), "big")


def _nanos(seconds: float) -> int:
    return int(seconds * 1_000_000_000)


def _otel_attributes(attributes: dict[str, Any]) -> dict[str, Any]:
    # OTel only takes primitive attribute values
    return {
        key: value if isinstance(value, (str, bool, int, float)) else str(value)
        for key, value in attributes.items()
        if value is not None
    }


class OTLPExporter:
    """Replays finished spans into the OpenTelemetry SDK and ships them over OTLP/HTTP.

    Spans keep their observekit identity: the OTel trace and span ids are the
    observation's own, and a child span is started under a remote parent
    context built from its parent's ids. Nested observations, including the
    HTTP client's request spans, therefore reach the collector as one
    connected trace.

    Args:
        endpoint: OTLP/HTTP traces endpoint. The SDK default
            (``http://localhost:4318/v1/traces``) is used when None.
        service_name: ``service.name`` resource attribute.
        span_exporter: OpenTelemetry span exporter to send to instead of the
            OTLP/HTTP one, e.g. ``InMemorySpanExporter`` in tests.

    Raises:
        ImportError: If the ``otlp`` extra is not installed.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        service_name: str = "observekit",
        span_exporter: Any = None,
    ) -> None:
        try:
            from opentelemetry import trace
            from opentelemetry.context import Context
            from opentelemetry.sdk.resources import Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import SimpleSpanProcessor

            if span_exporter is None:
                from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

                span_exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
        except ImportError:
            raise ImportError(
                "opentelemetry packages are required for OTLPExporter. "
                "Install with: pip install 'observekit[otlp]'"
            ) from None

        self._trace = trace
        self._Context = Context
        self._provider = TracerProvider(
            resource=Resource.create({"service.name": service_name}),
            id_generator=_ObservationIdGenerator(),
        )
        self._provider.add_span_processor(SimpleSpanProcessor(span_exporter))
        self._tracer = self._provider.get_tracer("observekit.tracing")

    def _parent_context(self, span: Span) -> Any:
        if span.parent_span_id is None:
            # An empty context, so an unrelated ambient OTel span never adopts ours
            return self._Context()
        parent = self._trace.SpanContext(
            trace_id=int(span.trace_id, 16),
            span_id=int(span.parent_span_id, 16),
            is_remote=True,
            trace_flags=self._trace.TraceFlags(self._trace.TraceFlags.SAMPLED),
        )
        return self._trace.set_span_in_context(self._trace.NonRecordingSpan(parent), self._Context())

    def export(self, span: Span) -> None:
        token = _replay_ids.set((int(span.trace_id, 16), int(span.span_id, 16)))
        try:
            otel_span = self._tracer.start_span(
                span.name,
                context=self._parent_context(span),
                attributes=_otel_attributes(span.attributes),
                start_time=_nanos(span.start_time),
            )
        finally:
            _replay_ids.reset(token)

        for event in span.events:
            otel_span.add_event(
                event.get("name", "event"),
                attributes={k: str(v) for k, v in event.items() if k != "name"},
            )
        if span.status == "error":
            description = span.attributes.get("error_code")
            otel_span.set_status(
                self._trace.Status(self._trace.StatusCode.ERROR, str(description) if description else None)
            )
        otel_span.end(end_time=_nanos(span.end_time) if span.end_time is not None else None)

    def shutdown(self) -> None:
        """Flush and stop the underlying TracerProvider."""
        self._provider.shutdown()


class TracingHandler(ObservationHandler):
    """Turns each observation into a span named by its contextual name.

    Trace and span ids come from the observation context, so nested
    observations produce child spans of the enclosing one. The sampling
    decision is made at the root and inherited by every descendant.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        sampling_rate: float = 1.0,
        sampling_strategy: str = "full",
    ) -> None:
        if not (0.0 <= sampling_rate <= 1.0):
            raise ValueError(f"sampling_rate must be between 0.0 and 1.0, got {sampling_rate}")
        if sampling_strategy not in SAMPLING_STRATEGIES:
            raise ValueError(
                f"sampling_strategy must be one of {sorted(SAMPLING_STRATEGIES)}, got {sampling_strategy!r}"
            )
        self._exporter = exporter
        self._sampling_rate = sampling_rate
        self._sampling_strategy = sampling_strategy

    @property
    def exporter(self) -> SpanExporter:
        return self._exporter

    def _should_sample(self, context: ObservationContext) -> bool:
        inherited = sampling_decision(context.parent)
        if inherited is not None:
            return inherited
        if self._sampling_strategy == "full":
            return True
        if self._sampling_strategy == "off":
            return False
        # proportional and error_first
        return random.random() < self._sampling_rate

    def on_start(self, context: ObservationContext) -> None:
        context.data[SAMPLED_KEY] = self._should_sample(context)
        context.data[_SPAN_KEY] = Span.from_context(context)

    def on_error(self, context: ObservationContext) -> None:
        span = context.data.get(_SPAN_KEY)
        if span is None or context.error is None:
            return
        span.events.append({"name": "exception", "type": context.error.type, "message": context.error.message})

    def on_stop(self, context: ObservationContext) -> None:
        """Finish the span with tags, timing and status; export it if sampled."""
        span = context.data.pop(_SPAN_KEY, None)
        if span is None:
            logger.warning("TracingHandler.on_stop() called without a span for %s", context.technical_name)
            return

        span.end_time = context.end_time
        span.attributes.update(context.low_cardinality_tags)
        span.attributes.update(context.high_cardinality_tags)
        span.attributes["observation.name"] = context.technical_name
        span.attributes["duration_ms"] = (context.duration or 0.0) * 1000

        error = context.error
        span.status = "ok" if error is None else "error"
        span.attributes["success"] = error is None
        if error is not None:
            span.attributes["error_code"] = error.code or error.type

        if context.data.get(SAMPLED_KEY) or (error is not None and self._sampling_strategy == "error_first"):
            self._exporter.export(span)
