"""Tests for Span, SpanExporter implementations, and TracingHandler."""

from __future__ import annotations

import io
import json
import sys
import time
from unittest.mock import MagicMock, patch

import pytest

from observekit.handlers.tracing import (
    SAMPLED_KEY,
    InMemoryExporter,
    OTLPExporter,
    Span,
    SpanExporter,
    StdoutExporter,
    TracingHandler,
    sampling_decision,
)
from observekit.observation import Observation
from observekit.registry import ObservationRegistry


class TestSpan:
    """Tests for the Span dataclass."""

    def test_defaults(self):
        span = Span(trace_id="abc-123", name="my.observation", start_time=time.time())
        assert span.end_time is None
        assert span.status == "ok"
        assert span.attributes == {}
        assert span.events == []
        assert span.parent_span_id is None

    def test_from_context_uses_observation_identity(self, registry):
        obs = Observation.create("my.observation", registry).with_contextual_name("runner").start()
        span = Span.from_context(obs.context)
        obs.stop()
        assert span.trace_id == obs.context.trace_id
        assert span.span_id == obs.context.span_id
        assert span.name == "runner"
        assert span.start_time == obs.start_time

    def test_span_id_is_16_char_hex(self):
        span = Span(trace_id="abc-123", name="test", start_time=time.time())
        assert len(span.span_id) == 16
        assert all(c in "0123456789abcdef" for c in span.span_id)


class TestStdoutExporter:
    def test_export_writes_json_line(self, capsys):
        span = Span(
            trace_id="trace-1",
            name="command-line-runner",
            start_time=1000.0,
            attributes={"low.cardinality.key": "low cardinality value"},
        )
        span.end_time = 1001.0
        StdoutExporter().export(span)
        data = json.loads(capsys.readouterr().out.strip())
        assert data["trace_id"] == "trace-1"
        assert data["name"] == "command-line-runner"
        assert data["attributes"] == {"low.cardinality.key": "low cardinality value"}
        assert data["start_time"] == 1000.0
        assert data["end_time"] == 1001.0

    def test_export_to_given_stream(self):
        stream = io.StringIO()
        StdoutExporter(stream).export(Span(trace_id="t1", name="x", start_time=0.0))
        assert json.loads(stream.getvalue())["name"] == "x"


class TestInMemoryExporter:
    def test_collects_in_order(self):
        exporter = InMemoryExporter()
        for i in range(3):
            exporter.export(Span(trace_id=f"trace-{i}", name="test", start_time=time.time()))
        assert [s.trace_id for s in exporter.get_spans()] == ["trace-0", "trace-1", "trace-2"]

    def test_bounded(self):
        exporter = InMemoryExporter(max_spans=2)
        for i in range(3):
            exporter.export(Span(trace_id=f"t{i}", name="test", start_time=0.0))
        assert [s.trace_id for s in exporter.get_spans()] == ["t1", "t2"]

    def test_trace_filters_by_trace_id(self):
        exporter = InMemoryExporter()
        exporter.export(Span(trace_id="t1", name="a", start_time=0.0))
        exporter.export(Span(trace_id="t2", name="b", start_time=0.0))
        assert [s.name for s in exporter.trace("t1")] == ["a"]

    def test_find_and_clear(self):
        exporter = InMemoryExporter()
        exporter.export(Span(trace_id="t1", name="a", start_time=0.0))
        exporter.export(Span(trace_id="t2", name="b", start_time=0.0))
        assert [s.trace_id for s in exporter.find("b")] == ["t2"]
        exporter.clear()
        assert exporter.get_spans() == []

    def test_exporters_satisfy_protocol(self):
        assert isinstance(InMemoryExporter(), SpanExporter)
        assert isinstance(StdoutExporter(), SpanExporter)


@pytest.fixture
def otel_memory():
    pytest.importorskip("opentelemetry.sdk")
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

    return InMemorySpanExporter()


TRACE_ID = "0af7651916cd43dd8448eb211c80319c"
SPAN_ID = "b7ad6b7169203331"


class TestOTLPExporter:
    """OTLPExporter replays spans into the OpenTelemetry SDK with their own ids."""

    def test_raises_import_error_when_opentelemetry_not_installed(self):
        with patch.dict(sys.modules, {"opentelemetry": None}):
            with pytest.raises(ImportError, match="observekit\\[otlp\\]"):
                OTLPExporter()

    def test_export_keeps_ids_timing_and_attributes(self, otel_memory):
        exporter = OTLPExporter(service_name="demo", span_exporter=otel_memory)
        exporter.export(
            Span(
                trace_id=TRACE_ID,
                span_id=SPAN_ID,
                name="command-line-runner",
                start_time=1000.0,
                end_time=1001.5,
                attributes={"low.cardinality.key": "v", "success": True, "complex": ["a"], "skipped": None},
            )
        )
        (otel_span,) = otel_memory.get_finished_spans()
        assert otel_span.name == "command-line-runner"
        assert format(otel_span.context.trace_id, "032x") == TRACE_ID
        assert format(otel_span.context.span_id, "016x") == SPAN_ID
        assert otel_span.parent is None
        assert otel_span.start_time == 1000_000_000_000
        assert otel_span.end_time == 1001_500_000_000
        assert otel_span.attributes["low.cardinality.key"] == "v"
        assert otel_span.attributes["success"] is True
        assert otel_span.attributes["complex"] == "['a']"
        assert "skipped" not in otel_span.attributes
        assert otel_span.resource.attributes["service.name"] == "demo"

    def test_child_span_points_at_parent(self, otel_memory):
        exporter = OTLPExporter(span_exporter=otel_memory)
        child = Span(trace_id=TRACE_ID, span_id="00f067aa0ba902b7", parent_span_id=SPAN_ID, name="c", start_time=1.0)
        exporter.export(child)
        (otel_span,) = otel_memory.get_finished_spans()
        assert format(otel_span.context.trace_id, "032x") == TRACE_ID
        assert format(otel_span.parent.span_id, "016x") == SPAN_ID
        assert otel_span.parent.is_remote

    def test_nested_observations_form_one_trace(self, otel_memory):
        reg = ObservationRegistry()
        reg.add_handler(TracingHandler(OTLPExporter(span_exporter=otel_memory)))
        outer = Observation.create("outer", reg)
        inner = Observation.create("inner", reg)
        outer.run(inner.run, lambda: None)

        spans = {s.name: s for s in otel_memory.get_finished_spans()}
        assert spans["inner"].context.trace_id == spans["outer"].context.trace_id
        assert spans["inner"].parent.span_id == spans["outer"].context.span_id
        assert format(spans["outer"].context.trace_id, "032x") == outer.context.trace_id
        assert format(spans["inner"].context.span_id, "016x") == inner.context.span_id
        assert spans["outer"].parent is None

    def test_error_status_and_events(self, otel_memory):
        from opentelemetry.trace import StatusCode

        exporter = OTLPExporter(span_exporter=otel_memory)
        exporter.export(
            Span(
                trace_id=TRACE_ID,
                name="x",
                start_time=100.0,
                end_time=101.0,
                status="error",
                attributes={"error_code": "ValueError"},
                events=[{"name": "exception", "type": "ValueError", "message": "bad input"}],
            )
        )
        (otel_span,) = otel_memory.get_finished_spans()
        assert otel_span.status.status_code == StatusCode.ERROR
        assert otel_span.status.description == "ValueError"
        (event,) = otel_span.events
        assert event.name == "exception"
        assert dict(event.attributes) == {"type": "ValueError", "message": "bad input"}

    def test_shutdown_flushes_span_exporter(self, otel_memory):
        span_exporter = MagicMock()
        exporter = OTLPExporter(span_exporter=span_exporter)
        exporter.shutdown()
        span_exporter.shutdown.assert_called_once_with()


class TestSamplingDecision:
    def test_none_without_tracing(self, registry):
        obs = Observation.create("x", registry)
        assert obs.run(lambda: sampling_decision(obs.context)) is None

    def test_nearest_ancestor_wins(self):
        from observekit.observation import ObservationContext

        root = ObservationContext(technical_name="root", data={SAMPLED_KEY: False})
        middle = ObservationContext(technical_name="middle", parent=root)
        leaf = ObservationContext(technical_name="leaf", parent=middle)
        assert sampling_decision(leaf) is False
        middle.data[SAMPLED_KEY] = True
        assert sampling_decision(leaf) is True


class TestTracingHandlerValidation:
    def test_invalid_sampling_rate(self):
        with pytest.raises(ValueError, match="sampling_rate"):
            TracingHandler(InMemoryExporter(), sampling_rate=1.5)

    def test_invalid_strategy(self):
        with pytest.raises(ValueError, match="sampling_strategy"):
            TracingHandler(InMemoryExporter(), sampling_strategy="sometimes")


class TestTracingHandler:
    """TracingHandler turns observations into exported spans."""

    def test_span_named_by_contextual_name_with_both_tag_sets(self, full_registry, span_exporter):
        obs = (
            Observation.create("my.observation", full_registry)
            .with_low_cardinality_tag("low.cardinality.key", "low cardinality value")
            .with_high_cardinality_tag("high.cardinality.key", "high cardinality value")
            .with_contextual_name("command-line-runner")
        )
        obs.run(lambda: None)
        (span,) = span_exporter.get_spans()
        assert span.name == "command-line-runner"
        assert span.trace_id == obs.context.trace_id
        assert span.span_id == obs.context.span_id
        assert span.attributes["low.cardinality.key"] == "low cardinality value"
        assert span.attributes["high.cardinality.key"] == "high cardinality value"
        assert span.attributes["observation.name"] == "my.observation"
        assert span.attributes["success"] is True
        assert span.status == "ok"
        assert span.start_time == obs.start_time
        assert span.end_time == obs.end_time

    def test_span_name_falls_back_to_technical_name(self, full_registry, span_exporter):
        Observation.create("plain.name", full_registry).run(lambda: None)
        assert span_exporter.get_spans()[0].name == "plain.name"

    def test_error_marks_span(self, full_registry, span_exporter):
        def work():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            Observation.create("x", full_registry).run(work)
        (span,) = span_exporter.get_spans()
        assert span.status == "error"
        assert span.attributes["success"] is False
        assert span.attributes["error_code"] == "ValueError"
        assert span.events == [{"name": "exception", "type": "ValueError", "message": "bad input"}]

    def test_nested_spans_share_trace(self, full_registry, span_exporter):
        def parent_work():
            Observation.create("child", full_registry).run(lambda: None)

        parent = Observation.create("parent", full_registry)
        parent.run(parent_work)
        child_span = span_exporter.find("child")[0]
        parent_span = span_exporter.find("parent")[0]
        assert child_span.trace_id == parent_span.trace_id
        assert child_span.parent_span_id == parent_span.span_id
        assert parent_span.parent_span_id is None
        # Child stops first
        assert [s.name for s in span_exporter.get_spans()] == ["child", "parent"]

    def test_sampling_off_exports_nothing(self):
        exporter = InMemoryExporter()
        reg = ObservationRegistry()
        reg.add_handler(TracingHandler(exporter, sampling_strategy="off"))
        Observation.create("x", reg).run(lambda: None)
        assert exporter.get_spans() == []

    def test_error_first_exports_errors_even_unsampled(self):
        exporter = InMemoryExporter()
        reg = ObservationRegistry()
        reg.add_handler(TracingHandler(exporter, sampling_rate=0.0, sampling_strategy="error_first"))
        Observation.create("ok", reg).run(lambda: None)

        def work():
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            Observation.create("failed", reg).run(work)
        assert [s.name for s in exporter.get_spans()] == ["failed"]

    def test_child_inherits_sampling_decision(self):
        exporter = InMemoryExporter()
        reg = ObservationRegistry()
        reg.add_handler(TracingHandler(exporter, sampling_rate=0.5, sampling_strategy="proportional"))

        def parent_work():
            Observation.create("child", reg).run(lambda: None)

        with patch("observekit.handlers.tracing.random.random", side_effect=[0.1, 0.9]):
            Observation.create("parent", reg).run(parent_work)
        assert sorted(s.name for s in exporter.get_spans()) == ["child", "parent"]

    def test_stop_without_span_warns(self, caplog):
        from observekit.observation import ObservationContext

        handler = TracingHandler(InMemoryExporter())
        handler.on_stop(ObservationContext(technical_name="orphan"))
        assert "without a span" in caplog.text
