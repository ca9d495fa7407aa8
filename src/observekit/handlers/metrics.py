"""Metrics backend: MetricsHandler feeding an in-memory MetricsCollector.

The collector renders Prometheus text or OpenMetrics. In OpenMetrics, each
histogram bucket carries an exemplar: the trace and span id of the latest
sampled observation that landed in it, which links a latency bucket to a
trace.
"""

from __future__ import annotations

import bisect
import itertools
import math
import re
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from observekit.handlers.base import ObservationHandler
from observekit.handlers.tracing import sampling_decision

if TYPE_CHECKING:
    from observekit.observation import ObservationContext

__all__ = ["Exemplar", "MetricsCollector", "MetricsHandler", "RESERVED_LABELS", "sanitize_metric_name"]

_LabelsKey = tuple[tuple[str, str], ...]
_SeriesKey = tuple[str, _LabelsKey]

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")

# Labels MetricsHandler sets itself; user tags with these names get a ``tag_`` prefix.
RESERVED_LABELS = frozenset({"error", "le"})


def sanitize_metric_name(name: str) -> str:
    """Map an observation name such as ``my.observation`` to ``my_observation``."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name)
    if not cleaned or cleaned[0].isdigit():
        cleaned = "_" + cleaned
    return cleaned


def _sanitize_label_name(name: str) -> str:
    cleaned = _INVALID_LABEL_CHARS.sub("_", name)
    if not cleaned or cleaned[0].isdigit():
        cleaned = "_" + cleaned
    return cleaned


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_labels(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in labels.items()) + "}"


@dataclass
class Exemplar:
    """One sampled measurement kept on a histogram bucket."""

    labels: dict[str, str]
    value: float
    timestamp: float

    def render(self) -> str:
        return f"# {_format_labels(self.labels)} {self.value!r} {self.timestamp:.3f}"


class _Histogram:
    """State of one histogram series. Bucket counts are kept non-cumulative."""

    __slots__ = ("counts", "total", "observations", "exemplars")

    def __init__(self, size: int) -> None:
        # One slot per bound plus the trailing +Inf slot
        self.counts = [0] * (size + 1)
        self.total = 0.0
        self.observations = 0
        self.exemplars: dict[int, Exemplar] = {}

    def cumulative(self) -> list[int]:
        return list(itertools.accumulate(self.counts))


class MetricsCollector:
    """Thread-safe store of counters, up/down gauges and histograms keyed by name and labels."""

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

    def __init__(self, buckets: list[float] | None = None) -> None:
        self._bounds = sorted(buckets) if buckets is not None else list(self.DEFAULT_BUCKETS)
        self._lock = threading.Lock()
        self._descriptions: dict[str, str] = {}
        self._counters: dict[_SeriesKey, int] = {}
        self._gauges: dict[_SeriesKey, float] = {}
        self._histograms: dict[_SeriesKey, _Histogram] = {}

    @property
    def buckets(self) -> list[float]:
        """Histogram upper bounds, ascending, without +Inf."""
        return list(self._bounds)

    @staticmethod
    def _key(name: str, labels: Mapping[str, str]) -> _SeriesKey:
        return name, tuple(sorted(labels.items()))

    def describe(self, name: str, description: str) -> None:
        """Set the ``# HELP`` text for a metric."""
        with self._lock:
            self._descriptions[name] = description

    def increment(self, name: str, labels: Mapping[str, str], amount: int = 1) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def gauge_add(self, name: str, labels: Mapping[str, str], amount: float) -> None:
        """Move a gauge by *amount*; negative values move it down."""
        key = self._key(name, labels)
        with self._lock:
            self._gauges[key] = self._gauges.get(key, 0.0) + amount

    def observe(
        self,
        name: str,
        labels: Mapping[str, str],
        value: float,
        exemplar: Mapping[str, str] | None = None,
    ) -> None:
        """Record *value* in a histogram.

        When *exemplar* labels are given (typically ``trace_id`` and
        ``span_id``) they replace the exemplar of the bucket the value
        falls into.
        """
        key = self._key(name, labels)
        index = bisect.bisect_left(self._bounds, value)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = _Histogram(len(self._bounds))
            histogram.counts[index] += 1
            histogram.total += value
            histogram.observations += 1
            if exemplar:
                histogram.exemplars[index] = Exemplar(dict(exemplar), value, time.time())

    def snapshot(self) -> dict:
        """Copy of all series. Histogram buckets are cumulative and keyed by upper bound."""
        with self._lock:
            histograms: dict[str, dict] = {"sums": {}, "counts": {}, "buckets": {}, "exemplars": {}}
            bounds = [*self._bounds, math.inf]
            for (name, labels), histogram in self._histograms.items():
                histograms["sums"][(name, labels)] = histogram.total
                histograms["counts"][(name, labels)] = histogram.observations
                for bound, count in zip(bounds, histogram.cumulative()):
                    histograms["buckets"][(name, labels, bound)] = count
                for index, exemplar in histogram.exemplars.items():
                    histograms["exemplars"][(name, labels, bounds[index])] = exemplar
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": histograms,
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    def export_prometheus(self) -> str:
        """Render all series in the Prometheus text exposition format."""
        return self._render(openmetrics=False)

    def export_openmetrics(self) -> str:
        """Render all series as OpenMetrics text, with bucket exemplars and a closing ``# EOF``."""
        return self._render(openmetrics=True)

    def _render(self, openmetrics: bool) -> str:
        lines: list[str] = []
        families: set[str] = set()

        def header(name: str, family: str, kind: str) -> None:
            if family not in families:
                families.add(family)
                lines.append(f"# HELP {family} {self._descriptions.get(name, name)}")
                lines.append(f"# TYPE {family} {kind}")

        with self._lock:
            for (name, labels), count in sorted(self._counters.items()):
                family = name
                if openmetrics:
                    # OpenMetrics names the counter family without the _total suffix
                    family = name[: -len("_total")] if name.endswith("_total") else name
                header(name, family, "counter")
                sample = f"{family}_total" if openmetrics else name
                lines.append(f"{sample}{_format_labels(dict(labels))} {count}")

            for (name, labels), level in sorted(self._gauges.items()):
                header(name, name, "gauge")
                lines.append(f"{name}{_format_labels(dict(labels))} {level:g}")

            for (name, labels), histogram in sorted(self._histograms.items(), key=lambda item: item[0]):
                header(name, name, "histogram")
                series = dict(labels)
                cumulative = histogram.cumulative()
                for index, bound in enumerate([*self._bounds, math.inf]):
                    if math.isinf(bound):
                        le = "+Inf"
                    else:
                        le = repr(float(bound)) if openmetrics else f"{bound:g}"
                    line = f"{name}_bucket{_format_labels({**series, 'le': le})} {cumulative[index]}"
                    exemplar = histogram.exemplars.get(index)
                    if openmetrics and exemplar is not None:
                        line = f"{line} {exemplar.render()}"
                    lines.append(line)
                lines.append(f"{name}_sum{_format_labels(series)} {histogram.total}")
                lines.append(f"{name}_count{_format_labels(series)} {histogram.observations}")

        if openmetrics:
            lines.append("# EOF")
        return "\n".join(lines) + "\n" if lines else ""


class MetricsHandler(ObservationHandler):
    """Records a timer, a call counter and an in-flight gauge per observation.

    Metric names derive from the technical name: ``my.observation`` yields
    ``my_observation_seconds``, ``my_observation_total`` and
    ``my_observation_active``. Only low-cardinality tags become labels, plus
    an ``error`` label (``none`` on success). A tag whose label name is
    reserved (``error``, ``le``) is exported as ``tag_<name>``. Timer
    measurements of sampled observations carry a trace exemplar.
    """

    def __init__(self, collector: MetricsCollector) -> None:
        self._collector = collector

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    @staticmethod
    def _labels(context: ObservationContext) -> dict[str, str]:
        labels = {}
        for key, value in context.low_cardinality_tags.items():
            name = _sanitize_label_name(key)
            if name in RESERVED_LABELS:
                name = f"tag_{name}"
            labels[name] = value
        return labels

    def on_start(self, context: ObservationContext) -> None:
        base = sanitize_metric_name(context.technical_name)
        # Tags may still change on stop, so the gauge is keyed by name only.
        context.data["_metrics_active"] = f"{base}_active"
        self._collector.describe(f"{base}_active", f"In-flight {context.technical_name} observations")
        self._collector.gauge_add(f"{base}_active", {}, 1)

    def on_stop(self, context: ObservationContext) -> None:
        base = sanitize_metric_name(context.technical_name)
        active = context.data.pop("_metrics_active", None)
        if active is not None:
            self._collector.gauge_add(active, {}, -1)

        labels = self._labels(context)
        error = context.error
        labels["error"] = "none" if error is None else (error.code or error.type)

        exemplar = None
        if sampling_decision(context):
            exemplar = {"trace_id": context.trace_id, "span_id": context.span_id}

        self._collector.describe(f"{base}_seconds", f"Duration of {context.technical_name} observations")
        self._collector.describe(f"{base}_total", f"Total {context.technical_name} observations")
        self._collector.increment(f"{base}_total", labels)
        self._collector.observe(f"{base}_seconds", labels, context.duration or 0.0, exemplar=exemplar)
