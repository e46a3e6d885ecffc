"""
Lightweight observability primitives for ingestion and retrieval.

This module bundles the monitoring pieces used by
:class:`VectorRAG.database.VectorRAGDatabase`:

- ``DatabaseMetrics``: the authoritative record/query counters behind
  ``get_metrics()``, with an O(1) running-mean latency.
- ``MetricsCollector``: labelled counters, windowed histograms and gauges for
  finer-grained diagnostics (cache hits, candidate-set sizes, rollbacks).
- ``TraceRecorder``: timing spans emitted as structured log events.
- ``Observability``: a facade handing all of the above to the database.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, Iterator, Mapping, MutableMapping, Optional, Tuple

from .types import MetricsSnapshot

__all__ = (
    "CounterSample",
    "DatabaseMetrics",
    "GaugeSample",
    "HistogramSample",
    "MetricsCollector",
    "Observability",
    "TraceRecorder",
)

_LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]

_HISTOGRAM_WINDOW = 4096


@dataclass
class CounterSample:
    """Sample from a counter metric with labels and value.

    Attributes:
        name: Name of the counter metric
        labels: Dictionary of label key-value pairs
        value: Current counter value

    Examples:
        >>> sample = CounterSample(name="cache_hits", labels={}, value=3.0)
    """

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass
class GaugeSample:
    """Latest value of a gauge metric."""

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass
class HistogramSample:
    """Sample from a histogram metric with percentile statistics.

    Attributes:
        name: Name of the histogram metric
        labels: Dictionary of label key-value pairs
        count: Observations in the retained window
        p50: 50th percentile (median) value
        p95: 95th percentile value
        p99: 99th percentile value
    """

    name: str
    labels: Mapping[str, str]
    count: int
    p50: float
    p95: float
    p99: float


class MetricsCollector:
    """Thread-safe in-memory metrics collector.

    Histograms retain the most recent ``window`` observations per label set so
    a long-running process does not grow without bound.

    Examples:
        >>> collector = MetricsCollector()
        >>> collector.increment("search_cache", outcome="hit")
        >>> collector.observe("search_candidates", 12)
        >>> [sample.value for sample in collector.export_counters()]
        [1.0]
    """

    def __init__(self, *, window: int = _HISTOGRAM_WINDOW) -> None:
        self._lock = threading.RLock()
        self._window = window
        self._counters: MutableMapping[_LabelKey, float] = defaultdict(float)
        self._histograms: MutableMapping[_LabelKey, Deque[float]] = {}
        self._gauges: MutableMapping[_LabelKey, float] = {}

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        """Increase a counter metric by the given amount."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._counters[key] += amount

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record an observation for a histogram metric."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            samples = self._histograms.get(key)
            if samples is None:
                samples = deque(maxlen=self._window)
                self._histograms[key] = samples
            samples.append(float(value))

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        """Overwrite a gauge metric with its latest value."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._gauges[key] = float(value)

    def counter_value(self, name: str, **labels: str) -> float:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            return self._counters.get(key, 0.0)

    def export_counters(self) -> Iterable[CounterSample]:
        """Iterate over collected counter metrics as structured samples."""
        with self._lock:
            items = list(self._counters.items())
        for (name, labels), value in items:
            yield CounterSample(name=name, labels=dict(labels), value=value)

    def export_gauges(self) -> Iterable[GaugeSample]:
        with self._lock:
            items = list(self._gauges.items())
        for (name, labels), value in items:
            yield GaugeSample(name=name, labels=dict(labels), value=value)

    def export_histograms(self) -> Iterable[HistogramSample]:
        """Iterate over collected histogram metrics summarised by percentiles."""
        with self._lock:
            items = [(key, sorted(samples)) for key, samples in self._histograms.items()]
        for (name, labels), sorted_samples in items:
            count = len(sorted_samples)
            if count == 0:
                continue
            p50 = sorted_samples[int(0.5 * (count - 1))]
            p95 = sorted_samples[int(0.95 * (count - 1))]
            p99 = sorted_samples[int(0.99 * (count - 1))]
            yield HistogramSample(
                name=name, labels=dict(labels), count=count, p50=p50, p95=p95, p99=p99
            )


class DatabaseMetrics:
    """Record and query counters reported by ``VectorRAGDatabase.get_metrics``.

    ``records_total`` and ``queries_total`` never decrease; ``records_active``
    drops on tombstoning. The average latency is updated incrementally.

    Examples:
        >>> metrics = DatabaseMetrics()
        >>> metrics.on_insert(); metrics.on_query(4.0); metrics.on_query(2.0)
        >>> metrics.snapshot()
        MetricsSnapshot(records_active=1, records_total=1, queries_total=2, avg_query_latency=3.0)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = 0
        self._total = 0
        self._queries = 0
        self._avg_latency = 0.0

    def on_insert(self, count: int = 1) -> None:
        with self._lock:
            self._active += count
            self._total += count

    def on_tombstone(self, count: int = 1) -> None:
        with self._lock:
            self._active = max(0, self._active - count)

    def on_query(self, latency_ms: float) -> None:
        with self._lock:
            self._queries += 1
            self._avg_latency += (float(latency_ms) - self._avg_latency) / self._queries

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                records_active=self._active,
                records_total=self._total,
                queries_total=self._queries,
                avg_query_latency=self._avg_latency,
            )

    def restore(self, snapshot: MetricsSnapshot) -> None:
        """Replace every counter with the values in ``snapshot``."""
        with self._lock:
            self._active = int(snapshot.records_active)
            self._total = int(snapshot.records_total)
            self._queries = int(snapshot.queries_total)
            self._avg_latency = float(snapshot.avg_query_latency)


class TraceRecorder:
    """Context manager producing timing spans for tracing.

    Examples:
        >>> recorder = TraceRecorder(MetricsCollector(), logging.getLogger("test"))
        >>> with recorder.span("example"):
        ...     pass
    """

    def __init__(self, metrics: MetricsCollector, logger: logging.Logger) -> None:
        self._metrics = metrics
        self._logger = logger

    @contextmanager
    def span(self, name: str, **attributes: str) -> Iterator[None]:
        """Record execution duration for a traced operation.

        Raises:
            Exception: Propagates any exception raised inside the traced block.
        """
        start = time.perf_counter()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self._metrics.observe(f"trace_{name}_ms", duration_ms, **attributes)
            payload: Dict[str, object] = {
                "span": name,
                "duration_ms": round(duration_ms, 3),
                "status": status,
            }
            payload.update(attributes)
            self._logger.info("vectorrag-trace", extra={"event": payload})


class Observability:
    """Facade for metrics, structured logging and tracing.

    Examples:
        >>> obs = Observability()
        >>> sorted(obs.metrics_snapshot())
        ['counters', 'database', 'gauges', 'histograms']
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._metrics = MetricsCollector()
        self._database = DatabaseMetrics()
        self._logger = logger or logging.getLogger("VectorRAG")
        self._tracer = TraceRecorder(self._metrics, self._logger)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def database(self) -> DatabaseMetrics:
        """Counters surfaced through ``get_metrics()``."""
        return self._database

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def trace(self, name: str, **attributes: str) -> Iterator[None]:
        """Create a tracing span context for measuring an operation."""
        return self._tracer.span(name, **attributes)

    def metrics_snapshot(self) -> Dict[str, object]:
        """Produce a serialisable snapshot of every metric family."""
        counters = [sample.__dict__ for sample in self._metrics.export_counters()]
        histograms = [sample.__dict__ for sample in self._metrics.export_histograms()]
        gauges = [sample.__dict__ for sample in self._metrics.export_gauges()]
        database = self._database.snapshot()
        return {
            "counters": counters,
            "histograms": histograms,
            "gauges": gauges,
            "database": {
                "records_active": database.records_active,
                "records_total": database.records_total,
                "queries_total": database.queries_total,
                "avg_query_latency": database.avg_query_latency,
            },
        }
