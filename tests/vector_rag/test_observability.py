"""Tests for the metrics collector, trace spans and database counters."""

from __future__ import annotations

import logging

import pytest

from VectorRAG.observability import DatabaseMetrics, MetricsCollector, Observability, TraceRecorder
from VectorRAG.types import MetricsSnapshot


def test_running_mean_latency() -> None:
    metrics = DatabaseMetrics()
    for latency in (10.0, 20.0, 60.0):
        metrics.on_query(latency)

    snapshot = metrics.snapshot()

    assert snapshot.queries_total == 3
    assert snapshot.avg_query_latency == pytest.approx(30.0)


def test_insert_and_tombstone_counters() -> None:
    metrics = DatabaseMetrics()
    metrics.on_insert(3)
    metrics.on_tombstone()

    assert metrics.snapshot() == MetricsSnapshot(
        records_active=2, records_total=3, queries_total=0, avg_query_latency=0.0
    )


def test_restore_replaces_counters() -> None:
    metrics = DatabaseMetrics()
    metrics.on_insert()

    metrics.restore(MetricsSnapshot(records_active=5, records_total=9, queries_total=4, avg_query_latency=1.5))

    assert metrics.snapshot().records_total == 9
    metrics.on_query(6.5)
    assert metrics.snapshot().avg_query_latency == pytest.approx(2.5)


def test_collector_counters_histograms_and_gauges() -> None:
    collector = MetricsCollector(window=3)
    collector.increment("search_cache", outcome="hit")
    collector.increment("search_cache", outcome="hit")
    collector.increment("search_cache", outcome="miss")
    for value in (1.0, 2.0, 3.0, 4.0):
        collector.observe("latency", value)
    collector.set_gauge("records", 7)

    assert collector.counter_value("search_cache", outcome="hit") == 2.0
    [histogram] = list(collector.export_histograms())
    assert histogram.count == 3
    assert histogram.p50 == 3.0
    [gauge] = list(collector.export_gauges())
    assert gauge.value == 7.0


def test_trace_span_logs_and_records_duration(caplog) -> None:
    caplog.set_level(logging.INFO, logger="tests.trace")
    collector = MetricsCollector()
    recorder = TraceRecorder(collector, logging.getLogger("tests.trace"))

    with recorder.span("save", target="disk"):
        pass
    with pytest.raises(RuntimeError):
        with recorder.span("save", target="disk"):
            raise RuntimeError("boom")

    statuses = [record.event["status"] for record in caplog.records if record.msg == "vectorrag-trace"]
    assert statuses == ["ok", "error"]
    [histogram] = list(collector.export_histograms())
    assert histogram.name == "trace_save_ms"
    assert histogram.count == 2


def test_observability_snapshot_includes_database_counters() -> None:
    obs = Observability()
    obs.database.on_insert()
    obs.metrics.increment("records_upserted")

    snapshot = obs.metrics_snapshot()

    assert snapshot["database"]["records_active"] == 1
    assert snapshot["counters"][0]["name"] == "records_upserted"
