#!/usr/bin/env python3
"""Test the Prometheus and OTEL sinks directly."""
from prometheus_client import CollectorRegistry, generate_latest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from jolokia_collector.config import OTELExporterConfig, PrometheusExporterConfig
from jolokia_collector.otel_exporter import OTELSelfMetrics, OTELSink, sanitize_instrument_name
from jolokia_collector.prom_exporter import (
    PrometheusSink, numeric_value, sanitize_label_name, sanitize_metric_name
)


TAGS = {"server": "stable", "host": "10.0.0.1", "port": "8180"}


def make_prom_sink(prefix=""):
    config = PrometheusExporterConfig(enabled=False, prefix=prefix)
    return PrometheusSink(config, registry=CollectorRegistry(), start_server=False)


def test_numeric_value():
    assert numeric_value(3) == 3.0
    assert numeric_value(2.5) == 2.5
    assert numeric_value(True) == 1.0
    assert numeric_value(False) == 0.0
    assert numeric_value("12") is None
    assert numeric_value(None) is None
    assert numeric_value([1]) is None


def test_sanitize_names():
    assert sanitize_metric_name("jolokia_pools_java.lang:type=Memory Pool") == \
        "jolokia_pools_java_lang:type_Memory_Pool"
    assert sanitize_metric_name("1st") == "_1st"
    assert sanitize_label_name("sub-type") == "sub_type"
    assert sanitize_instrument_name("jolokia_Eden Space_used") == "jolokia_Eden_Space_used"
    assert sanitize_instrument_name("_x") == "m_x"


def test_prometheus_sink_renders_gauges():
    sink = make_prom_sink()

    sink.add_fields("jolokia", {
        "heap_memory_usage_used": 123,
        "heap_memory_usage_max": 1024,
        "verbose": False,
        "version": "1.8",
        "nothing": None,
    }, TAGS)

    output = generate_latest(sink.registry).decode("utf-8")

    assert 'jolokia_heap_memory_usage_used{host="10.0.0.1",port="8180",server="stable"} 123.0' in output
    assert 'jolokia_heap_memory_usage_max{host="10.0.0.1",port="8180",server="stable"} 1024.0' in output
    assert 'jolokia_verbose{host="10.0.0.1",port="8180",server="stable"} 0.0' in output
    assert "jolokia_version" not in output
    assert "jolokia_nothing" not in output
    assert "# TYPE jolokia_heap_memory_usage_used gauge" in output


def test_prometheus_sink_keeps_latest_value_per_series():
    sink = make_prom_sink(prefix="jmx_")

    sink.add_fields("jolokia", {"used": 1}, TAGS)
    sink.add_fields("jolokia", {"used": 2}, TAGS)
    sink.add_fields("jolokia", {"used": 5}, dict(TAGS, server="canary"))

    assert sink.registry.get_sample_value("jmx_jolokia_used", TAGS) == 2.0
    assert sink.registry.get_sample_value("jmx_jolokia_used", dict(TAGS, server="canary")) == 5.0


def test_prometheus_sink_allows_differing_label_sets():
    sink = make_prom_sink()

    sink.add_fields("jvm", {"used": 1}, dict(TAGS, type="MemoryPool"))
    sink.add_fields("jvm", {"used": 2}, TAGS)

    assert sink.registry.get_sample_value("jvm_used", dict(TAGS, type="MemoryPool")) == 1.0
    assert sink.registry.get_sample_value("jvm_used", TAGS) == 2.0


def test_prometheus_sink_clear():
    sink = make_prom_sink()
    sink.add_fields("jolokia", {"used": 1}, TAGS)

    sink.clear()

    assert sink.registry.get_sample_value("jolokia_used", TAGS) is None


def _otel_points(reader):
    points = {}
    data = reader.get_metrics_data()
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = list(metric.data.data_points)
    return points


def test_otel_sink_observes_gauges():
    reader = InMemoryMetricReader()
    sink = OTELSink(OTELExporterConfig(enabled=True), reader=reader)

    sink.add_fields("jolokia", {"heap_used": 123, "name": "G1"}, TAGS)
    sink.add_fields("jolokia", {"heap_used": 150}, TAGS)

    points = _otel_points(reader)
    assert "jolokia_name" not in points
    (point,) = points["jolokia_heap_used"]
    assert point.value == 150.0
    assert dict(point.attributes) == TAGS

    sink.shutdown()


def test_otel_self_metrics():
    reader = InMemoryMetricReader()
    sink = OTELSink(OTELExporterConfig(enabled=True), reader=reader)
    self_metrics = OTELSelfMetrics(meter=sink.meter)

    self_metrics.record_sweep(0.2)
    self_metrics.record_failure("stable", "heap", "transport")
    self_metrics.record_measurements("stable", "heap", 3)

    points = _otel_points(reader)
    assert points["jolokia_sweeps_total"][0].value == 1
    assert points["jolokia_measurements_total"][0].value == 3
    assert dict(points["jolokia_request_failures_total"][0].attributes) == {
        "server": "stable", "metric": "heap", "reason": "transport"
    }
    assert points["jolokia_sweep_duration_seconds"][0].count == 1

    sink.shutdown()


def test_prometheus_sink_drops_series_missing_from_latest_sweep():
    sink = make_prom_sink()
    canary = dict(TAGS, server="canary")

    sink.begin_sweep()
    sink.add_fields("jolokia", {"used": 5, "max": 10}, TAGS)
    sink.add_fields("jolokia", {"used": 7}, canary)
    sink.end_sweep()

    sink.begin_sweep()
    sink.add_fields("jolokia", {"used": 6}, TAGS)
    sink.end_sweep()

    output = generate_latest(sink.registry).decode("utf-8")
    assert sink.registry.get_sample_value("jolokia_used", TAGS) == 6.0
    assert sink.registry.get_sample_value("jolokia_used", canary) is None
    assert "jolokia_max" not in output


def test_prometheus_sink_keeps_series_until_sweep_ends():
    sink = make_prom_sink()
    sink.begin_sweep()
    sink.add_fields("jolokia", {"used": 5}, TAGS)
    sink.end_sweep()

    sink.begin_sweep()

    assert sink.registry.get_sample_value("jolokia_used", TAGS) == 5.0


def test_otel_sink_stops_observing_series_missing_from_latest_sweep():
    reader = InMemoryMetricReader()
    sink = OTELSink(OTELExporterConfig(enabled=True), reader=reader)
    canary = dict(TAGS, server="canary")

    sink.begin_sweep()
    sink.add_fields("jolokia", {"used": 5, "max": 10}, TAGS)
    sink.add_fields("jolokia", {"used": 7}, canary)
    sink.end_sweep()

    sink.begin_sweep()
    sink.add_fields("jolokia", {"used": 6}, TAGS)
    sink.end_sweep()

    points = _otel_points(reader)
    assert [(dict(p.attributes), p.value) for p in points["jolokia_used"]] == [(TAGS, 6.0)]
    assert points.get("jolokia_max", []) == []
    assert list(sink.gauge_values) == ["jolokia_used"]

    sink.shutdown()
