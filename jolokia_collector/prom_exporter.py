"""Prometheus pull exporter using prometheus_client."""
from typing import Any, Dict, Optional, Tuple
import logging
import re
import threading

from prometheus_client import (
    Counter, Histogram,
    CollectorRegistry, start_http_server
)
from prometheus_client.core import Metric

from jolokia_collector.config import PrometheusExporterConfig
from jolokia_collector.measurement import label_key
from jolokia_collector.sinks import MetricSink

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r'[^a-zA-Z0-9_:]')
_INVALID_LABEL_CHARS = re.compile(r'[^a-zA-Z0-9_]')


def sanitize_metric_name(name: str) -> str:
    """Map a field name onto [a-zA-Z_:][a-zA-Z0-9_:]*."""
    name = _INVALID_NAME_CHARS.sub("_", name)
    if not name or name[0].isdigit():
        name = "_" + name
    return name


def sanitize_label_name(name: str) -> str:
    """Map a tag key onto [a-zA-Z_][a-zA-Z0-9_]*."""
    name = _INVALID_LABEL_CHARS.sub("_", name)
    if not name or name[0].isdigit():
        name = "_" + name
    return name


def numeric_value(value: Any) -> Optional[float]:
    """Return the float value of a numeric field, None for anything else."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return None


def prune_stale(series_by_name, generation):
    """Keep only series stamped with ``generation``; names left empty are removed."""
    pruned = {}
    for name, series in series_by_name.items():
        current = {key: entry for key, entry in series.items() if entry[-1] == generation}
        if current:
            pruned[name] = current
    return pruned


class PrometheusSink(MetricSink):
    """
    Keeps the latest value of every series and serves them on /metrics.

    Every field of a measurement becomes a gauge named
    ``{prefix}{measurement}_{field}`` labelled with the measurement's tags.
    Series can carry different label sets under one name (each bean group
    brings its own tags), so values are served through a custom collector
    rather than fixed-label Gauge objects.

    Between begin_sweep() and end_sweep() the served series are replaced:
    anything the sweep did not report again is dropped at end_sweep(), so a
    failed read stops being exported instead of repeating its last value.
    """

    def __init__(self, config: PrometheusExporterConfig, registry: Optional[CollectorRegistry] = None,
                 start_server: bool = True):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = registry if registry is not None else CollectorRegistry()

        # metric name -> label key -> (labels, value, generation)
        self.samples: Dict[str, Dict[str, Tuple[Dict[str, str], float, int]]] = {}
        self._generation = 0
        self._lock = threading.Lock()

        self.registry.register(self)

        # Start HTTP server
        if config.enabled and start_server:
            self._start_server()

    def _start_server(self):
        """Start Prometheus HTTP server."""
        try:
            start_http_server(
                self.config.port,
                addr=self.config.bind_address,
                registry=self.registry
            )
            logger.info(
                f"Prometheus exporter listening on "
                f"{self.config.bind_address}:{self.config.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise

    def begin_sweep(self):
        with self._lock:
            self._generation += 1

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        """Record the fields of one measurement, skipping non-numeric values."""
        labels = {sanitize_label_name(k): str(v) for k, v in sorted(tags.items())}
        key = label_key(labels)

        with self._lock:
            for field_name, raw_value in fields.items():
                value = numeric_value(raw_value)
                if value is None:
                    logger.debug(f"Skipping non-numeric field {measurement}.{field_name}={raw_value!r}")
                    continue

                metric_name = sanitize_metric_name(f"{self.config.prefix}{measurement}_{field_name}")
                self.samples.setdefault(metric_name, {})[key] = (labels, value, self._generation)

    def end_sweep(self):
        """Drop every series the finished sweep did not report."""
        with self._lock:
            self.samples = prune_stale(self.samples, self._generation)

    def describe(self):
        return []

    def collect(self):
        """Yield one gauge family per metric name (prometheus_client collector protocol)."""
        with self._lock:
            snapshot = {name: list(series.values()) for name, series in self.samples.items()}

        for metric_name in sorted(snapshot):
            family = Metric(metric_name, f"Jolokia attribute {metric_name}", "gauge")
            for labels, value, _ in snapshot[metric_name]:
                family.add_sample(metric_name, labels, value)
            yield family

    def clear(self):
        with self._lock:
            self.samples.clear()


class SelfMetrics:
    """Self-monitoring metrics for the collector."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()

        self.sweeps_total = Counter(
            f"{prefix}jolokia_sweeps_total",
            "Total number of sweeps over all servers and metrics",
            registry=registry
        )

        self.request_failures_total = Counter(
            f"{prefix}jolokia_request_failures_total",
            "Total number of failed Jolokia reads",
            ["server", "metric", "reason"],
            registry=registry
        )

        self.measurements_total = Counter(
            f"{prefix}jolokia_measurements_total",
            "Total number of measurements emitted",
            ["server", "metric"],
            registry=registry
        )

        self.sweep_duration_seconds = Histogram(
            f"{prefix}jolokia_sweep_duration_seconds",
            "Duration of each sweep in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry
        )

    def record_sweep(self, duration: float):
        """Record a completed sweep."""
        self.sweeps_total.inc()
        self.sweep_duration_seconds.observe(duration)

    def record_failure(self, server: str, metric: str, reason: str):
        """Record a failed read."""
        self.request_failures_total.labels(server=server, metric=metric, reason=reason).inc()

    def record_measurements(self, server: str, metric: str, count: int):
        """Record emitted measurements."""
        self.measurements_total.labels(server=server, metric=metric).inc(count)
