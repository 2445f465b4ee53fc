"""OpenTelemetry push exporter using OTLP."""
from typing import Any, Dict, Optional, Tuple
import logging
import re
import threading

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import View, ExplicitBucketHistogramAggregation
from opentelemetry.sdk.resources import Resource

from jolokia_collector.config import OTELExporterConfig
from jolokia_collector.measurement import label_key
from jolokia_collector.prom_exporter import numeric_value, prune_stale
from jolokia_collector.sinks import MetricSink

logger = logging.getLogger(__name__)

_INVALID_INSTRUMENT_CHARS = re.compile(r'[^a-zA-Z0-9_.\-/]')

SWEEP_DURATION_BUCKETS = [0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]


def sanitize_instrument_name(name: str) -> str:
    """Map a field name onto the OTEL instrument name syntax."""
    name = _INVALID_INSTRUMENT_CHARS.sub("_", name)
    if not name or not name[0].isalpha():
        name = "m" + name
    return name[:255]


class OTELSink(MetricSink):
    """
    Pushes the latest value of every series through observable gauges.

    One observable gauge is created per ``{prefix}{measurement}_{field}``
    name the first time it is seen; its callback reports the last value
    recorded for each tag set. A tag set the latest sweep did not report is
    no longer observed once end_sweep() runs.
    """

    def __init__(self, config: OTELExporterConfig, reader: Optional[MetricReader] = None):
        self.config = config

        # instrument name -> label key -> (attributes, value, generation)
        self.gauge_values: Dict[str, Dict[str, Tuple[Dict[str, str], float, int]]] = {}
        self.gauges: Dict[str, Any] = {}
        self._generation = 0
        self._lock = threading.Lock()

        self._initialize_otel(reader)

    def _initialize_otel(self, reader: Optional[MetricReader]):
        """Initialize OpenTelemetry SDK."""
        # Create resource with attributes
        resource_attrs = {
            "service.name": "jolokia-collector",
        }
        resource_attrs.update(self.config.resource)

        resource = Resource.create(resource_attrs)

        if reader is None:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

            exporter = OTLPMetricExporter(
                endpoint=self.config.endpoint,
                insecure=self.config.insecure,
                headers=tuple(self.config.headers.items()) if self.config.headers else None
            )
            reader = PeriodicExportingMetricReader(
                exporter,
                export_interval_millis=self.config.export_interval_s * 1000
            )

        # Self-monitoring sweep duration uses explicit buckets
        views = [
            View(
                instrument_name=f"{self.config.prefix}jolokia_sweep_duration_seconds",
                aggregation=ExplicitBucketHistogramAggregation(boundaries=SWEEP_DURATION_BUCKETS)
            )
        ]

        self.meter_provider = MeterProvider(
            resource=resource,
            metric_readers=[reader],
            views=views
        )
        self.meter = self.meter_provider.get_meter(__name__)

        logger.info(f"OTEL exporter initialized, pushing to {self.config.endpoint}")

    def _create_gauge(self, name: str, description: str):
        """Create an observable gauge reporting the stored values of ``name``."""
        def callback(options):
            with self._lock:
                series = list(self.gauge_values.get(name, {}).values())
            return [metrics.Observation(value, attributes=attrs) for attrs, value, _ in series]

        self.gauges[name] = self.meter.create_observable_gauge(
            name=name,
            callbacks=[callback],
            description=description,
            unit="1"
        )

    def begin_sweep(self):
        with self._lock:
            self._generation += 1

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        """Record the fields of one measurement, skipping non-numeric values."""
        attributes = {k: str(v) for k, v in tags.items()}
        key = label_key(attributes)

        for field_name, raw_value in fields.items():
            value = numeric_value(raw_value)
            if value is None:
                logger.debug(f"Skipping non-numeric field {measurement}.{field_name}={raw_value!r}")
                continue

            name = sanitize_instrument_name(f"{self.config.prefix}{measurement}_{field_name}")
            with self._lock:
                self.gauge_values.setdefault(name, {})[key] = (attributes, value, self._generation)
                is_new = name not in self.gauges
            if is_new:
                self._create_gauge(name, f"Jolokia attribute {measurement}_{field_name}")

    def end_sweep(self):
        """Stop observing series the finished sweep did not report."""
        with self._lock:
            self.gauge_values = prune_stale(self.gauge_values, self._generation)

    def shutdown(self):
        """Shutdown OTEL exporter."""
        self.meter_provider.shutdown()
        logger.info("OTEL exporter shutdown complete")


class OTELSelfMetrics:
    """Self-monitoring metrics for OTEL exporter."""

    def __init__(self, meter, prefix=""):
        self.prefix = prefix

        self.sweeps_counter = meter.create_counter(
            name=f"{prefix}jolokia_sweeps_total",
            description="Total number of sweeps over all servers and metrics",
            unit="1"
        )

        self.failures_counter = meter.create_counter(
            name=f"{prefix}jolokia_request_failures_total",
            description="Total number of failed Jolokia reads",
            unit="1"
        )

        self.measurements_counter = meter.create_counter(
            name=f"{prefix}jolokia_measurements_total",
            description="Total number of measurements emitted",
            unit="1"
        )

        self.sweep_duration_histogram = meter.create_histogram(
            name=f"{prefix}jolokia_sweep_duration_seconds",
            description="Duration of each sweep in seconds",
            unit="s"
        )

    def record_sweep(self, duration: float):
        """Record a completed sweep."""
        self.sweeps_counter.add(1)
        self.sweep_duration_histogram.record(duration)

    def record_failure(self, server: str, metric: str, reason: str):
        """Record a failed read."""
        self.failures_counter.add(1, {"server": server, "metric": metric, "reason": reason})

    def record_measurements(self, server: str, metric: str, count: int):
        """Record emitted measurements."""
        self.measurements_counter.add(count, {"server": server, "metric": metric})
