"""Sweep engine: reads every metric from every server and emits measurements."""
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import json
import logging
import threading
import time

from jolokia_collector.beans import group_beans
from jolokia_collector.client import JolokiaClient, JolokiaClientError, RequestsJolokiaClient
from jolokia_collector.config import JolokiaConfig, MetricConfig, ServerConfig
from jolokia_collector.flatten import flatten
from jolokia_collector.measurement import Measurement
from jolokia_collector.sinks import MemorySink, MetricSink, MultiSink

logger = logging.getLogger(__name__)

DEFAULT_MEASUREMENT = "jolokia"

# Failure reasons
TRANSPORT = "transport"
STATUS = "status"
DECODE = "decode"
MISSING_VALUE = "missing_value"
BEAN_NAME = "bean_name"
SINK = "sink"


class FetchError(Exception):
    """A read that produced no usable value."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass
class FetchFailure:
    """One failed (server, metric) read, or one skipped bean within it."""
    server: str
    metric: str
    url: str
    reason: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "server": self.server,
            "metric": self.metric,
            "url": self.url,
            "reason": self.reason,
            "message": self.message,
        }


@dataclass
class SweepResult:
    """Outcome of one pass over every server and metric."""
    measurements: List[Measurement] = field(default_factory=list)
    failures: List[FetchFailure] = field(default_factory=list)
    started_at: float = 0.0
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "duration_s": round(self.duration_s, 4),
            "measurements": len(self.measurements),
            "failures": [f.to_dict() for f in self.failures],
        }


def build_url(scheme: str, server: ServerConfig, context: str, metric: MetricConfig) -> str:
    """Compose the read URL for one metric on one server."""
    return f"{scheme}://{server.host}:{server.port}{context}{metric.jmx}"


def server_auth(server: ServerConfig) -> Optional[Tuple[str, str]]:
    """Basic auth credentials when either username or password is set."""
    if server.username or server.password:
        return (server.username or "", server.password or "")
    return None


def base_tags(server: ServerConfig) -> Dict[str, str]:
    return {
        "server": server.name,
        "host": server.host,
        "port": server.port,
    }


class JolokiaEngine:
    """Orchestrates reads against all configured servers and dispatches the results."""

    def __init__(self, config: JolokiaConfig, client: Optional[JolokiaClient] = None,
                 sink: Optional[MetricSink] = None, self_metrics=None, otel_self_metrics=None):
        self.config = config
        self.client = client or RequestsJolokiaClient(timeout_s=config.timeout_s)
        self.sink = sink
        self.self_metrics = self_metrics
        self.otel_self_metrics = otel_self_metrics

        self.sweep_count = 0
        self.start_time = time.time()
        self.last_result: Optional[SweepResult] = None
        self._sweep_lock = threading.Lock()

        logger.info(
            f"Jolokia engine initialized: {len(config.servers)} servers, "
            f"{len(config.metrics)} metrics"
        )

    def fetch(self, url: str, auth: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
        """
        Read one Jolokia URL and return the decoded JSON object.

        Raises:
            FetchError: for transport errors, non-200 responses and bodies
                that are not a JSON object
        """
        try:
            response = self.client.get(url, auth=auth)
        except JolokiaClientError as e:
            raise FetchError(TRANSPORT, str(e)) from e

        if response.status_code != 200:
            raise FetchError(
                STATUS,
                f'Response from url "{url}" has status code {response.status_code}, expected 200'
            )

        try:
            body = json.loads(response.body)
        except (ValueError, RecursionError) as e:
            raise FetchError(DECODE, f'Error decoding JSON response from "{url}": {e}') from e

        if not isinstance(body, Mapping):
            raise FetchError(DECODE, f'Response from "{url}" is not a JSON object')

        return body

    def sweep(self, sink: Optional[MetricSink] = None) -> SweepResult:
        """
        Read every configured metric from every configured server.

        Measurements go to ``sink`` (default: the engine's sink) and are
        also collected in the returned result. Failures never interrupt the
        sweep; they are logged and listed in ``SweepResult.failures``.
        """
        with self._sweep_lock:
            return self._sweep(sink if sink is not None else self.sink)

    def _sweep(self, sink: Optional[MetricSink]) -> SweepResult:
        result = SweepResult(started_at=time.time())
        recorder = MemorySink()
        target = MultiSink([recorder, sink]) if sink is not None else recorder
        target.begin_sweep()

        for server in self.config.servers:
            for metric in self.config.metrics:
                emitted_before = len(recorder.measurements)
                self._read_metric(server, metric, target, result)
                emitted = len(recorder.measurements) - emitted_before

                if self.self_metrics:
                    self.self_metrics.record_measurements(server.name, metric.name, emitted)
                if self.otel_self_metrics:
                    self.otel_self_metrics.record_measurements(server.name, metric.name, emitted)

        target.end_sweep()
        result.measurements = recorder.measurements
        result.duration_s = time.time() - result.started_at

        if self.self_metrics:
            self.self_metrics.record_sweep(result.duration_s)
        if self.otel_self_metrics:
            self.otel_self_metrics.record_sweep(result.duration_s)

        self.sweep_count += 1
        self.last_result = result

        log = logger.warning if result.failures else logger.info
        log(
            f"Sweep {self.sweep_count}: {len(result.measurements)} measurements, "
            f"{len(result.failures)} failures in {result.duration_s:.3f}s"
        )
        return result

    def _read_metric(self, server: ServerConfig, metric: MetricConfig,
                     sink: MetricSink, result: SweepResult):
        """Fetch one metric from one server and emit its measurements."""
        measurement = metric.series_name_override or DEFAULT_MEASUREMENT
        url = build_url(self.config.scheme, server, self.config.context, metric)
        tags = base_tags(server)

        try:
            out = self.fetch(url, server_auth(server))
            if "value" not in out:
                raise FetchError(MISSING_VALUE, f"Missing key 'value' in '{url}' output response")
        except FetchError as e:
            self._record_failure(result, server, metric, url, e.reason, str(e))
            return

        values = out["value"]
        try:
            if isinstance(values, Mapping) and metric.multiple_mbeans:
                grouping = group_beans(values, tags)
                batches = [(group.fields, group.tags) for group in grouping.groups.values()]
            else:
                grouping = None
                batches = [(flatten(values, metric.name), tags)]
        except RecursionError:
            self._record_failure(result, server, metric, url, DECODE,
                                 f"Value from '{url}' is nested too deeply to flatten")
            return

        if grouping is not None:
            for bean_name, error in grouping.errors:
                self._record_failure(result, server, metric, url, BEAN_NAME, str(error))

        for fields, batch_tags in batches:
            if not fields:
                logger.debug(f"[{server.name}/{metric.name}] No fields in '{url}' output response")
                continue
            self._emit(sink, measurement, fields, batch_tags, server, metric, url, result)

    def _emit(self, sink: MetricSink, measurement: str, fields: Dict[str, Any],
              tags: Dict[str, str], server: ServerConfig, metric: MetricConfig,
              url: str, result: SweepResult):
        try:
            sink.add_fields(measurement, fields, tags)
        except Exception as e:
            logger.error(f"Sink rejected measurement '{measurement}' from {url}: {e}", exc_info=True)
            self._record_failure(result, server, metric, url, SINK, str(e), log=False)

    def _record_failure(self, result: SweepResult, server: ServerConfig, metric: MetricConfig,
                        url: str, reason: str, message: str, log: bool = True):
        if log:
            logger.error(f"[{server.name}/{metric.name}] {message}")
        result.failures.append(FetchFailure(server.name, metric.name, url, reason, message))

        if self.self_metrics:
            self.self_metrics.record_failure(server.name, metric.name, reason)
        if self.otel_self_metrics:
            self.otel_self_metrics.record_failure(server.name, metric.name, reason)

    def close(self):
        """Release the HTTP client."""
        logger.info("Stopping Jolokia engine")
        self.client.close()
