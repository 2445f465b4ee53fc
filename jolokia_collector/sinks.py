"""Sinks that accept (measurement, fields, tags) triples."""
from typing import Any, Dict, List, Optional
import logging

from jolokia_collector.measurement import Measurement

logger = logging.getLogger(__name__)


class SinkError(Exception):
    """Raised by MultiSink when one or more of its sinks failed."""

    def __init__(self, errors: List[Exception]):
        super().__init__("; ".join(str(e) for e in errors))
        self.errors = errors


class MetricSink:
    """Base class for anything that accepts flattened measurements."""

    def begin_sweep(self):
        """Called before the first measurement of a sweep."""

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        raise NotImplementedError()

    def end_sweep(self):
        """Called once every server and metric of a sweep has been read."""


class LogSink(MetricSink):
    """Writes every measurement to a logger, one line per measurement."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        field_str = ",".join(f"{k}={v}" for k, v in sorted(fields.items()))
        self.log.log(self.level, f"{measurement},{tag_str} {field_str}")


class MemorySink(MetricSink):
    """Keeps measurements in memory."""

    def __init__(self):
        self.measurements: List[Measurement] = []

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        self.measurements.append(Measurement(measurement, dict(fields), dict(tags)))

    def clear(self):
        self.measurements.clear()


class MultiSink(MetricSink):
    """
    Fans measurements out to several sinks.

    Every sink gets every call even when an earlier one raises; the
    failures are collected and re-raised together as a SinkError.
    """

    def __init__(self, sinks: List[MetricSink]):
        self.sinks = sinks

    def _each(self, method: str, *args):
        errors = []
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception as e:
                logger.error(f"{type(sink).__name__}.{method} failed: {e}")
                errors.append(e)
        return errors

    def begin_sweep(self):
        self._each("begin_sweep")

    def add_fields(self, measurement: str, fields: Dict[str, Any], tags: Dict[str, str]):
        errors = self._each("add_fields", measurement, fields, tags)
        if errors:
            raise SinkError(errors)

    def end_sweep(self):
        self._each("end_sweep")
