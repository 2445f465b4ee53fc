#!/usr/bin/env python3
"""Tests for the fan-out and in-memory sinks."""
import logging

import pytest

from jolokia_collector.sinks import LogSink, MemorySink, MetricSink, MultiSink, SinkError


TAGS = {"server": "stable", "host": "10.0.0.1", "port": "8180"}


class BrokenSink(MetricSink):
    """Fails every call and counts them."""

    def __init__(self):
        self.calls = []

    def begin_sweep(self):
        self.calls.append("begin")
        raise RuntimeError("begin failed")

    def add_fields(self, measurement, fields, tags):
        self.calls.append("add")
        raise RuntimeError("backend down")

    def end_sweep(self):
        self.calls.append("end")
        raise RuntimeError("end failed")


class SweepTracker(MemorySink):
    def __init__(self):
        super().__init__()
        self.events = []

    def begin_sweep(self):
        self.events.append("begin")

    def end_sweep(self):
        self.events.append("end")


def test_multi_sink_delivers_past_a_failing_sink():
    broken = BrokenSink()
    memory = MemorySink()
    sink = MultiSink([broken, memory])

    with pytest.raises(SinkError) as excinfo:
        sink.add_fields("jolokia", {"used": 1}, TAGS)

    assert broken.calls == ["add"]
    assert [m.fields for m in memory.measurements] == [{"used": 1}]
    assert "backend down" in str(excinfo.value)
    assert len(excinfo.value.errors) == 1


def test_multi_sink_sweep_hooks_reach_every_sink():
    broken = BrokenSink()
    tracker = SweepTracker()
    sink = MultiSink([broken, tracker])

    sink.begin_sweep()
    sink.end_sweep()

    assert broken.calls == ["begin", "end"]
    assert tracker.events == ["begin", "end"]


def test_multi_sink_without_failures_does_not_raise():
    first, second = MemorySink(), MemorySink()

    MultiSink([first, second]).add_fields("jolokia", {"used": 1}, TAGS)

    assert first.measurements == second.measurements
    assert len(first.measurements) == 1


def test_memory_sink_copies_fields_and_tags():
    sink = MemorySink()
    fields = {"used": 1}
    tags = dict(TAGS)

    sink.add_fields("jolokia", fields, tags)
    fields["used"] = 2
    tags["server"] = "canary"

    assert sink.measurements[0].fields == {"used": 1}
    assert sink.measurements[0].tags["server"] == "stable"

    sink.clear()
    assert sink.measurements == []


def test_log_sink_writes_one_line(caplog):
    caplog.set_level(logging.INFO, logger="jolokia_collector.sinks")

    LogSink().add_fields("jolokia", {"used": 1, "max": 2}, TAGS)

    assert "jolokia,host=10.0.0.1,port=8180,server=stable max=2,used=1" in caplog.text
