"""Data structures for flattened measurements."""
from dataclasses import dataclass, field
from typing import Any, Dict


def label_key(tags: Dict[str, str]) -> str:
    """Generate a stable key from sorted tags."""
    items = sorted(tags.items())
    return ",".join(f"{k}={v}" for k, v in items)


@dataclass
class MeasurementGroup:
    """Tags and fields collected for one group of MBeans."""
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Measurement:
    """A single (measurement, fields, tags) triple handed to a sink."""
    name: str
    fields: Dict[str, Any]
    tags: Dict[str, str]
