"""Flattening of nested Jolokia values into single-level field maps."""
from collections.abc import Mapping
from typing import Any, Dict


def flatten(node: Any, prefix: str = "") -> Dict[str, Any]:
    """
    Collapse a nested structure into a mapping of field name -> scalar.

    Keys along the path are joined with underscores, e.g.::

        flatten({"Usage": {"committed": 456, "used": 123}})
        {"Usage_committed": 456, "Usage_used": 123}

    Anything that is not a mapping (numbers, strings, bools, None, lists)
    is a leaf and lands under the current prefix, or under ``"value"`` when
    the prefix is empty.

    Args:
        node: Decoded JSON value
        prefix: Field name prefix for the keys of ``node``

    Returns:
        Flat dictionary of fields
    """
    fields: Dict[str, Any] = {}

    if isinstance(node, Mapping):
        for key, value in node.items():
            field_name = f"{prefix}_{key}" if prefix else str(key)
            fields.update(flatten(value, field_name))
    else:
        fields[prefix or "value"] = node

    return fields
