"""MBean canonical name parsing and grouping of multi-bean responses."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from jolokia_collector.flatten import flatten
from jolokia_collector.measurement import MeasurementGroup

logger = logging.getLogger(__name__)

# Property whose value names the entity instead of becoming a tag
NAME_PROPERTY = "name"


class BeanNameError(ValueError):
    """Raised when an MBean name is not of the form domain:key=value,..."""

    def __init__(self, bean_name: str, reason: str):
        super().__init__(f"Malformed MBean name '{bean_name}': {reason}")
        self.bean_name = bean_name
        self.reason = reason


def parse_bean_name(bean_name: str) -> List[Tuple[str, str]]:
    """
    Parse an MBean canonical name into ordered (key, value) properties.

    Spaces are replaced with underscores first, so
    ``java.lang:type=Memory,name=Foo Bar`` parses to
    ``[("type", "Memory"), ("name", "Foo_Bar")]``.

    Raises:
        BeanNameError: if the domain separator, a property list or a
            ``key=value`` pair is missing
    """
    name = bean_name.replace(" ", "_")

    domain, sep, meta = name.partition(":")
    if not sep:
        raise BeanNameError(bean_name, "missing ':' after domain")
    if not meta:
        raise BeanNameError(bean_name, "no key properties")

    properties = []
    for segment in meta.split(","):
        key, sep, value = segment.partition("=")
        if not sep:
            raise BeanNameError(bean_name, f"property '{segment}' has no '='")
        if not key:
            raise BeanNameError(bean_name, f"property '{segment}' has an empty key")
        properties.append((key, value))

    return properties


@dataclass
class GroupingResult:
    """Groups built from a multi-bean response plus the beans that were skipped."""
    groups: Dict[str, MeasurementGroup] = field(default_factory=dict)
    errors: List[Tuple[str, BeanNameError]] = field(default_factory=list)


def group_beans(
    entities: Mapping[str, Any],
    base_tags: Dict[str, str]
) -> GroupingResult:
    """
    Partition the attributes of several MBeans into measurement groups.

    Each bean's ``name`` property becomes the prefix of its flattened
    fields; every other property becomes a tag. Beans whose remaining
    property values concatenate to the same group key share one group,
    so ``type=MemoryPool,name=Eden`` and ``type=MemoryPool,name=Survivor``
    end up as ``Eden_*`` and ``Survivor_*`` fields of a single group
    tagged ``type=MemoryPool``.

    A malformed bean name only drops that bean; it is logged and returned
    in ``GroupingResult.errors``.

    Args:
        entities: Mapping of MBean name -> attribute values
        base_tags: Tags shared by every group (server, host, port)

    Returns:
        GroupingResult keyed by group key
    """
    result = GroupingResult()

    for bean_name, attributes in entities.items():
        try:
            properties = parse_bean_name(bean_name)
        except BeanNameError as e:
            logger.error(f"Skipping bean: {e}")
            result.errors.append((bean_name, e))
            continue

        measurement_name = ""
        group_key = ""
        bean_tags = dict(base_tags)
        for key, value in properties:
            if key == NAME_PROPERTY:
                measurement_name = value
                continue
            group_key += value
            bean_tags[key] = value

        fields = flatten(attributes, measurement_name)
        if not fields:
            logger.debug(f"Bean '{bean_name}' has no attributes")
            continue

        group = result.groups.get(group_key)
        if group is None:
            group = result.groups[group_key] = MeasurementGroup()

        group.fields.update(fields)
        group.tags = bean_tags

    return result
