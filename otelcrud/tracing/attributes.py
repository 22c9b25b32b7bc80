"""
Attribute type adapter.

Normalizes arbitrary business values into the closed set of value types that
an OpenTelemetry span accepts: bool, 64-bit int, float, str, or a homogeneous
sequence of one of those.

Example:
    >>> from otelcrud.tracing.attributes import Attribute, to_attributes
    >>> Attribute("apm.user.age", 30)
    Attribute(name='apm.user.age', value=30)
    >>> to_attributes({"apm.user.tags": ("a", 1)})
    {'apm.user.tags': ['a', '1']}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

Primitive = Union[bool, int, float, str]
AttributeValue = Union[Primitive, Sequence[Primitive]]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Two or more dot separated segments, e.g. "apm.db.table".
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)+$")


def is_valid_name(name: str) -> bool:
    """Check whether ``name`` is a dotted, namespaced attribute name."""
    return isinstance(name, str) and bool(_NAME_PATTERN.match(name))


def _normalize_primitive(value: Any) -> Optional[Primitive]:
    # bool is checked before int since bool is an int subclass
    if isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return _normalize_primitive(value.value)
    if isinstance(value, int):
        if INT64_MIN <= value <= INT64_MAX:
            return value
        return str(value)
    if isinstance(value, float):
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None:
        return None
    return str(value)


def _kind(value: Primitive) -> type:
    if isinstance(value, bool):
        return bool
    if isinstance(value, int):
        return int
    if isinstance(value, float):
        return float
    return str


def normalize_value(value: Any) -> Optional[AttributeValue]:
    """Coerce ``value`` into a span-compatible attribute value.

    Scalars map onto bool, int, float or str. Integers outside the signed
    64-bit range and unknown objects are stringified. Sequences become
    homogeneous lists: a sequence mixing kinds is stringified element-wise,
    except int/float mixes which widen to float.

    Args:
        value: Any business value

    Returns:
        The normalized value, or None when the value carries nothing to record
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize_primitive(v) for v in value]
        items = [v for v in items if v is not None]
        kinds = {_kind(v) for v in items}
        if len(kinds) <= 1:
            return items
        if kinds == {int, float}:
            return [float(v) for v in items]
        return [str(v) for v in items]
    return _normalize_primitive(value)


@dataclass(frozen=True)
class Attribute:
    """A named, typed span attribute.

    Attributes:
        name: Dotted namespace name such as ``apm.user.id``
        value: Normalized attribute value
    """

    name: str
    value: AttributeValue

    def __post_init__(self) -> None:
        if not is_valid_name(self.name):
            raise ValueError(f"attribute name must be a dotted namespace: {self.name!r}")
        object.__setattr__(self, "value", normalize_value(self.value))


def to_attributes(
    attributes: Union[Mapping[str, Any], Iterable[Attribute], None],
    namespace: Optional[str] = None,
) -> Dict[str, AttributeValue]:
    """Build a span attribute dictionary.

    Args:
        attributes: Mapping of name to raw value, or an iterable of Attribute
        namespace: Optional prefix joined to every mapping key with a dot

    Returns:
        Dictionary ready for ``Span.set_attributes``. Later entries win and
        entries whose value normalizes to None are dropped.
    """
    result: Dict[str, AttributeValue] = {}
    if not attributes:
        return result

    if isinstance(attributes, Mapping):
        pairs = []
        for key, raw in attributes.items():
            name = f"{namespace}.{key}" if namespace else key
            pairs.append(Attribute(name, raw))
    else:
        pairs = list(attributes)

    for attribute in pairs:
        if attribute.value is None:
            continue
        result[attribute.name] = attribute.value
    return result
