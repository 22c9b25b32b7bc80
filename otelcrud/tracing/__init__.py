"""
otelcrud.tracing - Span handle operations and request carrier.

Example:
    >>> from otelcrud.tracing import Carrier, SpanToolkit
    >>> spans = SpanToolkit()
    >>> carrier = Carrier.from_current()
    >>> spans.enrich(spans.current(carrier), {"apm.operation": "get_user"})
"""

from otelcrud.tracing.attributes import (
    Attribute,
    AttributeValue,
    is_valid_name,
    normalize_value,
    to_attributes,
)
from otelcrud.tracing.carrier import Carrier
from otelcrud.tracing.spans import SpanPolicy, SpanToolkit
from otelcrud.tracing.setup import get_tracer, setup_tracing, shutdown_tracing

__all__ = [
    # Attributes
    "Attribute",
    "AttributeValue",
    "is_valid_name",
    "normalize_value",
    "to_attributes",
    # Propagation
    "Carrier",
    "SpanPolicy",
    "SpanToolkit",
    # Setup
    "setup_tracing",
    "get_tracer",
    "shutdown_tracing",
]
