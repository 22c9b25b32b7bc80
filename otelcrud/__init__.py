"""
otelcrud - User CRUD service demonstrating OpenTelemetry span propagation.

Spans may be created by an auto-instrumentation agent before the application
runs. The service discovers them through an explicit request carrier, enriches
them with business and storage metadata, starts child spans where independent
timing is wanted, and records failures exactly once per span.

Example:
    >>> from otelcrud import Carrier, SpanToolkit
    >>> spans = SpanToolkit()
    >>> carrier = Carrier.from_current()
    >>> spans.enrich(spans.current(carrier), {"apm.operation": "get_user"})
"""

__version__ = "0.1.0"
__author__ = "KR"
__email__ = "Karthickrajam18@gmail.com"

from otelcrud.errors import (
    ClientError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RequestCancelledError,
    ServiceError,
    StoreError,
    StoreFailure,
)
from otelcrud.tracing import Attribute, Carrier, SpanPolicy, SpanToolkit
from otelcrud.api.app import create_app

__all__ = [
    "Attribute",
    "Carrier",
    "SpanPolicy",
    "SpanToolkit",
    "ServiceError",
    "ClientError",
    "StoreFailure",
    "NotFoundError",
    "ConflictError",
    "StoreError",
    "RequestCancelledError",
    "ExternalServiceError",
    "create_app",
]
