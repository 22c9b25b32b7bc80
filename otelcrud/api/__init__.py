"""
otelcrud.api - HTTP surface of the users service.

Classes:
    RequestDispatcher: Routes (method, path) to UserHandler operations
    DiagnosticsHandler: Attribute-type and outbound-call diagnostics
    UserHandler: Per-operation business logic with span enrichment
    InboundRequest, Reply: Values exchanged between the two
"""

from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.api.diagnostics import DiagnosticsHandler
from otelcrud.api.handlers import UserHandler
from otelcrud.api.dispatcher import RequestDispatcher

__all__ = [
    "InboundRequest",
    "Reply",
    "UserHandler",
    "RequestDispatcher",
    "DiagnosticsHandler",
]
