"""
otelcrud.integrations - OpenTelemetry auto-instrumentation for the service.

Example:
    >>> from otelcrud.integrations import instrument_fastapi
    >>> instrument_fastapi(app)
"""

from otelcrud.integrations.instrumentation import (
    instrument_all,
    instrument_fastapi,
    instrument_httpx,
    instrument_logging,
    instrument_sqlalchemy,
)

__all__ = [
    "instrument_fastapi",
    "instrument_sqlalchemy",
    "instrument_httpx",
    "instrument_logging",
    "instrument_all",
]
