"""
otelcrud.errors - Error taxonomy shared by the handler and store layers.

Layers below the handler raise these exceptions rather than logging them.
The handler is the single point that records them on the active span and
translates them to an HTTP status code.

Hierarchy:
    ServiceError
    ├── ClientError            400, rejected precondition, never recorded
    ├── StoreFailure           raised by the store adapter, always recorded
    │   ├── NotFoundError      404
    │   ├── ConflictError      409
    │   ├── StoreError         500
    │   └── RequestCancelledError  504
    └── ExternalServiceError   502, outbound API call failed, always recorded
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for all errors surfaced by the service.

    Attributes:
        status_code: HTTP status the handler translates the error to
        classification: Short machine-readable label used on spans
        recordable: Whether the error is recorded on the active span
    """

    status_code: int = 500
    classification: str = "internal"
    recordable: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClientError(ServiceError):
    """Malformed path or missing/invalid field."""

    status_code = 400
    classification = "client"
    recordable = False


class StoreFailure(ServiceError):
    """Base class for failures observed at the store boundary."""

    classification = "store"


class NotFoundError(StoreFailure):
    """The operation targeted an entity that does not exist."""

    status_code = 404
    classification = "not_found"


class ConflictError(StoreFailure):
    """The operation would violate a uniqueness constraint."""

    status_code = 409
    classification = "conflict"


class StoreError(StoreFailure):
    """The backing store failed for any other reason."""

    status_code = 500
    classification = "store"


class RequestCancelledError(StoreFailure):
    """The caller went away or the request deadline elapsed."""

    status_code = 504
    classification = "cancelled"


class ExternalServiceError(ServiceError):
    """An outbound call to a third-party API failed.

    The classification names the failing step, e.g. ``http_request_failed``
    or ``json_parse_failed``.
    """

    status_code = 502
    classification = "external"

    def __init__(self, message: str, classification: str = "external") -> None:
        super().__init__(message)
        self.classification = classification
