"""
Span handle operations: resolve, enrich, start and record errors.

All four operations live on one SpanToolkit so that a test can substitute a
fake recording every call and assert which operation a code path invoked.

The toolkit never assumes that a span exists, is valid, or is recording.
A span created by an external instrumentation agent, a span minted here, and
the invalid no-op span are all handled through the same calls.

Example:
    >>> from opentelemetry.sdk.trace import TracerProvider
    >>> spans = SpanToolkit(TracerProvider().get_tracer("otelcrud"))
    >>> carrier = Carrier.empty()
    >>> span = spans.current(carrier)          # INVALID_SPAN here
    >>> spans.enrich(span, {"apm.user.id": "u1"})  # silently discarded
    >>> with spans.started(carrier, "db:GetUser") as (child_carrier, child):
    ...     spans.enrich(child, {"apm.db.table": "users"})
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from otelcrud.tracing.attributes import Attribute, is_valid_name, normalize_value, to_attributes
from otelcrud.tracing.carrier import Carrier

logger = logging.getLogger(__name__)

Attributes = Union[Mapping[str, Any], Iterable[Attribute], None]

# Exception attribute listing the (trace_id, span_id) pairs it was recorded on.
_RECORDED_ON = "__otelcrud_recorded_on__"


class SpanPolicy(str, Enum):
    """Where business and storage metadata lands.

    ENRICH: attributes are added to the span already ambient in the carrier.
    CHILD: each handler and store operation starts its own child span.

    A deployment picks exactly one policy for every layer.
    """

    ENRICH = "enrich"
    CHILD = "child"


class SpanToolkit:
    """Operations on span handles carried by a Carrier.

    Attributes:
        tracer: Tracer used by ``start`` to mint new spans
    """

    def __init__(self, tracer: Optional[trace.Tracer] = None) -> None:
        self.tracer = tracer or trace.get_tracer("otelcrud")

    def current(self, carrier: Carrier) -> trace.Span:
        """Return the ambient span of ``carrier``, or the no-op span."""
        return trace.get_current_span(carrier.context)

    def enrich(self, span: trace.Span, attributes: Attributes) -> None:
        """Attach attributes to an existing span in place.

        Trace identity, parent linkage and timing are left untouched. On a
        non-recording span the call is discarded. Names that are not dotted
        namespaces are logged and skipped; the remaining pairs still land.

        Args:
            span: Any span handle, including the invalid span
            attributes: Mapping or iterable of Attribute
        """
        if not span.is_recording():
            return
        values = self._collect(attributes)
        if values:
            span.set_attributes(values)

    @staticmethod
    def _collect(attributes: Attributes) -> Dict[str, Any]:
        """Normalize ``attributes``, dropping pairs with an invalid name."""
        if not attributes:
            return {}
        if not isinstance(attributes, Mapping):
            return to_attributes(attributes)

        values: Dict[str, Any] = {}
        for name, raw in attributes.items():
            if not is_valid_name(name):
                logger.warning("Dropped span attribute with invalid name: %r", name)
                continue
            value = normalize_value(raw)
            if value is not None:
                values[name] = value
        return values

    def start(self, carrier: Carrier, name: str) -> Tuple[Carrier, trace.Span]:
        """Start a new span under the carrier's ambient span.

        With an ambient span the new span is its child and shares its trace
        id. Without one a new root span and trace id are minted. The caller
        owns the span and must end it exactly once.

        Args:
            carrier: Carrier of the calling unit of work
            name: Span name

        Returns:
            Tuple of (carrier with the new span ambient, new span)
        """
        span = self.tracer.start_span(name, context=carrier.context)
        logger.debug(
            "Span started: %s",
            name,
            extra={
                "trace_id": format(span.get_span_context().trace_id, "032x"),
                "span_id": format(span.get_span_context().span_id, "016x"),
            },
        )
        return carrier.with_span(span), span

    @contextmanager
    def started(self, carrier: Carrier, name: str) -> Iterator[Tuple[Carrier, trace.Span]]:
        """Context manager around ``start`` that ends the span on every exit."""
        child_carrier, span = self.start(carrier, name)
        try:
            yield child_carrier, span
        finally:
            span.end()

    def record_error(
        self,
        span: trace.Span,
        error: BaseException,
        classification: Optional[str] = None,
    ) -> bool:
        """Record ``error`` on ``span`` and mark the span as failed.

        Adds an ``exception`` event, sets the status to ERROR and sets the
        ``apm.error.*`` classification attributes. Recording the same
        exception on the same span a second time does nothing. The span is
        not ended.

        Args:
            span: Span active when the failure was observed
            error: The failure
            classification: Label for ``apm.error.type``; defaults to the
                error's ``classification`` attribute or its class name

        Returns:
            True if the error was recorded, False if discarded
        """
        if not span.is_recording():
            return False

        ctx = span.get_span_context()
        key = (ctx.trace_id, ctx.span_id)
        recorded_on = getattr(error, _RECORDED_ON, None)
        if recorded_on is None:
            recorded_on = set()
            try:
                setattr(error, _RECORDED_ON, recorded_on)
            except AttributeError:
                logger.debug("Cannot tag %s as recorded", type(error).__name__)
        elif key in recorded_on:
            return False
        recorded_on.add(key)

        label = classification or getattr(error, "classification", None) or type(error).__name__
        message = str(error) or type(error).__name__
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, message))
        span.set_attributes(
            {
                "apm.error": True,
                "apm.error.type": label,
                "apm.error.message": message,
            }
        )
        return True
