"""
Request-scoped carrier.

A Carrier threads the ambient span and the request's cancellation signal
through every call boundary as an explicit parameter. Carriers are immutable:
deriving a carrier for a nested span returns a new value, while the
cancellation event is shared by every carrier derived from the same request.

Example:
    >>> carrier = Carrier.from_current(timeout_seconds=5.0)
    >>> child = carrier.with_span(span)
    >>> child.check()  # raises RequestCancelledError once cancelled or expired
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Optional

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.context import Context

from otelcrud.errors import RequestCancelledError


@dataclass(frozen=True)
class Carrier:
    """Propagate-by-value request context.

    Attributes:
        context: OpenTelemetry context holding the ambient span (if any)
        deadline: Monotonic time after which the request counts as cancelled
        cancel_event: Shared signal set when the caller goes away
    """

    context: Context = field(default_factory=Context)
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @classmethod
    def empty(cls) -> "Carrier":
        """Carrier with no ambient span and no deadline."""
        return cls()

    @classmethod
    def from_current(cls, timeout_seconds: Optional[float] = None) -> "Carrier":
        """Capture the process-ambient OpenTelemetry context.

        This is the single point where the implicit context (populated by an
        auto-instrumentation agent, if one is active) is read. Everything
        downstream receives the carrier explicitly.

        Args:
            timeout_seconds: Optional request deadline relative to now

        Returns:
            New Carrier for the request
        """
        deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
        return cls(context=otel_context.get_current(), deadline=deadline)

    @property
    def span(self) -> trace.Span:
        """The ambient span, or the invalid no-op span."""
        return trace.get_current_span(self.context)

    def with_span(self, span: trace.Span) -> "Carrier":
        """Derive a carrier in which ``span`` is ambient."""
        return replace(self, context=trace.set_span_in_context(span, self.context))

    def cancel(self) -> None:
        """Signal cancellation to every carrier sharing this request."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise RequestCancelledError if the request was cancelled.

        Raises:
            RequestCancelledError: If cancelled or past the deadline
        """
        if self.cancel_event.is_set():
            raise RequestCancelledError("request cancelled by caller")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise RequestCancelledError("request deadline exceeded")
