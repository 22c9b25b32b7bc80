"""
Diagnostic endpoints for checking what reaches the tracing backend.

``/api/test-attributes`` emits one span carrying every attribute value type a
span accepts. ``/api/call`` fetches a third-party JSON document inside a
``call_external_api`` span nested under ``handle_api_button_click``; with the
httpx instrumentor active the outbound client span nests under both.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from opentelemetry import context as otel_context
from opentelemetry import trace

from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.errors import ExternalServiceError, ServiceError
from otelcrud.tracing.carrier import Carrier
from otelcrud.tracing.spans import SpanToolkit

logger = logging.getLogger(__name__)

USER_AGENT = "otelcrud/diagnostics"

DEFAULT_API_URL = "https://jsonplaceholder.typicode.com/posts/1"

ATTRIBUTE_SAMPLES: Dict[str, Any] = {
    "apm.test.bool": True,
    "apm.test.int64": 9876543210,
    "apm.test.float64": 123.456,
    "apm.test.string": "hello world",
    "apm.test.bool_slice": [True, False, True],
    "apm.test.int64_slice": [10, 20, 30],
    "apm.test.float64_slice": [1.5, 2.5, 3.5],
    "apm.test.string_slice": ["apple", "banana", "cherry"],
}

ATTRIBUTE_KINDS = ["bool", "int64", "float64", "string", "[]bool", "[]int64", "[]float64", "[]string"]


class DiagnosticsHandler:
    """Span and outbound-call diagnostics.

    Attributes:
        spans: Span operations
        client: HTTP client for the outbound call
        api_url: Document fetched by ``call_external``
        timeout_seconds: Upper bound on the outbound call
    """

    def __init__(
        self,
        spans: SpanToolkit,
        client: httpx.Client,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.spans = spans
        self.client = client
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds

    def test_attributes(self, request: InboundRequest, carrier: Carrier) -> Reply:
        """GET /api/test-attributes - one span with every attribute type."""
        with self.spans.started(carrier, "test_all_attribute_types") as (_, span):
            self.spans.enrich(span, ATTRIBUTE_SAMPLES)

        return Reply(
            status_code=200,
            body={"message": "All attribute types set on span", "attributes_set": ATTRIBUTE_KINDS},
        )

    def call_external(self, request: InboundRequest, carrier: Carrier) -> Reply:
        """GET /api/call - fetch the configured JSON document.

        Returns 200 with the document plus a ``_metadata`` object, or 502
        when the call or the decoding fails.
        """
        with self.spans.started(carrier, "handle_api_button_click") as (carrier, span):
            self.spans.enrich(
                span,
                {
                    "apm.http.method": request.method,
                    "apm.http.url": request.target,
                    "apm.user.action": "button_click",
                    "apm.operation": "external_api_call",
                    "apm.custom.attribute": "demo_value",
                    "app.component": "api_handler",
                    "apm.business.operation": "fetch_post_data",
                },
            )
            logger.info("Calling external API: %s", self.api_url)

            try:
                result = self._fetch(carrier)
            except ServiceError as exc:
                self.spans.record_error(span, exc)
                logger.error(
                    "External API call failed: %s",
                    exc.message,
                    extra={"classification": exc.classification},
                )
                return Reply.error(exc.status_code, f"Error: {exc.message}")

            self.spans.enrich(span, {"apm.result.success": True, "apm.result.type": "json"})
            return Reply(status_code=200, body=result)

    def _timeout(self, carrier: Carrier) -> float:
        remaining = carrier.remaining()
        if remaining is None:
            return self.timeout_seconds
        return min(self.timeout_seconds, remaining)

    def _fail(self, span: trace.Span, message: str, classification: str) -> ExternalServiceError:
        error = ExternalServiceError(message, classification)
        self.spans.record_error(span, error)
        return error

    def _fetch(self, carrier: Carrier) -> Dict[str, Any]:
        with self.spans.started(carrier, "call_external_api") as (carrier, span):
            self.spans.enrich(
                span,
                {
                    "apm.external.api.url": self.api_url,
                    "apm.external.api.method": "GET",
                    "apm.external.api.provider": httpx.URL(self.api_url).host.split(".")[0],
                    "apm.data.type": "post",
                },
            )
            carrier.check()

            started = time.monotonic()
            token = otel_context.attach(carrier.context)
            try:
                response = self.client.get(
                    self.api_url,
                    headers={"User-Agent": USER_AGENT},
                    timeout=self._timeout(carrier),
                )
            except httpx.HTTPError as exc:
                raise self._fail(
                    span, f"failed to call external API: {exc}", "http_request_failed"
                ) from exc
            finally:
                otel_context.detach(token)
            duration_ms = int((time.monotonic() - started) * 1000)

            content_length: Optional[str] = response.headers.get("content-length")
            self.spans.enrich(
                span,
                {
                    "apm.external.api.duration_ms": duration_ms,
                    "apm.external.api.status_code": response.status_code,
                    "apm.external.api.status": f"{response.status_code} {response.reason_phrase}",
                    "apm.external.api.response.content_length": (
                        int(content_length) if content_length and content_length.isdigit() else -1
                    ),
                    "apm.external.api.response.body_size_bytes": len(response.content),
                },
            )
            logger.info(
                "External API called: status=%d, duration=%dms", response.status_code, duration_ms
            )

            try:
                result = response.json()
            except ValueError as exc:
                raise self._fail(span, f"failed to parse JSON: {exc}", "json_parse_failed") from exc
            if not isinstance(result, dict):
                raise self._fail(
                    span, "failed to parse JSON: expected an object", "json_parse_failed"
                )

            result["_metadata"] = {
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "traced_with_otel": True,
                "custom_attributes_set": True,
            }
            self.spans.enrich(span, {"apm.response.parsed": True})
            return result
