"""
OpenTelemetry tracer provider setup.

The service does not export spans itself. This module only wires the SDK
provider that an auto-instrumentation agent or the CLI would otherwise set
up, so the service can run stand-alone with console output.

Example:
    >>> from otelcrud.tracing import setup_tracing, get_tracer
    >>>
    >>> setup_tracing(service_name="otelcrud", console_output=True)
    >>> tracer = get_tracer("otelcrud.api")
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

logger = logging.getLogger(__name__)

# Global reference to the configured provider
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    console_output: bool = False,
    use_batch_processor: bool = True,
    additional_exporters: Optional[list[SpanExporter]] = None,
    set_global: bool = True,
) -> TracerProvider:
    """Create a TracerProvider for the service.

    Args:
        service_name: Name of the service (``service.name`` resource attribute).
        console_output: Whether to print finished spans to stdout.
        use_batch_processor: Use BatchSpanProcessor (True) or SimpleSpanProcessor.
        additional_exporters: Extra SpanExporters to attach.
        set_global: Install the provider as the global tracer provider.

    Returns:
        The configured TracerProvider.
    """
    global _tracer_provider

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    exporters: list[SpanExporter] = []
    if console_output:
        exporters.append(ConsoleSpanExporter())
    if additional_exporters:
        exporters.extend(additional_exporters)

    for exporter in exporters:
        if use_batch_processor:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        else:
            provider.add_span_processor(SimpleSpanProcessor(exporter))

    if set_global:
        trace.set_tracer_provider(provider)
        _tracer_provider = provider

    logger.info(
        "Tracing configured: service=%s, exporters=%d, global=%s",
        service_name,
        len(exporters),
        set_global,
    )

    return provider


def get_tracer(
    name: str,
    version: Optional[str] = None,
    provider: Optional[trace.TracerProvider] = None,
) -> trace.Tracer:
    """Get a tracer from ``provider`` or from the global provider.

    Args:
        name: Name of the tracer (usually module name).
        version: Optional version of the tracer.
        provider: Explicit provider; the global one when omitted.

    Returns:
        A Tracer instance for creating spans.
    """
    provider = provider or trace.get_tracer_provider()
    return provider.get_tracer(name, version)


def shutdown_tracing() -> None:
    """Flush pending spans and shut down the provider set by setup_tracing."""
    global _tracer_provider

    if _tracer_provider:
        logger.info("Shutting down tracing...")
        _tracer_provider.shutdown()
        _tracer_provider = None
        logger.info("Tracing shutdown complete")
