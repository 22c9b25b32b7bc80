"""
Auto-instrumentation for the service's libraries.

These instrumentors play the role of the external agent: they create the
server span for every HTTP request, the query spans for every SQL statement
and the client spans for outbound HTTP calls, all outside application
control. The application only ever reads those spans through
``Carrier.from_current()`` and ``SpanToolkit.current()``.

Example:
    >>> from fastapi import FastAPI
    >>> from otelcrud.integrations import instrument_all
    >>>
    >>> app = FastAPI()
    >>> results = instrument_all(app, engine=database.engine)
    >>> print(results)
    {'fastapi': True, 'sqlalchemy': True, 'logging': True}
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import trace

logger = logging.getLogger(__name__)


def instrument_fastapi(
    app,  # FastAPI app - type hint omitted to avoid import
    tracer_provider: Optional[trace.TracerProvider] = None,
    excluded_urls: Optional[str] = "/health",
) -> bool:
    """Create a server span for every request handled by ``app``.

    The per-message ``receive`` spans are skipped: the endpoints keep a
    receive call pending for the whole request to notice client disconnects.

    Args:
        app: The FastAPI application instance.
        tracer_provider: Provider for the server spans; global when omitted.
        excluded_urls: Comma separated URL patterns that are not traced.

    Returns:
        True if the instrumentation was applied.
    """
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    except ImportError:
        logger.warning(
            "opentelemetry-instrumentation-fastapi not installed. "
            "Install with: pip install opentelemetry-instrumentation-fastapi"
        )
        return False

    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=tracer_provider,
        excluded_urls=excluded_urls,
        exclude_spans=["receive"],
    )
    logger.info("FastAPI auto-instrumentation enabled")
    return True


def instrument_sqlalchemy(
    engine=None,
    tracer_provider: Optional[trace.TracerProvider] = None,
) -> bool:
    """Create a span for every SQL statement executed on ``engine``.

    The SQLAlchemy instrumentor is process-wide and can be applied once;
    later calls leave the new engine uninstrumented and return False.

    Args:
        engine: SQLAlchemy engine to instrument. If None, instruments all
                engines created after this call.
        tracer_provider: Provider for the query spans; global when omitted.

    Returns:
        True if the instrumentation was applied.
    """
    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    except ImportError:
        logger.warning(
            "opentelemetry-instrumentation-sqlalchemy not installed. "
            "Install with: pip install opentelemetry-instrumentation-sqlalchemy"
        )
        return False

    instrumentor = SQLAlchemyInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        logger.warning("SQLAlchemy already instrumented; engine %s not added", engine)
        return False

    if engine is not None:
        instrumentor.instrument(engine=engine, tracer_provider=tracer_provider)
    else:
        instrumentor.instrument(tracer_provider=tracer_provider)
    logger.info("SQLAlchemy instrumentation enabled")
    return True


def instrument_httpx(
    client=None,
    tracer_provider: Optional[trace.TracerProvider] = None,
) -> bool:
    """Create a client span for every request sent with httpx.

    Args:
        client: httpx.Client to instrument. If None, every client in the
                process is instrumented.
        tracer_provider: Provider for the client spans; global when omitted.

    Returns:
        True if the instrumentation was applied.
    """
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        logger.warning(
            "opentelemetry-instrumentation-httpx not installed. "
            "Install with: pip install opentelemetry-instrumentation-httpx"
        )
        return False

    if client is not None:
        HTTPXClientInstrumentor.instrument_client(client, tracer_provider=tracer_provider)
    else:
        instrumentor = HTTPXClientInstrumentor()
        if instrumentor.is_instrumented_by_opentelemetry:
            return False
        instrumentor.instrument(tracer_provider=tracer_provider)
    logger.info("HTTPX instrumentation enabled")
    return True


def instrument_logging() -> bool:
    """Inject trace_id and span_id into every log record.

    Returns:
        True if the instrumentation was applied.
    """
    try:
        from opentelemetry.instrumentation.logging import LoggingInstrumentor
    except ImportError:
        logger.warning(
            "opentelemetry-instrumentation-logging not installed. "
            "Install with: pip install opentelemetry-instrumentation-logging"
        )
        return False

    instrumentor = LoggingInstrumentor()
    if not instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.instrument(set_logging_format=False)
    logger.info("Logging instrumentation enabled")
    return True


def instrument_all(
    app=None,
    engine=None,
    client=None,
    tracer_provider: Optional[trace.TracerProvider] = None,
) -> dict[str, bool]:
    """Instrument every library the service uses.

    Args:
        app: Optional FastAPI application.
        engine: Optional SQLAlchemy engine.
        client: Optional httpx.Client for outbound calls.
        tracer_provider: Provider for all instrumentation spans.

    Returns:
        Dict mapping library name to whether instrumentation succeeded.
    """
    results: dict[str, bool] = {}
    if app is not None:
        results["fastapi"] = instrument_fastapi(app, tracer_provider=tracer_provider)
    if engine is not None:
        results["sqlalchemy"] = instrument_sqlalchemy(engine, tracer_provider=tracer_provider)
    if client is not None:
        results["httpx"] = instrument_httpx(client, tracer_provider=tracer_provider)
    results["logging"] = instrument_logging()

    enabled = [k for k, v in results.items() if v]
    logger.info("Auto-instrumentation complete: %s", ", ".join(enabled) or "none")
    return results
