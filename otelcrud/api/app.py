"""
FastAPI application for the traced users service.

Endpoints:
    GET /health - Health check, plain ``OK``
    GET /users/ - List all users
    POST /users/ - Create a user
    GET /users/{id} - Get a user
    PUT /users/{id} - Update a user
    DELETE /users/{id} - Delete a user
    GET /api/test-attributes - Emit a span with every attribute type
    GET /api/call - Fetch a third-party JSON document in traced spans

Example:
    Run with uvicorn:

        $ uvicorn otelcrud.api.app:create_app --factory

    Or through the CLI:

        $ python -m otelcrud serve --port 8080
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

import anyio
import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from opentelemetry import trace
from starlette.concurrency import run_in_threadpool
from starlette.types import Receive

from otelcrud import __version__
from otelcrud.api.diagnostics import DiagnosticsHandler
from otelcrud.api.dispatcher import RequestDispatcher
from otelcrud.api.handlers import UserHandler
from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.config import Settings, get_settings
from otelcrud.integrations import (
    instrument_fastapi,
    instrument_httpx,
    instrument_logging,
    instrument_sqlalchemy,
)
from otelcrud.store import Database, UserRepository
from otelcrud.tracing import Carrier, SpanToolkit, get_tracer

logger = logging.getLogger(__name__)

APP_NAME = "otelcrud"
APP_DESCRIPTION = "User management API with OpenTelemetry span enrichment"

# Methods routed to the dispatcher; it answers 405 for the unsupported ones.
DISPATCHED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


async def run_until_disconnect(
    receive: Receive,
    carrier: Carrier,
    operation: Callable[[InboundRequest, Carrier], Reply],
    inbound: InboundRequest,
) -> Reply:
    """Run a blocking handler operation in the threadpool.

    While it runs, the ASGI receive channel is watched; an
    ``http.disconnect`` cancels the carrier so that the store stops at its
    next cancellation check. The request body must already be consumed.

    Args:
        receive: ASGI receive callable of the request
        carrier: Carrier handed to ``operation``
        operation: Dispatcher or handler entry point
        inbound: The request passed to ``operation``

    Returns:
        The reply of ``operation``
    """

    async def watch_disconnect() -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                logger.info("Client disconnected: %s %s", inbound.method, inbound.path)
                carrier.cancel()
                return

    reply: Optional[Reply] = None
    error: Optional[Exception] = None
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(watch_disconnect)
            try:
                reply = await run_in_threadpool(operation, inbound, carrier)
            except Exception as exc:
                # Re-raised below so it does not surface as an ExceptionGroup
                error = exc
            finally:
                tg.cancel_scope.cancel()
    except asyncio.CancelledError:
        carrier.cancel()
        raise

    if error is not None:
        raise error
    return reply


def create_app(
    settings: Optional[Settings] = None,
    tracer_provider: Optional[trace.TracerProvider] = None,
    database: Optional[Database] = None,
    http_client: Optional[httpx.Client] = None,
) -> FastAPI:
    """Build the application and its handler stack.

    Args:
        settings: Service settings; loaded from the environment when omitted
        tracer_provider: Provider for spans minted by the service and by the
            FastAPI/SQLAlchemy/httpx instrumentors; the global provider when
            omitted
        database: Pre-built database; created from ``settings.database_url``
            when omitted
        http_client: Client for outbound calls; created (and closed on
            shutdown) when omitted

    Returns:
        The configured FastAPI application
    """
    settings = settings or get_settings()

    spans = SpanToolkit(get_tracer("otelcrud", __version__, provider=tracer_provider))
    database = database or Database(settings.database_url, spans)
    database.init_schema(Carrier.empty(), seed=settings.seed_demo_data)

    repository = UserRepository(database, spans, settings.span_policy)
    handler = UserHandler(repository, spans, settings.span_policy)
    dispatcher = RequestDispatcher(handler, resource="users")

    owns_client = http_client is None
    http_client = http_client or httpx.Client()
    diagnostics = DiagnosticsHandler(
        spans,
        http_client,
        api_url=settings.external_api_url,
        timeout_seconds=settings.external_api_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Application starting: %s v%s (span policy: %s)",
            settings.service_name,
            __version__,
            settings.span_policy.value,
        )
        yield
        logger.info("Application shutting down: %s", settings.service_name)
        if owns_client:
            http_client.close()
        database.close()

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.dispatcher = dispatcher
    app.state.diagnostics = diagnostics

    def _inbound(request: Request, body: bytes = b"") -> InboundRequest:
        return InboundRequest(
            method=request.method,
            path=request.url.path,
            url=str(request.url),
            body=body,
        )

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        """Health check endpoint."""
        return "OK"

    @app.get("/api/test-attributes")
    async def test_attributes(request: Request) -> Response:
        """Emit a span carrying every supported attribute value type."""
        carrier = Carrier.from_current(settings.request_timeout_seconds)
        reply = await run_until_disconnect(
            request.receive, carrier, diagnostics.test_attributes, _inbound(request)
        )
        return RequestDispatcher.respond(reply)

    @app.get("/api/call")
    async def call_external(request: Request) -> Response:
        """Fetch the configured external JSON document."""
        carrier = Carrier.from_current(settings.request_timeout_seconds)
        reply = await run_until_disconnect(
            request.receive, carrier, diagnostics.call_external, _inbound(request)
        )
        return RequestDispatcher.respond(reply)

    async def users_endpoint(request: Request) -> Response:
        body = await request.body()
        carrier = Carrier.from_current(settings.request_timeout_seconds)
        reply = await run_until_disconnect(
            request.receive, carrier, dispatcher.dispatch, _inbound(request, body)
        )
        return dispatcher.respond(reply)

    app.add_api_route("/users", users_endpoint, methods=DISPATCHED_METHODS, include_in_schema=False)
    app.add_api_route(
        "/users/{target:path}", users_endpoint, methods=DISPATCHED_METHODS, include_in_schema=False
    )

    if settings.auto_instrument:
        instrument_fastapi(app, tracer_provider=tracer_provider)
        instrument_sqlalchemy(database.engine, tracer_provider=tracer_provider)
        instrument_httpx(http_client, tracer_provider=tracer_provider)
        instrument_logging()

    return app
