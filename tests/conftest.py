"""Shared fixtures for the otelcrud test suite.

Every test gets its own TracerProvider backed by an InMemorySpanExporter; the
global tracer provider is never touched.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind

from otelcrud.api.app import create_app
from otelcrud.config import Settings
from otelcrud.integrations import instrument_fastapi
from otelcrud.store import Database
from otelcrud.tracing import Carrier, SpanPolicy, SpanToolkit


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Exporter collecting every finished span."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    """Per-test provider exporting synchronously to ``span_exporter``."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def tracer(tracer_provider: TracerProvider):
    """Tracer standing in for an external instrumentation agent."""
    return tracer_provider.get_tracer("tests.agent")


@pytest.fixture
def spans(tracer_provider: TracerProvider) -> SpanToolkit:
    """SpanToolkit minting spans on the per-test provider."""
    return SpanToolkit(tracer_provider.get_tracer("otelcrud"))


@pytest.fixture
def database(spans: SpanToolkit) -> Database:
    """Fresh in-memory database with the schema and no demo data."""
    db = Database("sqlite://", spans)
    db.init_schema(Carrier.empty(), seed=False)
    yield db
    db.close()


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment's .env file."""
    values = {"auto_instrument": False, "seed_demo_data": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def app_factory(tracer_provider: TracerProvider) -> Callable[..., FastAPI]:
    """Build an app whose requests are traced by the FastAPI instrumentor."""

    def _build(
        instrumented: bool = True,
        database: Optional[Database] = None,
        http_client: Optional[httpx.Client] = None,
        **overrides,
    ) -> FastAPI:
        app = create_app(
            make_settings(**overrides),
            tracer_provider=tracer_provider,
            database=database,
            http_client=http_client,
        )
        if instrumented:
            instrument_fastapi(app, tracer_provider=tracer_provider)
        return app

    return _build


@pytest.fixture
def client(app_factory: Callable[..., FastAPI]) -> TestClient:
    """Client for an instrumented app using SpanPolicy.ENRICH."""
    return TestClient(app_factory())


@pytest.fixture
def child_client(app_factory: Callable[..., FastAPI]) -> TestClient:
    """Client for an instrumented app using SpanPolicy.CHILD."""
    return TestClient(app_factory(span_policy=SpanPolicy.CHILD))


def server_spans(exporter: InMemorySpanExporter) -> List[ReadableSpan]:
    """Server spans created by the FastAPI instrumentor."""
    return [s for s in exporter.get_finished_spans() if s.kind == SpanKind.SERVER]


def last_server_span(exporter: InMemorySpanExporter) -> ReadableSpan:
    found = server_spans(exporter)
    assert found, "no server span was exported"
    return found[-1]


def span_named(exporter: InMemorySpanExporter, name: str) -> Optional[ReadableSpan]:
    for span in exporter.get_finished_spans():
        if span.name == name:
            return span
    return None


def exception_events(span: ReadableSpan) -> list:
    return [event for event in span.events if event.name == "exception"]
