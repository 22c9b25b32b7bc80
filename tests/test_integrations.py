"""Unit tests for otelcrud.integrations instrumentation functions.

Instrumentors that patch process-wide state (SQLAlchemy engine creation and
the logging record factory) are replaced by mocks; FastAPI and per-client
httpx instrumentation are applied for real.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry.trace import SpanKind

from otelcrud.integrations import (
    instrument_all,
    instrument_fastapi,
    instrument_httpx,
    instrument_logging,
    instrument_sqlalchemy,
)

SQLALCHEMY_INSTRUMENTOR = "opentelemetry.instrumentation.sqlalchemy.SQLAlchemyInstrumentor"
LOGGING_INSTRUMENTOR = "opentelemetry.instrumentation.logging.LoggingInstrumentor"
HTTPX_INSTRUMENTOR = "opentelemetry.instrumentation.httpx.HTTPXClientInstrumentor"


def _app() -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    async def ping() -> dict:
        return {"ok": True}

    @app.post("/echo")
    async def echo(payload: dict) -> dict:
        return payload

    @app.get("/health")
    async def health() -> str:
        return "OK"

    return app


def _fresh(instrumentor_cls: MagicMock) -> MagicMock:
    instrumentor_cls.return_value.is_instrumented_by_opentelemetry = False
    return instrumentor_cls


class TestInstrumentFastapi:
    """Tests for instrument_fastapi function."""

    def test_creates_server_span(self, tracer_provider, span_exporter) -> None:
        """Test a request produces a server span."""
        app = _app()
        assert instrument_fastapi(app, tracer_provider=tracer_provider) is True

        TestClient(app).get("/ping")

        kinds = [s.kind for s in span_exporter.get_finished_spans()]
        assert SpanKind.SERVER in kinds

    def test_health_excluded(self, tracer_provider, span_exporter) -> None:
        """Test the health endpoint is not traced."""
        app = _app()
        instrument_fastapi(app, tracer_provider=tracer_provider)

        TestClient(app).get("/health")

        assert span_exporter.get_finished_spans() == ()

    def test_no_receive_spans(self, tracer_provider, span_exporter) -> None:
        """Test reading the request body adds no internal receive spans."""
        app = _app()
        instrument_fastapi(app, tracer_provider=tracer_provider)

        TestClient(app).post("/echo", json={"a": 1})

        names = [s.name for s in span_exporter.get_finished_spans()]
        assert not any(name.endswith("http receive") for name in names)


class TestInstrumentSqlalchemy:
    """Tests for instrument_sqlalchemy function."""

    def test_instruments_given_engine(self, tracer_provider) -> None:
        """Test the engine is handed to the instrumentor."""
        engine = MagicMock()
        with patch(SQLALCHEMY_INSTRUMENTOR) as instrumentor_cls:
            _fresh(instrumentor_cls)
            assert instrument_sqlalchemy(engine, tracer_provider=tracer_provider) is True

        instrumentor_cls.return_value.instrument.assert_called_once_with(
            engine=engine, tracer_provider=tracer_provider
        )

    def test_instruments_future_engines(self) -> None:
        """Test without an engine every future engine is instrumented."""
        with patch(SQLALCHEMY_INSTRUMENTOR) as instrumentor_cls:
            _fresh(instrumentor_cls)
            instrument_sqlalchemy()

        instrumentor_cls.return_value.instrument.assert_called_once_with(tracer_provider=None)

    def test_already_instrumented_is_reported(self, caplog) -> None:
        """Test a second engine is not claimed as instrumented."""
        with patch(SQLALCHEMY_INSTRUMENTOR) as instrumentor_cls:
            instrumentor_cls.return_value.is_instrumented_by_opentelemetry = True
            with caplog.at_level("INFO", logger="otelcrud.integrations.instrumentation"):
                assert instrument_sqlalchemy(MagicMock()) is False

        instrumentor_cls.return_value.instrument.assert_not_called()
        assert "already instrumented" in caplog.text
        assert "instrumentation enabled" not in caplog.text


class TestInstrumentHttpx:
    """Tests for instrument_httpx function."""

    def test_client_span_for_outbound_call(self, tracer_provider, span_exporter) -> None:
        """Test a request sent with an instrumented client produces a client span."""
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
        assert instrument_httpx(client, tracer_provider=tracer_provider) is True

        client.get("http://upstream.test/ping")

        kinds = [s.kind for s in span_exporter.get_finished_spans()]
        assert kinds == [SpanKind.CLIENT]
        client.close()

    def test_global_instrumentation_applied_once(self) -> None:
        """Test without a client the process-wide instrumentor is used once."""
        with patch(HTTPX_INSTRUMENTOR) as instrumentor_cls:
            instrumentor_cls.return_value.is_instrumented_by_opentelemetry = True
            assert instrument_httpx() is False

        instrumentor_cls.return_value.instrument.assert_not_called()


class TestInstrumentLogging:
    """Tests for instrument_logging function."""

    def test_instruments_once(self) -> None:
        """Test the logging instrumentor keeps the service log format."""
        with patch(LOGGING_INSTRUMENTOR) as instrumentor_cls:
            _fresh(instrumentor_cls)
            assert instrument_logging() is True

        instrumentor_cls.return_value.instrument.assert_called_once_with(set_logging_format=False)

    def test_already_instrumented_is_skipped(self) -> None:
        """Test an active logging instrumentation is left in place."""
        with patch(LOGGING_INSTRUMENTOR) as instrumentor_cls:
            instrumentor_cls.return_value.is_instrumented_by_opentelemetry = True
            assert instrument_logging() is True

        instrumentor_cls.return_value.instrument.assert_not_called()


class TestInstrumentAll:
    """Tests for instrument_all function."""

    def test_logging_only(self) -> None:
        """Test only logging is instrumented without app, engine or client."""
        with patch(LOGGING_INSTRUMENTOR) as instrumentor_cls:
            instrumentor_cls.return_value.is_instrumented_by_opentelemetry = True
            assert instrument_all() == {"logging": True}

    def test_everything(self, tracer_provider) -> None:
        """Test every given component is instrumented."""
        client = httpx.Client()
        with patch(SQLALCHEMY_INSTRUMENTOR) as sqlalchemy_cls, patch(LOGGING_INSTRUMENTOR), patch(
            HTTPX_INSTRUMENTOR
        ):
            _fresh(sqlalchemy_cls)
            results = instrument_all(
                _app(), engine=MagicMock(), client=client, tracer_provider=tracer_provider
            )

        assert results == {"fastapi": True, "sqlalchemy": True, "httpx": True, "logging": True}
        client.close()


def test_create_app_auto_instruments(tracer_provider, span_exporter) -> None:
    """Test create_app applies every instrumentor when auto_instrument is set."""
    from otelcrud.api.app import create_app
    from tests.conftest import make_settings, server_spans

    with patch(SQLALCHEMY_INSTRUMENTOR) as sqlalchemy_cls, patch(LOGGING_INSTRUMENTOR), patch(
        HTTPX_INSTRUMENTOR
    ) as httpx_cls:
        _fresh(sqlalchemy_cls)
        app = create_app(make_settings(auto_instrument=True), tracer_provider=tracer_provider)

    sqlalchemy_cls.return_value.instrument.assert_called_once()
    httpx_cls.instrument_client.assert_called_once()
    TestClient(app).get("/users/")
    assert len(server_spans(span_exporter)) == 1
