"""
otelcrud.cli - Command-line interface for the users service.

Usage:
    otelcrud serve [--host HOST] [--port PORT] [--database-url URL]
                   [--span-policy {enrich,child}] [--console-export] [-v]
    otelcrud init-db [--database-url URL] [--no-seed]

Settings not given on the command line come from ``OTELCRUD_*`` environment
variables or a ``.env`` file.

Examples:
    otelcrud serve --port 8081 --console-export
    otelcrud serve --span-policy child
    otelcrud init-db --database-url sqlite:///users.db
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, List

from otelcrud import __version__
from otelcrud.config import Settings, configure_logging
from otelcrud.errors import ServiceError
from otelcrud.tracing import Carrier, SpanPolicy


def parse_args(args: List[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="otelcrud",
        description="User CRUD service with OpenTelemetry span enrichment",
        epilog="Example: otelcrud serve --port 8081 --console-export",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", type=str, default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Bind port")
    serve.add_argument("--database-url", type=str, default=None, help="SQLAlchemy database URL")
    serve.add_argument(
        "--span-policy",
        type=str,
        choices=[policy.value for policy in SpanPolicy],
        default=None,
        help="Enrich the ambient span or start child spans (default: enrich)",
    )
    serve.add_argument(
        "--console-export",
        action="store_true",
        help="Print finished spans to stdout",
    )
    serve.add_argument(
        "--no-instrument",
        action="store_true",
        help="Skip FastAPI/SQLAlchemy auto-instrumentation",
    )
    serve.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    init_db = subparsers.add_parser("init-db", help="Create the schema and insert demo users")
    init_db.add_argument("--database-url", type=str, default=None, help="SQLAlchemy database URL")
    init_db.add_argument("--no-seed", action="store_true", help="Do not insert demo users")

    return parser.parse_args(args)


def build_settings(parsed_args: argparse.Namespace) -> Settings:
    """Overlay command-line options on environment settings.

    Args:
        parsed_args: Parsed arguments

    Returns:
        Settings with the command-line values applied
    """
    overrides: Dict[str, Any] = {}
    for option in ("host", "port", "database_url", "span_policy"):
        value = getattr(parsed_args, option, None)
        if value is not None:
            overrides[option] = value
    if getattr(parsed_args, "console_export", False):
        overrides["console_export"] = True
    if getattr(parsed_args, "no_instrument", False):
        overrides["auto_instrument"] = False
    if getattr(parsed_args, "verbose", False):
        overrides["log_level"] = "DEBUG"
    if getattr(parsed_args, "no_seed", False):
        overrides["seed_demo_data"] = False
    return Settings(**overrides)


def serve(settings: Settings) -> int:
    """Set up tracing and run the server until interrupted."""
    import uvicorn

    from otelcrud.api.app import create_app
    from otelcrud.tracing import setup_tracing, shutdown_tracing

    provider = setup_tracing(
        service_name=settings.service_name,
        console_output=settings.console_export,
    )
    app = create_app(settings, tracer_provider=provider)
    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    finally:
        shutdown_tracing()
    return 0


def init_db(settings: Settings) -> int:
    """Create the schema and optionally insert demo users."""
    from otelcrud.store import Database

    database = Database(settings.database_url)
    try:
        database.init_schema(Carrier.empty(), seed=settings.seed_demo_data)
    finally:
        database.close()
    print(f"Schema ready: {database.engine.url.render_as_string(hide_password=True)}")
    return 0


def main(args: List[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parsed_args = parse_args(args)

    try:
        settings = build_settings(parsed_args)
        configure_logging(settings.log_level)

        if parsed_args.command == "serve":
            return serve(settings)
        return init_db(settings)

    except ValueError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 2

    except ServiceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 4


if __name__ == "__main__":
    sys.exit(main())
