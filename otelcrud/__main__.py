"""
otelcrud.__main__ - Entry point for running otelcrud as a module.

Usage:
    python -m otelcrud serve [options]
    python -m otelcrud init-db [options]
"""

from otelcrud.cli import main

if __name__ == "__main__":
    exit(main())
