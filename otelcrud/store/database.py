"""
Database access with carrier-aware tracing.

Wraps a SQLAlchemy engine. Every statement enriches the span carried by the
caller's carrier with the database system and statement text, and runs with
the carrier's context attached so an SQLAlchemy instrumentor (if active)
parents its query spans under the active span.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from opentelemetry import context as otel_context
from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine, Result
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable

from otelcrud.errors import ConflictError, StoreError
from otelcrud.tracing.carrier import Carrier
from otelcrud.tracing.spans import SpanToolkit

logger = logging.getLogger(__name__)

# Longest wait for the shared connection between cancellation checks
LOCK_POLL_SECONDS = 0.05

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", String(50), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(100), nullable=False, unique=True),
    Column("age", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

DEMO_USERS = [
    {"id": "johndoe", "name": "John Doe", "email": "john.doe@example.com", "age": 30},
    {"id": "janedoe", "name": "Jane Doe", "email": "jane.doe@example.com", "age": 28},
    {"id": "bobsmith", "name": "Bob Smith", "email": "bob.smith@example.com", "age": 35},
    {"id": "alicejones", "name": "Alice Jones", "email": "alice.jones@example.com", "age": 25},
    {"id": "charliebrwn", "name": "Charlie Brown", "email": "charlie.brown@example.com", "age": 32},
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps returned by backends without time zones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_db_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    In-memory SQLite shares one connection across threads so that every
    request sees the same database.
    """
    if url.startswith("sqlite") and (url in ("sqlite://", "sqlite:///:memory:")):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


class Database:
    """SQLAlchemy engine plus span enrichment.

    Attributes:
        engine: The SQLAlchemy engine
        system: Database system name recorded as ``apm.db.system``
    """

    def __init__(
        self,
        url: str = "sqlite://",
        spans: Optional[SpanToolkit] = None,
        engine: Optional[Engine] = None,
    ) -> None:
        self.engine = engine or create_db_engine(url)
        self.system = self.engine.dialect.name
        self._spans = spans or SpanToolkit()
        # A StaticPool hands the same DBAPI connection to every thread
        self._lock: Optional[threading.Lock] = (
            threading.Lock() if isinstance(self.engine.pool, StaticPool) else None
        )
        logger.info("Database engine created: %s", self.engine.url.render_as_string(hide_password=True))

    def _render(self, statement: Executable) -> str:
        return " ".join(str(statement.compile(dialect=self.engine.dialect)).split())

    @contextmanager
    def _exclusive(self, carrier: Carrier) -> Iterator[None]:
        """Serialize transactions on a shared connection.

        Waiting stops as soon as the carrier is cancelled or its deadline
        passes.
        """
        if self._lock is None:
            yield
            return

        while True:
            remaining = carrier.remaining()
            wait = LOCK_POLL_SECONDS if remaining is None else min(LOCK_POLL_SECONDS, remaining)
            if self._lock.acquire(timeout=wait):
                break
            carrier.check()
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self, carrier: Carrier) -> Iterator[Connection]:
        """Open a connection and transaction bound to ``carrier``.

        The carrier is checked for cancellation before the transaction starts
        and again before commit; a cancelled request rolls back. SQLAlchemy
        failures are translated into store errors.

        Raises:
            RequestCancelledError: If the carrier is cancelled or expired
            ConflictError: On an integrity violation
            StoreError: On any other database failure
        """
        carrier.check()
        with self._exclusive(carrier):
            token = otel_context.attach(carrier.context)
            try:
                with self.engine.connect() as conn:
                    trans = conn.begin()
                    try:
                        yield conn
                        carrier.check()
                        trans.commit()
                    except BaseException:
                        trans.rollback()
                        raise
            except IntegrityError as exc:
                raise ConflictError(f"constraint violation: {exc.orig}") from exc
            except SQLAlchemyError as exc:
                raise StoreError(f"database error: {exc}") from exc
            finally:
                otel_context.detach(token)

    def execute(
        self,
        conn: Connection,
        carrier: Carrier,
        statement: Executable,
        params: Optional[Dict[str, Any]] = None,
    ) -> Result:
        """Execute ``statement`` and enrich the carrier's span.

        Args:
            conn: Connection from ``transaction``
            carrier: Carrier whose ambient span receives the attributes
            statement: SQLAlchemy statement
            params: Optional bound parameters

        Returns:
            The SQLAlchemy result
        """
        span = self._spans.current(carrier)
        self._spans.enrich(
            span,
            {
                "apm.db.system": self.system,
                "apm.db.statement": self._render(statement),
            },
        )
        if params:
            return conn.execute(statement, params)
        return conn.execute(statement)

    def init_schema(self, carrier: Carrier, seed: bool = True) -> None:
        """Create the users table and optionally insert demo data.

        Demo users are only inserted into an empty table.

        Args:
            carrier: Carrier for the schema operation
            seed: Whether to insert demo users
        """
        try:
            with self._exclusive(carrier):
                metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"error creating schema: {exc}") from exc
        logger.info("Database schema initialized")

        if seed:
            self._insert_demo_data(carrier)

    def _insert_demo_data(self, carrier: Carrier) -> None:
        with self.transaction(carrier) as conn:
            count = self.execute(
                conn, carrier, select(func.count()).select_from(users_table)
            ).scalar_one()
            if count > 0:
                logger.info("Demo data already exists, skipping insertion")
                return

            now = utcnow()
            for user in DEMO_USERS:
                self.execute(
                    conn,
                    carrier,
                    insert(users_table).values(**user, created_at=now, updated_at=now),
                )
        logger.info("Demo data inserted: %d users", len(DEMO_USERS))

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()
