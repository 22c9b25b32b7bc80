"""
User repository: one store operation per CRUD verb.

Each operation receives the caller's carrier, enriches the span selected by
the deployment's span policy with the operation kind, target table and the
filtering parameters, and runs exactly one transaction. Store failures are
recorded on that span where they are first observed and then raised to the
handler.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Dict, Iterator, List, Tuple

from opentelemetry import trace
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Row

from otelcrud.errors import ConflictError, NotFoundError, StoreFailure
from otelcrud.models import User, UserCreate, UserUpdate
from otelcrud.store.database import Database, as_utc, users_table, utcnow
from otelcrud.tracing.carrier import Carrier
from otelcrud.tracing.spans import SpanPolicy, SpanToolkit

logger = logging.getLogger(__name__)


def _row_to_user(row: Row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        age=row.age,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class UserRepository:
    """Store adapter for the users table.

    Attributes:
        TABLE: Table name recorded as ``apm.db.table``

    Example:
        >>> repo = UserRepository(Database("sqlite://"), SpanToolkit())
        >>> repo.create_user(carrier, UserCreate(id="u1", name="A", email="a@x.com", age=30))
    """

    TABLE = users_table.name

    def __init__(
        self,
        database: Database,
        spans: SpanToolkit,
        policy: SpanPolicy = SpanPolicy.ENRICH,
    ) -> None:
        self._db = database
        self._spans = spans
        self._policy = SpanPolicy(policy)

    @contextmanager
    def _operation(
        self,
        carrier: Carrier,
        name: str,
        operation: str,
        parameters: Dict[str, Any] | None = None,
    ) -> Iterator[Tuple[Carrier, trace.Span]]:
        """Select the span for a store operation and enrich it.

        Under SpanPolicy.CHILD a ``db:<name>`` child span is started and ended
        here; otherwise the carrier's ambient span is enriched in place.
        StoreFailure raised inside the block is recorded on that span.
        """
        attributes: Dict[str, Any] = {
            "apm.db.operation": operation,
            "apm.db.table": self.TABLE,
        }
        for key, value in (parameters or {}).items():
            attributes[f"apm.db.query.parameter.{key}"] = value

        if self._policy is SpanPolicy.CHILD:
            with self._spans.started(carrier, f"db:{name}") as (child_carrier, span):
                self._spans.enrich(span, attributes)
                try:
                    yield child_carrier, span
                except StoreFailure as exc:
                    self._spans.record_error(span, exc)
                    raise
        else:
            span = self._spans.current(carrier)
            self._spans.enrich(span, attributes)
            try:
                yield carrier, span
            except StoreFailure as exc:
                self._spans.record_error(span, exc)
                raise

    def create_user(self, carrier: Carrier, payload: UserCreate) -> User:
        """Insert a new user.

        Raises:
            ConflictError: If the id or email is already taken
        """
        with self._operation(carrier, "CreateUser", "INSERT", {"id": payload.id}) as (carrier, span):
            now = utcnow()
            with self._db.transaction(carrier) as conn:
                existing = self._db.execute(
                    conn, carrier, select(users_table.c.id).where(users_table.c.id == payload.id)
                ).first()
                if existing is not None:
                    raise ConflictError(f"user '{payload.id}' already exists")

                self._db.execute(
                    conn,
                    carrier,
                    insert(users_table).values(
                        id=payload.id,
                        name=payload.name,
                        email=str(payload.email),
                        age=payload.age,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                row = self._db.execute(
                    conn, carrier, select(users_table).where(users_table.c.id == payload.id)
                ).one()

            self._spans.enrich(span, {"apm.db.rows_affected": 1})
            return _row_to_user(row)

    def get_user(self, carrier: Carrier, user_id: str) -> User:
        """Fetch a user by id.

        Raises:
            NotFoundError: If no user has this id
        """
        with self._operation(carrier, "GetUserByID", "SELECT", {"id": user_id}) as (carrier, span):
            with self._db.transaction(carrier) as conn:
                row = self._db.execute(
                    conn, carrier, select(users_table).where(users_table.c.id == user_id)
                ).first()

            if row is None:
                raise NotFoundError(f"user '{user_id}' not found")
            return _row_to_user(row)

    def list_users(self, carrier: Carrier) -> List[User]:
        """Return every user ordered by id."""
        with self._operation(carrier, "GetAllUsers", "SELECT") as (carrier, span):
            with self._db.transaction(carrier) as conn:
                rows = self._db.execute(
                    conn, carrier, select(users_table).order_by(users_table.c.id)
                ).all()

            self._spans.enrich(span, {"apm.db.rows_returned": len(rows)})
            return [_row_to_user(row) for row in rows]

    def update_user(self, carrier: Carrier, user_id: str, payload: UserUpdate) -> User:
        """Replace the mutable fields of a user.

        The modification timestamp always moves strictly forward, even when
        the clock has not advanced since the previous write.

        Raises:
            NotFoundError: If no user has this id
            ConflictError: If the new email belongs to another user
        """
        with self._operation(carrier, "UpdateUser", "UPDATE", {"id": user_id}) as (carrier, span):
            with self._db.transaction(carrier) as conn:
                current = self._db.execute(
                    conn, carrier, select(users_table).where(users_table.c.id == user_id)
                ).first()
                if current is None:
                    raise NotFoundError(f"user '{user_id}' not found")

                updated_at = max(utcnow(), as_utc(current.updated_at) + timedelta(microseconds=1))
                self._db.execute(
                    conn,
                    carrier,
                    update(users_table)
                    .where(users_table.c.id == user_id)
                    .values(
                        name=payload.name,
                        email=str(payload.email),
                        age=payload.age,
                        updated_at=updated_at,
                    ),
                )
                row = self._db.execute(
                    conn, carrier, select(users_table).where(users_table.c.id == user_id)
                ).one()

            self._spans.enrich(span, {"apm.db.rows_affected": 1})
            return _row_to_user(row)

    def delete_user(self, carrier: Carrier, user_id: str) -> None:
        """Remove a user.

        Raises:
            NotFoundError: If no user has this id
        """
        with self._operation(carrier, "DeleteUser", "DELETE", {"id": user_id}) as (carrier, span):
            with self._db.transaction(carrier) as conn:
                result = self._db.execute(
                    conn, carrier, delete(users_table).where(users_table.c.id == user_id)
                )
                deleted = result.rowcount
                if deleted == 0:
                    raise NotFoundError(f"user '{user_id}' not found")

            self._spans.enrich(span, {"apm.db.rows_affected": deleted})
