"""
User handlers: per-operation business logic.

Every operation follows the same sequence:

1. Resolve the operation span (enrich the ambient span, or start a child span
   under SpanPolicy.CHILD).
2. Enrich it with the request shape before any validation, so that rejected
   requests are still observable.
3. Validate; a rejected precondition returns 400 without touching the store
   and without recording an error.
4. Delegate to the repository with the current carrier.
5. On a store failure, record it (once per span) and translate it to a status.
6. On success, enrich with result metadata and serialize.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Tuple, Type, TypeVar

from opentelemetry import trace
from pydantic import BaseModel, ValidationError

from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.errors import ClientError, ServiceError
from otelcrud.models import UserCreate, UserUpdate
from otelcrud.store.repository import UserRepository
from otelcrud.tracing.carrier import Carrier
from otelcrud.tracing.spans import SpanPolicy, SpanToolkit

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _decode_json(request: InboundRequest) -> Dict[str, Any]:
    try:
        data = json.loads(request.body or b"null")
    except (ValueError, UnicodeDecodeError):
        raise ClientError("Invalid request body") from None
    if not isinstance(data, dict):
        raise ClientError("Request body must be a JSON object")
    return data


def _validate(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ClientError(f"Invalid request: {problems}") from None


class UserHandler:
    """Business logic for the users resource.

    Attributes:
        repository: Store adapter
        spans: Span operations
        policy: Span policy shared with the repository
    """

    def __init__(
        self,
        repository: UserRepository,
        spans: SpanToolkit,
        policy: SpanPolicy = SpanPolicy.ENRICH,
    ) -> None:
        self.repository = repository
        self.spans = spans
        self.policy = SpanPolicy(policy)

    @contextmanager
    def _operation(
        self, carrier: Carrier, request: InboundRequest, operation: str, span_name: str
    ) -> Iterator[Tuple[Carrier, trace.Span]]:
        if self.policy is SpanPolicy.CHILD:
            with self.spans.started(carrier, span_name) as (child_carrier, span):
                self._enrich_request(span, request, operation)
                yield child_carrier, span
        else:
            span = self.spans.current(carrier)
            self._enrich_request(span, request, operation)
            yield carrier, span

    def _enrich_request(self, span: trace.Span, request: InboundRequest, operation: str) -> None:
        self.spans.enrich(
            span,
            {
                "apm.http.method": request.method,
                "apm.http.url": request.target,
                "apm.operation": operation,
            },
        )

    def _failure(self, span: trace.Span, error: ServiceError, operation: str) -> Reply:
        if error.recordable:
            self.spans.record_error(span, error)

        if error.status_code >= 500:
            logger.error(
                "%s failed: %s",
                operation,
                error.message,
                extra={"operation": operation, "classification": error.classification},
            )
        else:
            logger.warning(
                "%s rejected: %s",
                operation,
                error.message,
                extra={"operation": operation, "classification": error.classification},
            )
        return Reply.error(error.status_code, error.message)

    def _success(self, span: trace.Span, status_code: int, body: Any = None, **metadata: Any) -> Reply:
        attributes = {"apm.result.status_code": status_code, "apm.result.success": True}
        attributes.update({f"apm.result.{key}": value for key, value in metadata.items()})
        self.spans.enrich(span, attributes)
        return Reply(status_code=status_code, body=body)

    def create_user(self, request: InboundRequest, carrier: Carrier) -> Reply:
        """POST /users/ - create a user, 201 with the stored entity."""
        with self._operation(carrier, request, "create_user", "CreateUser") as (carrier, span):
            try:
                data = _decode_json(request)
                self.spans.enrich(
                    span,
                    {"apm.user.id": data.get("id"), "apm.user.email": data.get("email")},
                )
                payload = _validate(UserCreate, data)
                user = self.repository.create_user(carrier, payload)
            except ServiceError as exc:
                return self._failure(span, exc, "create_user")

            logger.info("User created: %s", user.id, extra={"user_id": user.id})
            return self._success(span, 201, user.to_dict(), type="json")

    def get_user(self, request: InboundRequest, carrier: Carrier, user_id: str) -> Reply:
        """GET /users/{id} - 200 with the entity, 404 when unknown."""
        with self._operation(carrier, request, "get_user", "GetUser") as (carrier, span):
            self.spans.enrich(span, {"apm.user.id": user_id})
            try:
                user = self.repository.get_user(carrier, user_id)
            except ServiceError as exc:
                return self._failure(span, exc, "get_user")

            return self._success(span, 200, user.to_dict(), type="json")

    def list_users(self, request: InboundRequest, carrier: Carrier) -> Reply:
        """GET /users/ - 200 with every user."""
        with self._operation(carrier, request, "get_all_users", "GetAllUsers") as (carrier, span):
            try:
                users = self.repository.list_users(carrier)
            except ServiceError as exc:
                return self._failure(span, exc, "get_all_users")

            return self._success(
                span, 200, [user.to_dict() for user in users], type="json", count=len(users)
            )

    def update_user(self, request: InboundRequest, carrier: Carrier, user_id: str) -> Reply:
        """PUT /users/{id} - replace mutable fields, 200 with the entity."""
        with self._operation(carrier, request, "update_user", "UpdateUser") as (carrier, span):
            self.spans.enrich(span, {"apm.user.id": user_id})
            try:
                payload = _validate(UserUpdate, _decode_json(request))
                if payload.id is not None and payload.id != user_id:
                    raise ClientError("User id cannot be changed")
                user = self.repository.update_user(carrier, user_id, payload)
            except ServiceError as exc:
                return self._failure(span, exc, "update_user")

            logger.info("User updated: %s", user_id, extra={"user_id": user_id})
            return self._success(span, 200, user.to_dict(), type="json")

    def delete_user(self, request: InboundRequest, carrier: Carrier, user_id: str) -> Reply:
        """DELETE /users/{id} - 204 without a body."""
        with self._operation(carrier, request, "delete_user", "DeleteUser") as (carrier, span):
            self.spans.enrich(span, {"apm.user.id": user_id})
            try:
                self.repository.delete_user(carrier, user_id)
            except ServiceError as exc:
                return self._failure(span, exc, "delete_user")

            logger.info("User deleted: %s", user_id, extra={"user_id": user_id})
            return self._success(span, 204)
