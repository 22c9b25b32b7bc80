"""Unit tests for RequestDispatcher routing and response serialization."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from otelcrud.api.dispatcher import RequestDispatcher
from otelcrud.api.handlers import UserHandler
from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.tracing import Carrier


@pytest.fixture
def handler() -> MagicMock:
    mock = MagicMock(spec=UserHandler)
    for name in ("list_users", "create_user", "get_user", "update_user", "delete_user"):
        getattr(mock, name).return_value = Reply(200, {"handled": name})
    return mock


@pytest.fixture
def dispatcher(handler: MagicMock) -> RequestDispatcher:
    return RequestDispatcher(handler)


def _dispatch(dispatcher: RequestDispatcher, method: str, path: str) -> Reply:
    return dispatcher.dispatch(InboundRequest(method=method, path=path), Carrier.empty())


class TestRoute:
    """Tests for path splitting."""

    @pytest.mark.parametrize("path", ["/users", "/users/"])
    def test_collection(self, dispatcher: RequestDispatcher, path: str) -> None:
        """Test both collection spellings route to the collection."""
        assert dispatcher.route(path) == ("collection", "")

    def test_item(self, dispatcher: RequestDispatcher) -> None:
        """Test an item path yields the raw identifier."""
        assert dispatcher.route("/users/u1") == ("item", "u1")

    @pytest.mark.parametrize("path", ["/", "/health", "/usersx", "/other/u1"])
    def test_outside_resource(self, dispatcher: RequestDispatcher, path: str) -> None:
        """Test paths outside the resource are not routed."""
        assert dispatcher.route(path) is None

    @pytest.mark.parametrize(
        "remainder, expected",
        [("u1", "u1"), ("u1/", "u1"), ("", None), ("   ", None), ("a/b", None), ("u1//", None)],
    )
    def test_extract_id(self, remainder: str, expected) -> None:
        """Test identifiers are extracted or rejected."""
        assert RequestDispatcher.extract_id(remainder) == expected


class TestDispatch:
    """Tests for method routing and rejection."""

    @pytest.mark.parametrize(
        "method, path, handler_name",
        [
            ("GET", "/users/", "list_users"),
            ("GET", "/users", "list_users"),
            ("POST", "/users/", "create_user"),
            ("GET", "/users/u1", "get_user"),
            ("PUT", "/users/u1", "update_user"),
            ("DELETE", "/users/u1/", "delete_user"),
        ],
    )
    def test_routes_to_handler(
        self, dispatcher: RequestDispatcher, handler: MagicMock, method: str, path: str, handler_name: str
    ) -> None:
        """Test each (method, scope) pair reaches its handler."""
        reply = _dispatch(dispatcher, method, path)
        assert reply.body == {"handled": handler_name}
        getattr(handler, handler_name).assert_called_once()

    def test_item_handler_receives_identifier(self, dispatcher: RequestDispatcher, handler: MagicMock) -> None:
        """Test the identifier is passed to item handlers."""
        _dispatch(dispatcher, "GET", "/users/johndoe")
        assert handler.get_user.call_args.args[2] == "johndoe"

    def test_lowercase_method_accepted(self, dispatcher: RequestDispatcher, handler: MagicMock) -> None:
        """Test methods are matched case-insensitively."""
        _dispatch(dispatcher, "get", "/users/u1")
        handler.get_user.assert_called_once()

    @pytest.mark.parametrize("method", ["PUT", "DELETE"])
    def test_missing_identifier_is_client_error(
        self, dispatcher: RequestDispatcher, handler: MagicMock, method: str
    ) -> None:
        """Test an item method on the collection is 400."""
        reply = _dispatch(dispatcher, method, "/users/")
        assert reply.status_code == 400
        assert "identifier is required" in reply.body["detail"]
        handler.update_user.assert_not_called()
        handler.delete_user.assert_not_called()

    def test_nested_path_is_client_error(self, dispatcher: RequestDispatcher, handler: MagicMock) -> None:
        """Test extra path segments are 400."""
        reply = _dispatch(dispatcher, "GET", "/users/a/b")
        assert reply.status_code == 400
        handler.get_user.assert_not_called()

    def test_unsupported_item_method(self, dispatcher: RequestDispatcher) -> None:
        """Test an unsupported item method is 405."""
        reply = _dispatch(dispatcher, "PATCH", "/users/u1")
        assert reply.status_code == 405
        assert reply.headers["Allow"] == "DELETE, GET, PUT"

    def test_unsupported_collection_method(self, dispatcher: RequestDispatcher) -> None:
        """Test an unsupported collection method is 405."""
        reply = _dispatch(dispatcher, "PATCH", "/users/")
        assert reply.status_code == 405
        assert reply.headers["Allow"] == "GET, POST"

    def test_outside_resource_is_not_found(self, dispatcher: RequestDispatcher) -> None:
        """Test a path outside the resource is 404."""
        assert _dispatch(dispatcher, "GET", "/accounts/1").status_code == 404


class TestRespond:
    """Tests for reply serialization."""

    def test_empty_body(self) -> None:
        """Test a reply without body serializes as an empty response."""
        response = RequestDispatcher.respond(Reply(204))
        assert response.status_code == 204
        assert response.body == b""

    def test_json_body_and_headers(self) -> None:
        """Test a JSON reply keeps its status and headers."""
        response = RequestDispatcher.respond(Reply.error(405, "Method not allowed", {"Allow": "GET"}))
        assert response.status_code == 405
        assert response.headers["allow"] == "GET"
        assert response.headers["content-type"] == "application/json"
        assert b'"detail"' in response.body
