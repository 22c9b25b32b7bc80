"""
Request dispatcher for the users resource.

Per inbound request: ROUTE -> EXTRACT_ID (item paths only) -> DISPATCH ->
RESPOND. The routing key is (method, path prefix):

    /users, /users/        GET list_users, POST create_user
    /users/{id}            GET get_user, PUT update_user, DELETE delete_user

A blank identifier where one is required, or extra path segments, is a
client error returned before any handler or store call. Any other method on
a known path is 405.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from starlette.responses import JSONResponse, Response

from otelcrud.api.handlers import UserHandler
from otelcrud.api.messages import InboundRequest, Reply
from otelcrud.tracing.carrier import Carrier

logger = logging.getLogger(__name__)

CollectionHandler = Callable[[InboundRequest, Carrier], Reply]
ItemHandler = Callable[[InboundRequest, Carrier, str], Reply]


class RequestDispatcher:
    """Route requests under ``/<resource>`` to a UserHandler.

    Attributes:
        prefix: Path prefix of the resource, e.g. ``/users``
    """

    def __init__(self, handler: UserHandler, resource: str = "users") -> None:
        self.prefix = "/" + resource.strip("/")
        self._collection: Dict[str, CollectionHandler] = {
            "GET": handler.list_users,
            "POST": handler.create_user,
        }
        self._item: Dict[str, ItemHandler] = {
            "GET": handler.get_user,
            "PUT": handler.update_user,
            "DELETE": handler.delete_user,
        }

    def route(self, path: str) -> Optional[Tuple[str, str]]:
        """Split ``path`` into (scope, remainder).

        Returns:
            ("collection", "") or ("item", raw identifier), None when the
            path is outside the resource
        """
        if path == self.prefix or path == self.prefix + "/":
            return "collection", ""
        if not path.startswith(self.prefix + "/"):
            return None
        return "item", path[len(self.prefix) + 1:]

    @staticmethod
    def extract_id(remainder: str) -> Optional[str]:
        """Return the identifier in ``remainder``, None if blank or nested."""
        identifier = remainder
        if identifier.endswith("/"):
            identifier = identifier[:-1]
        if not identifier.strip() or "/" in identifier:
            return None
        return identifier

    @staticmethod
    def _method_not_allowed(allowed: Dict[str, object]) -> Reply:
        return Reply.error(405, "Method not allowed", {"Allow": ", ".join(sorted(allowed))})

    def dispatch(self, request: InboundRequest, carrier: Carrier) -> Reply:
        """Route ``request`` and invoke the matching handler.

        Args:
            request: The inbound request
            carrier: Carrier for the request

        Returns:
            The handler's reply, or a 400/404/405 reply from routing
        """
        method = request.method.upper()
        routed = self.route(request.path)
        if routed is None:
            return Reply.error(404, "Not found")

        scope, remainder = routed
        if scope == "collection":
            handler = self._collection.get(method)
            if handler is not None:
                return handler(request, carrier)
            if method in self._item:
                logger.debug("Rejected %s %s: identifier required", method, request.path)
                return Reply.error(400, "Invalid user id: identifier is required")
            return self._method_not_allowed(self._collection)

        item_handler = self._item.get(method)
        if item_handler is None:
            return self._method_not_allowed(self._item)

        user_id = self.extract_id(remainder)
        if user_id is None:
            logger.debug("Rejected %s %s: malformed identifier", method, request.path)
            return Reply.error(400, "Invalid user id")
        return item_handler(request, carrier, user_id)

    @staticmethod
    def respond(reply: Reply) -> Response:
        """Serialize ``reply`` into a Starlette response."""
        if reply.body is None:
            return Response(status_code=reply.status_code, headers=reply.headers)
        return JSONResponse(reply.body, status_code=reply.status_code, headers=reply.headers)
