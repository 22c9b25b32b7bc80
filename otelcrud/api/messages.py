"""
Transport-neutral request and reply values passed between the dispatcher and
the handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class InboundRequest:
    """An inbound HTTP request reduced to what the handlers need.

    Attributes:
        method: Upper-case HTTP method
        path: Request path, e.g. ``/users/u1``
        url: Full request target, recorded as ``apm.http.url``
        body: Raw request body
    """

    method: str
    path: str
    url: str = ""
    body: bytes = b""

    @property
    def target(self) -> str:
        return self.url or self.path


@dataclass
class Reply:
    """Outcome of dispatching a request.

    Attributes:
        status_code: HTTP status code
        body: JSON-compatible payload, None for an empty body
        headers: Extra response headers
    """

    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def error(cls, status_code: int, detail: str, headers: Optional[Dict[str, str]] = None) -> "Reply":
        return cls(status_code=status_code, body={"detail": detail}, headers=headers or {})
