"""
Per-request context for log enrichment.

The chat engine runs in a task spawned from the request handler; the
task inherits a copy of the context, so the ``RequestContext`` object
itself is shared and updates made by the engine (session id) are seen
by every log record of the request.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_current: ContextVar[RequestContext | None] = ContextVar("agent_request_context", default=None)


@dataclass
class RequestContext:
    request_id: str
    method: str = ""
    path: str = ""
    user_id: str | None = None
    session_id: str | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def log_fields(self) -> dict[str, Any]:
        """Non-empty identifiers attached to every log record of the request."""
        fields: dict[str, Any] = {"request_id": self.request_id, "route": f"{self.method} {self.path}"}
        if self.user_id:
            fields["user_id"] = self.user_id
        if self.session_id:
            fields["session_id"] = self.session_id
        return fields


def new_request_id() -> str:
    return f"req_{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    ctx = _current.get()
    return ctx.request_id if ctx else None


def update_request_context(*, user_id: str | None = None, session_id: str | None = None) -> None:
    """Attach the caller or conversation to the active request, if any."""
    ctx = _current.get()
    if ctx is None:
        return
    if user_id is not None:
        ctx.user_id = user_id
    if session_id is not None:
        ctx.session_id = session_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Opens a RequestContext per request and echoes its id on the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or new_request_id(),
            method=request.method,
            path=request.url.path,
        )
        token = _current.set(ctx)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)

        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        response.headers["X-Response-Time"] = f"{ctx.elapsed_ms:.2f}ms"
        return response


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContext",
    "RequestContextMiddleware",
    "get_request_context",
    "get_request_id",
    "new_request_id",
    "update_request_context",
]
