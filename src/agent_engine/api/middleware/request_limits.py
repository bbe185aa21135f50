"""Request body size limit middleware.

Rejects requests whose declared Content-Length exceeds the ceiling
before the body is read. The ceiling sits below the hosting platform's
own hard limit so the client gets a proper 413 instead of a dropped
connection. Bodies without a declared length are measured by the chat
request gate after reading.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from agent_engine.api.middleware.exception_handlers import PayloadTooLargeError, app_exception_response
from agent_engine.core.constants import get_settings
from agent_engine.utils.logger import logger


def declared_content_length(request: Request) -> int | None:
    """Parsed Content-Length header, or None when absent or invalid."""
    content_length = request.headers.get("content-length")
    if not content_length:
        return None
    try:
        return int(content_length)
    except ValueError:
        return None


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the request body ceiling."""

    def __init__(self, app: Callable[..., Any], max_body_size: int | None = None) -> None:
        super().__init__(app)
        self._max_body_size = max_body_size or get_settings().max_request_body_size

    @property
    def max_body_size(self) -> int:
        return self._max_body_size

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check request size before processing."""
        if request.method in ("GET", "HEAD", "OPTIONS", "DELETE"):
            return await call_next(request)

        size = declared_content_length(request)
        if size is not None and size > self._max_body_size:
            logger.warning(
                f"Request body too large: {size} bytes > {self._max_body_size} bytes (path: {request.url.path})"
            )
            return app_exception_response(request, PayloadTooLargeError(size, self._max_body_size))

        return await call_next(request)
