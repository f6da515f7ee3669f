"""
Request context middleware for log correlation.

WHAT: Middleware that assigns every request an ID and makes it available
throughout the request lifecycle.

WHY: Webhook and sweep logs from one delivery must be traceable together,
and support needs to match a Stripe dashboard delivery with our logs via
the X-Request-ID response header.

HOW: Uses Starlette's request state to store context, plus contextvars for
async-safe access from services that have no request object.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestContext:
    """
    Container for request-scoped context data.

    Fields:
    - request_id: Unique identifier for the request (for log correlation)
    - path: Request path
    - method: HTTP method (GET, POST, etc.)
    """

    request_id: str
    path: str
    method: str


# WHY: ContextVar ensures each async request gets its own isolated context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_request_id() -> Optional[str]:
    """Current request ID, or None outside a request (scheduled jobs)."""
    context = _request_context.get()
    return context.request_id if context else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    HOW: Reuses an incoming X-Request-ID when the caller supplies one,
    otherwise generates a UUID4. Stores context in both request.state and
    a ContextVar, and echoes the ID on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and add context.

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response with request ID header added
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_context.reset(token)
