"""
Middleware package.

WHY: Middleware provides cross-cutting concerns like request correlation
that apply to all requests.
"""

from shiftcheck.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_request_id,
    RequestContext,
)

__all__ = [
    "RequestContextMiddleware",
    "get_request_context",
    "get_request_id",
    "RequestContext",
]
