"""
FastAPI exception handlers.

WHY: Both callers of this service are machines (Stripe and the cron
scheduler). Every error, whether raised by our code or by the router,
reaches them as the same JSON body:

    {"error": ..., "message": ..., "status_code": ..., "details": ...}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from shiftcheck.core.exceptions import AppException
from shiftcheck.middleware.request_context import get_request_id

logger = logging.getLogger(__name__)


def _error_body(
    error: str, message: str, status_code: int, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    return {
        "error": error,
        "message": message,
        "status_code": status_code,
        "details": details,
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle AppException and its subclasses.

    Client errors (bad signature, wrong sweep secret) are logged as
    warnings; server-side ones (missing configuration) as errors.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
        extra={"request_id": get_request_id(), "status_code": exc.status_code},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors with field-level messages.

    Returns:
        400 JSONResponse with {"errors": [{field, message, type}]} details
    """
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body("ValidationError", "Request validation failed", 400, {"errors": errors}),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle router-level HTTP errors (404, 405).

    Starlette's Allow header is carried over on 405.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("HTTPException", exc.detail, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for unexpected exceptions.

    The traceback is logged; the response never carries exception text.
    """
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path}",
        extra={"path": request.url.path, "request_id": get_request_id()},
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("InternalServerError", "An unexpected error occurred", 500),
    )
