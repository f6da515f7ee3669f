"""
Main FastAPI application.

WHY: This is the entry point for the billing service. It configures
middleware, routes, exception handlers, and the sweep scheduler.
"""

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from shiftcheck.core.config import settings
from shiftcheck.core.exceptions import AppException
from shiftcheck.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from shiftcheck.middleware import RequestContextMiddleware
from shiftcheck.api import cron, webhooks
from shiftcheck.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="ShiftCheck subscription billing lifecycle API",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Register exception handlers
    # WHY: Consistent JSON error bodies without leaking secrets
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request ID for log correlation
    app.add_middleware(RequestContextMiddleware)

    # Health check endpoint
    # WHY: Load balancers and monitoring tools need a simple endpoint
    # to verify the service is running.
    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Reports liveness and whether the sweep scheduler is running,
        without touching the database.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    @app.on_event("startup")
    async def startup_event():
        """Start the sweep scheduler (no-op unless enabled)."""
        await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the sweep scheduler."""
        await shutdown_scheduler()

    # Register API routers
    app.include_router(webhooks.router, prefix=settings.API_V1_PREFIX)
    app.include_router(cron.router, prefix=settings.API_V1_PREFIX)

    return app


# WHY: Creating the app instance here allows it to be imported by uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shiftcheck.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
