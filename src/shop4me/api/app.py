"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shop4me.api.routes import (
    admin_router,
    callbacks_router,
    health_router,
    orders_router,
    reconciliation_router,
)
from shop4me.config import get_settings
from shop4me.database import dispose_db, init_db
from shop4me.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    OrderNotFoundError,
    Shop4MeError,
    ValidationError,
)
from shop4me.providers import build_provider

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[Shop4MeError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (OrderNotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
]


def status_for(exc: Shop4MeError) -> int:
    """HTTP status for a domain error."""
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    init_db()
    if getattr(app.state, "provider", None) is None:
        app.state.provider = build_provider(settings.mpesa)
    logger.info("Shop4Me API started (M-Pesa environment: %s)", settings.mpesa.environment)
    yield
    # Shutdown
    aclose = getattr(app.state.provider, "aclose", None)
    if aclose is not None:
        await aclose()
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Shop4Me Order API",
        description="Orders, M-Pesa payments and reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Shop4MeError)
    async def domain_exception_handler(request: Request, exc: Shop4MeError) -> JSONResponse:
        """Map engine errors to HTTP responses."""
        content: dict = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, ValidationError) and exc.field_errors:
            content["field_errors"] = exc.field_errors
        return JSONResponse(status_code=status_for(exc), content=content)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(orders_router, prefix="/api/v1")
    app.include_router(callbacks_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")
    app.include_router(reconciliation_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
