"""OrderDesk API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, exception handlers and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orderdesk.api.audit import router as audit_router
from orderdesk.api.health import router as health_router
from orderdesk.api.middleware import setup_middleware
from orderdesk.api.orders import router as orders_router
from orderdesk.api.webhooks import router as webhooks_router
from orderdesk.domain.exceptions import (
    DomainError,
    ErrorCategory,
    ReconciliationUnresolved,
)
from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.database import create_tables, dispose_engine, get_engine
from orderdesk.infrastructure.logging import configure_logging
from orderdesk.infrastructure.payment_gateway import get_payment_gateway

logger = structlog.get_logger()

# HTTP status per error category
CATEGORY_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.UPSTREAM: 502,
    ErrorCategory.INTEGRITY: 500,
}


def status_for(exc: DomainError) -> int:
    """HTTP status code for a domain error."""
    if isinstance(exc, ReconciliationUnresolved):
        return 503
    return CATEGORY_STATUS.get(exc.category, 400)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    configure_logging(settings)
    logger.info(
        "Starting OrderDesk API",
        version=settings.api_version,
        debug=settings.debug,
        use_database=settings.use_database,
    )

    if settings.use_database and settings.debug:
        # Production schemas come from Alembic
        await create_tables(get_engine())
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down OrderDesk API")
    await get_payment_gateway().close()
    if settings.use_database:
        await dispose_engine()


app = FastAPI(
    title="OrderDesk API",
    description="Order, payment and refund reconciliation for the admin console",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, API key auth, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(audit_router)
app.include_router(webhooks_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain errors to the error envelope by category."""
    request_id = getattr(request.state, "request_id", None)
    status_code = status_for(exc)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.error_code,
        category=exc.category.value,
        status_code=status_code,
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "category": exc.category.value,
            "details": exc.details,
            "request_id": request_id,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return request validation failures in the error envelope."""
    return JSONResponse(
        status_code=422,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "category": ErrorCategory.VALIDATION.value,
            "details": [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
            ],
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
            "request_id": request_id,
        },
    )
