"""Unitlock API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from unitlock_api import __version__
from unitlock_api.config.env import get_cors_allowed_origins, json_logs_enabled
from unitlock_api.context import request_id_var, unit_id_var, user_id_var
from unitlock_api.errors import UnitlockError
from unitlock_api.problems import PROBLEM_BASE_URI, problem_response, title_for_status
from unitlock_api.routers import gate, health, webhooks
from unitlock_api.utils import configure_json_logging

logger = logging.getLogger(__name__)


# ============================================================================
# Middleware
# ============================================================================


async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every HTTP request emits "http.request.completed"
    - Fields: method, path, status_code, duration_ms (+ context vars)
    - Logs even on exceptions (status_code=500)
    - Clears per-request contextvars at start and end
    """
    user_id_var.set("")
    unit_id_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        user_id_var.set("")
        unit_id_var.set("")


async def request_id_middleware(request: Request, call_next):
    """Generate and propagate request_id for observability.

    - Accepts X-Request-ID header from client (optional)
    - Generates new UUID if not provided
    - Returns X-Request-ID in response headers

    Registered last so it is the outermost middleware.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


async def unitlock_error_handler(request: Request, exc: UnitlockError) -> JSONResponse:
    """Render domain errors with the status and code they carry."""
    if exc.status_code >= 500:
        logger.error(
            exc.error_code,
            extra={"error_type": type(exc).__name__, "error_msg": exc.detail[:200]},
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return problem_response(
        exc.status_code,
        detail=exc.detail,
        title=exc.title,
        type_=exc.error_type,
        error_code=exc.error_code,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions (404, 405, ...) as problem+json."""
    detail_value = exc.detail if exc.detail is not None else title_for_status(exc.status_code)
    return problem_response(
        exc.status_code,
        detail=detail_value,
        headers=dict(exc.headers) if exc.headers else None,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are 400, not 422."""
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    return problem_response(
        400,
        detail=f"Invalid field '{field}': {msg}",
        title="Request Validation Failed",
        type_=f"{PROBLEM_BASE_URI}/validation-error",
        error_code="INVALID_REQUEST",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions; the traceback goes to the log only."""
    logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=exc)
    return problem_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        type_=f"{PROBLEM_BASE_URI}/internal-error",
    )


# ============================================================================
# Application Factory
# ============================================================================


def create_app() -> FastAPI:
    """Create the FastAPI application.

    Factory pattern for test isolation; the module-level ``app`` is what
    uvicorn serves.
    """
    if json_logs_enabled():
        configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))

    new_app = FastAPI(
        title="Unitlock API",
        description="Subscription-gated storage unit access with payment webhook reconciliation.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url=None,
    )

    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    # Order matters: the last registered middleware is the outermost
    new_app.middleware("http")(http_completion_logging_middleware)
    new_app.middleware("http")(request_id_middleware)

    new_app.add_exception_handler(UnitlockError, unitlock_error_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(gate.router)
    new_app.include_router(webhooks.router)

    return new_app


app = create_app()
