"""
Middleware configuration for the tenant API.

Centralizes CORS configuration, request logging, and the mapping of domain
exceptions to structured JSON error responses.
"""

import logging
import time
from typing import List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware

from tenant_stack.errors import TenantNotFoundError, TenantValidationError

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("api.requests")

ERROR_TYPES = {
    400: ("bad_request", "validation"),
    401: ("authentication_failure", "security"),
    403: ("forbidden", "security"),
    404: ("not_found", "resource"),
    409: ("conflict", "resource"),
    422: ("validation_error", "validation"),
    500: ("internal_error", "server"),
    503: ("service_unavailable", "server"),
}


def error_response(status_code: int, detail: str) -> JSONResponse:
    error_type, error_category = ERROR_TYPES.get(status_code, ("http_error", "general"))
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_type": error_type,
            "error_category": error_category,
            "status_code": status_code,
        },
    )


def setup_cors_middleware(app: FastAPI, allowed_origins: List[str]) -> None:
    logger.info(f"CORS configured with origins: {allowed_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of API requests (health checks excluded)."""

    EXCLUDED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_logger.info(f"→ {request.method} {path}")
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        request_logger.info(f"← {request.method} {path} - {response.status_code} - {duration_ms:.2f}ms")
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers for the FastAPI application."""

    @app.exception_handler(TenantValidationError)
    async def validation_exception_handler(request: Request, exc: TenantValidationError):
        return error_response(422, str(exc))

    @app.exception_handler(TenantNotFoundError)
    async def not_found_exception_handler(request: Request, exc: TenantNotFoundError):
        return error_response(404, str(exc))

    @app.exception_handler(PyMongoError)
    async def database_exception_handler(request: Request, exc: PyMongoError):
        logger.error(f"Database error: {type(exc).__name__}: {exc}")
        return error_response(503, "Tenant store unavailable. Please try again.")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return error_response(exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(
            f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {exc}"
        )
        return error_response(500, "Internal server error")


def setup_middleware(app: FastAPI, cors_origins: List[str]) -> None:
    """Install CORS, request logging and exception handlers."""
    setup_cors_middleware(app, cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)
