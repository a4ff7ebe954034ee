"""
FastAPI Middleware for the CaseTrack API

Provides CORS configuration, request logging, and global error handling.
Domain errors from the core map to HTTP status codes here.
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from casetrack.errors import CaseTrackError, ErrorKind
from security_logger import get_security_logger, sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",  # Front-end dev server
    "http://localhost:5173",  # Vite dev port
    "http://localhost:8000",  # FastAPI default port
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]

EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]

# HTTP status per domain error kind
STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.INVALID_STATE: 409,
}

CODE_BY_KIND = {
    ErrorKind.NOT_FOUND: "NOT_FOUND",
    ErrorKind.UNAUTHORIZED: "UNAUTHORIZED",
    ErrorKind.VALIDATION_ERROR: "VALIDATION_ERROR",
    ErrorKind.INVALID_STATE: "INVALID_STATE",
}


def _build_cors_regex_pattern(allowed_origins: List[str]) -> Optional[str]:
    """Build a single origin regex when wildcard subdomains are configured.

    Args:
        allowed_origins: Allowed origins, possibly with a leading "*." host wildcard

    Returns:
        Combined regex, or None when no wildcard is present
    """
    patterns = []
    for origin in allowed_origins:
        if "://*." in origin:
            scheme, host = origin.split("://*.", 1)
            patterns.append(rf"{re.escape(scheme)}://[\w-]+\.{re.escape(host)}")
        else:
            patterns.append(re.escape(origin))

    if not any("*" in origin for origin in allowed_origins):
        return None
    return "|".join(f"({p})" for p in patterns)


def setup_cors(app: FastAPI, origins: Optional[List[str]] = None) -> None:
    """Configure CORS middleware for the application.

    Origin precedence: CORS_ORIGINS environment variable (comma-separated),
    then the configured list, then localhost defaults.
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",")]
    else:
        allowed_origins = origins or DEFAULT_CORS_ORIGINS

    combined_regex = _build_cors_regex_pattern(allowed_origins)
    origin_options = (
        {"allow_origin_regex": combined_regex}
        if combined_regex
        else {"allow_origins": allowed_origins}
    )

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
        **origin_options,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs.

    The acting user (X-User-ID) is attached to the security log context
    for the duration of the request.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))
        user_id = sanitize_for_logging(request.headers.get("X-User-ID", ""))

        request.state.request_id = request_id
        request.state.start_time = start_time

        security_log = get_security_logger()
        security_log.set_request_context(
            request_id=request_id,
            user_id=user_id,
            source_ip=request.client.host if request.client else "",
        )

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s user=%s request_id=%s",
            request.method,
            sanitized_path,
            user_id or "-",
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            security_log.clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


async def casetrack_error_handler(request: Request, exc: CaseTrackError) -> JSONResponse:
    """Handler for domain errors raised past the service layer."""
    return create_error_response(
        code=CODE_BY_KIND.get(exc.kind, "INTERNAL_ERROR"),
        message=exc.message,
        status_code=STATUS_BY_KIND.get(exc.kind, 500),
        field=exc.field or None,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request bodies that fail schema validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    return create_error_response(
        code="VALIDATION_ERROR",
        message=str(first.get("msg", "Invalid request")),
        status_code=422,
        field=".".join(location) or None,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.

    Args:
        request: FastAPI request object
        exc: Exception that was raised

    Returns:
        Standardized error response
    """
    # Import here to avoid circular imports
    from config_manager import ConfigurationError

    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            code="CONFIGURATION_ERROR",
            message="Service configuration is invalid. Please contact administrator.",
            status_code=503,
        )

    # Generic error - sanitize message to prevent info leakage
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions.

    Args:
        request: FastAPI request object
        exc: HTTPException that was raised

    Returns:
        Standardized error response
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(CaseTrackError, casetrack_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
