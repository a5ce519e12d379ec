"""
FastAPI Middleware

Request/response middleware for:
- Correlation ID injection
- Request logging (phone numbers masked in paths and query strings)
- Error envelopes for domain, validation and unexpected errors
"""
import re
import time
from typing import Callable
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import (
    get_logger,
    set_correlation_id,
    get_correlation_id
)
from app.core.exceptions import AppException, ErrorCode

logger = get_logger(__name__)

_PHONE_RE = re.compile(r"(\+?\d{3})\d{4,}(\d{3})")

# Probes hit these every few seconds; logged at DEBUG only
_QUIET_PATHS = frozenset({"/health", "/api/health", "/health/ready"})


def _mask_pii(value: str) -> str:
    """Replace the middle digits of anything that looks like a phone number"""
    return _PHONE_RE.sub(r"\1****\2", value)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            logger.debug(f"Probe: {request.url.path}")
            return await call_next(request)

        start_time = time.time()
        safe_path = _mask_pii(request.url.path)
        query = {k: _mask_pii(v) for k, v in request.query_params.items()}

        logger.info(
            f"Request started: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "query_params": query,
                "client_host": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(time.time() - start_time, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"Request completed: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "status_code": response.status_code,
                "duration_seconds": round(time.time() - start_time, 4),
            }
        )
        return response


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Render domain errors with their message surfaced verbatim"""
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Request body/query errors as 422 in the shared error envelope"""
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part not in ("body", "query", "path")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    logger.info(
        "Request validation failed",
        extra_data={"path": _mask_pii(request.url.path), "errors": errors},
    )
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Request validation failed",
                "details": {"errors": errors},
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {}
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


def setup_middleware(app: FastAPI) -> None:
    """Register middleware; the last one added is the outermost."""
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
