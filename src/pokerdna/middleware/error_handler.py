"""Global error handlers: consistent JSON error responses.

Store outages are retryable (503), exhausted write conflicts are 409, and an
integrity fault is a hard stop reported with its own error code.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pokerdna.errors import ConflictExhausted, IntegrityFault, StoreUnavailable

logger = structlog.get_logger()

RETRY_AFTER_SECONDS = 5


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.warning(
            "store_unavailable",
            path=request.url.path,
            operation=exc.operation,
            error=str(exc.cause) if exc.cause else None,
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Profile store unavailable", "code": "STORE_UNAVAILABLE"},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(ConflictExhausted)
    async def conflict_handler(_request: Request, exc: ConflictExhausted) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": "Concurrent XP writes, try again",
                "code": "CONFLICT_EXHAUSTED",
                "attempts": exc.attempts,
            },
        )

    @app.exception_handler(IntegrityFault)
    async def integrity_fault_handler(request: Request, exc: IntegrityFault) -> JSONResponse:
        logger.critical("integrity_fault_response", path=request.url.path, user_id=exc.user_id)
        return JSONResponse(
            status_code=500,
            content={"detail": exc.detail, "code": "INTEGRITY_FAULT"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
