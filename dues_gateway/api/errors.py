"""Map domain exceptions onto HTTP responses"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dues_gateway.domain.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DomainException,
    EligibilityError,
    GatewayError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, detail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail}, headers=headers)


async def handle_domain_exception(request: Request, exc: DomainException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValidationError):
        return _error(400, "validation_error", str(exc))

    if isinstance(exc, AuthenticationError):
        logger.info(f"Authentication failed: {exc}", extra={"request_id": request_id})
        return _error(401, "unauthenticated", "Authentication required", {"WWW-Authenticate": "Bearer"})

    if isinstance(exc, AuthorizationError):
        logger.info(f"Authorization failed: {exc}", extra={"request_id": request_id})
        return _error(403, "forbidden", "Not permitted")

    if isinstance(exc, NotFoundError):
        return _error(404, "not_found", str(exc))

    if isinstance(exc, EligibilityError):
        return JSONResponse(
            status_code=400,
            content={"error": "not_eligible", "reason": exc.reason, "detail": str(exc)},
        )

    if isinstance(exc, ConflictError):
        return _error(409, "conflict", str(exc))

    if isinstance(exc, RateLimitError):
        return _error(
            429,
            "rate_limited",
            "Too many requests. Please try again later.",
            {"Retry-After": str(exc.retry_after)},
        )

    if isinstance(exc, GatewayError):
        logger.error(f"Payment processor error: {exc!r}", extra={"request_id": request_id})
        return _error(502, "gateway_error", "Payment processor unavailable")

    logger.error(f"Unhandled domain error: {exc!r}", extra={"request_id": request_id})
    return _error(500, "internal_error", "Internal server error")


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unexpected error: {exc!r}", exc_info=exc, extra={"request_id": request_id})
    return _error(500, "internal_error", "Internal server error")


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error(400, "validation_error", errors)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, handle_domain_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
