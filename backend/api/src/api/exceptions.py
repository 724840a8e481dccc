"""FastAPI exception handlers for converting BookingError to HTTP responses.

Domain errors carry an ErrorCode; the handlers here turn them into the
ErrorResponse JSON body with a matching HTTP status:
- 400 Bad Request: Validation failures and bad webhook signatures
- 403 Forbidden: Caller has no rights over the entity
- 404 Not Found: Entity does not exist
- 409 Conflict: A concurrent request won the race
- 502 Bad Gateway: The payment gateway failed
- 500 Internal Server Error: Failure envelopes and unexpected errors

Usage:
    from api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
from typing import Any, TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from rentals.models import BookingError, ErrorCode, ErrorResponse, OperationResult

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=OperationResult[Any])

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.GATEWAY: HTTP_502_BAD_GATEWAY,
    ErrorCode.INTERNAL: HTTP_500_INTERNAL_SERVER_ERROR,
}


class OperationFailedError(Exception):
    """A service returned a failure envelope instead of raising."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def ensure_success(result: R) -> R:
    """Pass a successful envelope through; raise on a failure envelope."""
    if not result.success:
        raise OperationFailedError(result.message)
    return result


def get_http_status_for_error(code: ErrorCode) -> int:
    """HTTP status for an ErrorCode, 400 when not explicitly mapped."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Convert a BookingError to its ErrorResponse body and status code."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def operation_failed_handler(request: Request, exc: OperationFailedError) -> JSONResponse:
    """Convert a failure envelope to a 500 response."""
    body = ErrorResponse.from_code(ErrorCode.INTERNAL, exc.message)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for uncaught exceptions; internal details are never returned."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.from_code(ErrorCode.INTERNAL).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OperationFailedError, operation_failed_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
