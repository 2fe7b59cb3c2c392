"""FastAPI exception handlers for converting BookingError to HTTP responses.

The HTTP status follows the error's category:
- 400 Bad Request: validation failures
- 402 Payment Required: the guest's payment did not go through
- 403 Forbidden: membership required
- 404 Not Found: unknown booking, payment or refund
- 409 Conflict: dates already taken, or the booking is in the wrong state
- 500 Internal Server Error: money/booking inconsistency
- 502 Bad Gateway: Stripe failed or could not verify the payment
- 504 Gateway Timeout: the payment never became visible in time

Usage:
    from booking_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_504_GATEWAY_TIMEOUT,
)

from booking_core.models import BookingError, ErrorCategory, ErrorCode
from booking_core.utils.logging import get_logger

logger = get_logger(__name__)

CATEGORY_TO_HTTP_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: HTTP_400_BAD_REQUEST,
    ErrorCategory.NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCategory.CONTENTION: HTTP_409_CONFLICT,
    ErrorCategory.STATE: HTTP_409_CONFLICT,
    ErrorCategory.EXTERNAL: HTTP_502_BAD_GATEWAY,
    ErrorCategory.CONSISTENCY: HTTP_500_INTERNAL_SERVER_ERROR,
}

# Codes whose status differs from their category's
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.MEMBERSHIP_REQUIRED: HTTP_403_FORBIDDEN,
    ErrorCode.PAYMENT_NOT_SUCCEEDED: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.RECONCILIATION_TIMEOUT: HTTP_504_GATEWAY_TIMEOUT,
}


def get_http_status_for_error(code: ErrorCode, category: ErrorCategory) -> int:
    """Get the HTTP status code for an error.

    Args:
        code: The ErrorCode to map
        category: The code's category, used when the code has no override

    Returns:
        HTTP status code, defaults to 400 if neither is mapped.
    """
    if code in ERROR_CODE_TO_HTTP_STATUS:
        return ERROR_CODE_TO_HTTP_STATUS[code]
    return CATEGORY_TO_HTTP_STATUS.get(category, HTTP_400_BAD_REQUEST)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Convert a BookingError into a ToolError JSON response."""
    status_code = get_http_status_for_error(exc.code, exc.category)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_tool_error().model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
