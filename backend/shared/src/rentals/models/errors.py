"""Standard error codes for the ledger services.

Every failure a caller can see is one of a small set of kinds:
validation, not found, forbidden, conflict or gateway. Services raise
the typed BookingError subclasses below; the transport layer converts
them to an ErrorResponse body and a protocol status code.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error kinds surfaced to callers."""

    VALIDATION = "ERR_VALIDATION"
    NOT_FOUND = "ERR_NOT_FOUND"
    FORBIDDEN = "ERR_FORBIDDEN"
    CONFLICT = "ERR_CONFLICT"
    GATEWAY = "ERR_GATEWAY"
    INTERNAL = "ERR_INTERNAL"

    # Webhook errors
    INVALID_WEBHOOK_SIGNATURE = "ERR_WEBHOOK_001"


# Default human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "The request is invalid",
    ErrorCode.NOT_FOUND: "The requested resource was not found",
    ErrorCode.FORBIDDEN: "You are not allowed to perform this action",
    ErrorCode.CONFLICT: "The resource was modified by another request",
    ErrorCode.GATEWAY: "Payment could not be verified, please retry",
    ErrorCode.INTERNAL: "An unexpected error occurred",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
}

# Recovery suggestions for API clients
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "Correct the request and try again",
    ErrorCode.NOT_FOUND: "Verify the identifier and try again",
    ErrorCode.FORBIDDEN: "Only a party to this booking or an administrator may do this",
    ErrorCode.CONFLICT: "Reload the latest data and retry the request",
    ErrorCode.GATEWAY: "Retry the payment or use a different payment method",
    ErrorCode.INTERNAL: "Please try again later or contact support",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
}

RETRYABLE_ERRORS: frozenset[ErrorCode] = frozenset({ErrorCode.CONFLICT, ErrorCode.GATEWAY})


class ErrorResponse(BaseModel):
    """Standard error body returned for every failed operation."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    retryable: bool = False
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
        recovery: Optional[str] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            message: Message overriding the default for the code
            details: Optional additional context about the error
            recovery: Recovery hint overriding the default for the code

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=message or ERROR_MESSAGES[code],
            recovery=recovery or ERROR_RECOVERY[code],
            retryable=code in RETRYABLE_ERRORS,
            details=details,
        )


class BookingError(Exception):
    """Base exception raised by booking, dispute and refund operations."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
    ):
        self.message = message or ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_ERRORS

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.message, self.details, self.recovery)


class ValidationError(BookingError):
    """Malformed or inconsistent input; never retried automatically."""

    code = ErrorCode.VALIDATION


class NotFoundError(BookingError):
    """A referenced entity does not exist."""

    code = ErrorCode.NOT_FOUND


class ForbiddenError(BookingError):
    """The caller has no rights over the target entity."""

    code = ErrorCode.FORBIDDEN


class ConflictError(BookingError):
    """A concurrent mutation won the race; the caller may retry with fresh data."""

    code = ErrorCode.CONFLICT


class GatewayError(BookingError):
    """The payment gateway failed or returned an ambiguous result.

    The user-visible message is fixed per subclass; the gateway detail
    is kept on ``reason`` for logs.
    """

    code = ErrorCode.GATEWAY
    user_message: Optional[str] = None
    user_recovery: Optional[str] = None

    def __init__(
        self,
        reason: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
        gateway_error_code: Optional[str] = None,
    ):
        super().__init__(self.user_message, details)
        if self.user_recovery:
            self.recovery = self.user_recovery
        self.reason = reason
        self.gateway_error_code = gateway_error_code


class RefundGatewayError(GatewayError):
    """The gateway refused or failed a refund; the refund is left FAILED."""

    user_message = "The refund could not be completed by the payment provider"
    user_recovery = "Approve the refund again to retry it"


class InvalidWebhookSignatureError(BookingError):
    """Webhook payload could not be authenticated."""

    code = ErrorCode.INVALID_WEBHOOK_SIGNATURE


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    # Card errors - user can fix
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "charge_already_refunded": "This payment has already been refunded.",
    "generic_decline": "Your card was declined. Please try a different card.",
}

# Stripe error codes that indicate the caller should retry
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'card_declined').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check whether a Stripe error code is worth retrying."""
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
