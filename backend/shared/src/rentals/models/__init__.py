"""Pydantic models for the rental marketplace ledger."""

from .booking import (
    Booking,
    BookingCreate,
    BookingPayment,
    BookingRequestCreate,
    BookingStatusUpdate,
    PaginatedBookings,
    Pagination,
    PaymentConfirmation,
)
from .dispute import Dispute, DisputeCreate, DisputeResolve, PaginatedDisputes
from .enums import (
    AWAITING_PAYMENT_STATUSES,
    PAID_BOOKING_STATUSES,
    REFUNDABLE_TRANSACTION_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    DisputeStatus,
    GatewayPaymentStatus,
    NotificationKind,
    PaymentProvider,
    PropertyStatus,
    RefundAction,
    RefundStatus,
    TransactionStatus,
    TransactionType,
    UnitStatus,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    STRIPE_ERROR_MESSAGES,
    STRIPE_RETRYABLE_ERRORS,
    BookingError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    GatewayError,
    InvalidWebhookSignatureError,
    NotFoundError,
    RefundGatewayError,
    ValidationError,
    get_user_friendly_stripe_message,
    is_stripe_error_retryable,
)
from .notification import Notification, NotificationPayload
from .pricing import PriceQuote
from .property import BookingUnit, Property, Unit, UnitUpdate
from .refund import Refund, RefundCreate
from .results import OperationResult, UnitValidationResult, ValidationReport
from .transaction import (
    CollectionResult,
    PaymentVerification,
    RefundExecution,
    Transaction,
)
from .webhook_event import WebhookEvent

__all__ = [
    # Enums
    "AWAITING_PAYMENT_STATUSES",
    "PAID_BOOKING_STATUSES",
    "REFUNDABLE_TRANSACTION_STATUSES",
    "TERMINAL_BOOKING_STATUSES",
    "BookingStatus",
    "DisputeStatus",
    "GatewayPaymentStatus",
    "NotificationKind",
    "PaymentProvider",
    "PropertyStatus",
    "RefundAction",
    "RefundStatus",
    "TransactionStatus",
    "TransactionType",
    "UnitStatus",
    # Booking
    "Booking",
    "BookingCreate",
    "BookingPayment",
    "BookingRequestCreate",
    "BookingStatusUpdate",
    "PaginatedBookings",
    "Pagination",
    "PaymentConfirmation",
    # Property
    "PriceQuote",
    "BookingUnit",
    "Property",
    "Unit",
    "UnitUpdate",
    # Transaction
    "CollectionResult",
    "PaymentVerification",
    "RefundExecution",
    "Transaction",
    # Dispute
    "Dispute",
    "DisputeCreate",
    "DisputeResolve",
    "PaginatedDisputes",
    # Refund
    "Refund",
    "RefundCreate",
    # Notification
    "Notification",
    "NotificationPayload",
    # Results
    "OperationResult",
    "UnitValidationResult",
    "ValidationReport",
    # Errors
    "BookingError",
    "ConflictError",
    "ErrorCode",
    "ErrorResponse",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ForbiddenError",
    "GatewayError",
    "InvalidWebhookSignatureError",
    "NotFoundError",
    "RefundGatewayError",
    "STRIPE_ERROR_MESSAGES",
    "STRIPE_RETRYABLE_ERRORS",
    "ValidationError",
    "get_user_friendly_stripe_message",
    "is_stripe_error_retryable",
    # Webhooks
    "WebhookEvent",
]
