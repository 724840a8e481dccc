"""Enumeration types for marketplace ledger entities."""

from enum import Enum


class BookingStatus(str, Enum):
    """Status of a booking.

    Two-step flow: REQUESTED -> APPROVED -> PENDING_PAYMENT -> CONFIRMED.
    Direct-pay flow: PENDING -> CONFIRMED.
    Paid bookings move on to ACTIVE, COMPLETED, CANCELLED or DISPUTED.
    """

    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BOOKING_STATUSES


TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# Bookings that still wait for a completed payment
AWAITING_PAYMENT_STATUSES = frozenset(
    {BookingStatus.APPROVED, BookingStatus.PENDING, BookingStatus.PENDING_PAYMENT}
)

# Bookings backed by a completed payment transaction
PAID_BOOKING_STATUSES = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.ACTIVE,
        BookingStatus.COMPLETED,
        BookingStatus.DISPUTED,
    }
)


class UnitStatus(str, Enum):
    """Status of a leasable unit."""

    AVAILABLE = "AVAILABLE"
    HELD = "HELD"  # Provisionally held by a booking awaiting payment
    RENTED = "RENTED"
    MAINTENANCE = "MAINTENANCE"


class PropertyStatus(str, Enum):
    """Listing status of a property."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    ARCHIVED = "ARCHIVED"


class TransactionType(str, Enum):
    """Kind of payment a transaction records."""

    RENT_PAYMENT = "RENT_PAYMENT"
    LEASE_PAYMENT = "LEASE_PAYMENT"
    SALE_PAYMENT = "SALE_PAYMENT"


class TransactionStatus(str, Enum):
    """Status of a payment transaction."""

    PENDING = "PENDING"
    HELD = "HELD"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


REFUNDABLE_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.HELD}
)


class DisputeStatus(str, Enum):
    """Status of a dispute."""

    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class RefundStatus(str, Enum):
    """Status of a refund.

    PROCESSING is claimed before the gateway call so a refund
    can never be executed twice. FAILED refunds may be retried.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class RefundAction(str, Enum):
    """Admin decision on a refund."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"


class PaymentProvider(str, Enum):
    """Payment processing providers."""

    STRIPE = "stripe"
    MOCK = "mock"


class GatewayPaymentStatus(str, Enum):
    """Outcome reported by the payment gateway for a collection."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class NotificationKind(str, Enum):
    """Kinds of user notification emitted by the ledger services."""

    BOOKING_REQUEST = "BOOKING_REQUEST"
    BOOKING_APPROVED = "BOOKING_APPROVED"
    BOOKING_DECLINED = "BOOKING_DECLINED"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    DISPUTE_CREATED = "DISPUTE_CREATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    REFUND_CREATED = "REFUND_CREATED"
    REFUND_APPROVED = "REFUND_APPROVED"
    REFUND_REJECTED = "REFUND_REJECTED"
    REFUND_FAILED = "REFUND_FAILED"
