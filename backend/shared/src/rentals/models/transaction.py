"""Transaction model and payment gateway result types."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import GatewayPaymentStatus, PaymentProvider, TransactionStatus, TransactionType


class Transaction(BaseModel):
    """An immutable financial event for a booking.

    Once COMPLETED, ``amount`` and ``reference`` never change.
    ``reserved_refund_amount`` counts every refund created and not
    rejected; ``refunded_amount`` only those the gateway executed, so
    ``refunded_amount <= reserved_refund_amount <= amount``.
    """

    transaction_id: str = Field(..., description="Unique transaction ID")
    reference: str = Field(..., description="Gateway correlation reference")
    type: TransactionType = Field(default=TransactionType.RENT_PAYMENT)
    amount: Decimal = Field(..., ge=0, description="Amount charged, fee included")
    base_amount: Decimal | None = Field(default=None, description="Booking amount before fee")
    platform_fee: Decimal = Field(default=Decimal("0"))
    currency: str = Field(default="NGN")
    status: TransactionStatus
    booking_id: str
    user_id: str
    property_id: str
    gateway: PaymentProvider
    gateway_ref: str | None = Field(
        default=None,
        description="Gateway-side id (Checkout Session ID for Stripe)",
    )
    payment_url: str | None = None
    failure_reason: str | None = None
    refunded_amount: Decimal = Field(default=Decimal("0"), ge=0)
    reserved_refund_amount: Decimal = Field(default=Decimal("0"), ge=0)
    late_payment: bool = Field(
        default=False,
        description="Paid after the booking stopped accepting this attempt; refunded in full",
    )
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    @property
    def unreserved_amount(self) -> Decimal:
        """Amount no refund has claimed yet."""
        return self.amount - self.reserved_refund_amount


class CollectionResult(BaseModel):
    """Result of asking the gateway to collect a payment."""

    payment_url: str
    gateway_ref: str
    expires_at: datetime | None = None


class PaymentVerification(BaseModel):
    """Gateway view of a collection attempt."""

    status: GatewayPaymentStatus
    amount: Decimal | None = None
    gateway_ref: str
    payment_intent_id: str | None = None
    failure_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == GatewayPaymentStatus.SUCCESS


class RefundExecution(BaseModel):
    """Gateway view of an executed refund."""

    status: str
    gateway_refund_ref: str | None = None
    amount: Decimal | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("succeeded", "pending")
