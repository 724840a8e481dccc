"""Notification models.

Each notification kind carries its own payload schema; the payload is a
discriminated union keyed by ``kind`` so producers cannot drift from
what consumers expect.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from .enums import NotificationKind


class BookingRequestPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_REQUEST] = NotificationKind.BOOKING_REQUEST
    booking_id: str
    property_id: str


class BookingApprovedPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_APPROVED] = NotificationKind.BOOKING_APPROVED
    booking_id: str
    property_id: str


class BookingDeclinedPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_DECLINED] = NotificationKind.BOOKING_DECLINED
    booking_id: str
    property_id: str


class BookingCreatedPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_CREATED] = NotificationKind.BOOKING_CREATED
    booking_id: str
    payment_url: str
    total_amount: Decimal
    platform_fee: Decimal


class BookingConfirmedPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_CONFIRMED] = NotificationKind.BOOKING_CONFIRMED
    booking_id: str
    property_id: str


class BookingCancelledPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_CANCELLED] = NotificationKind.BOOKING_CANCELLED
    booking_id: str
    cancelled_by: str
    reason: str | None = None


class BookingCompletedPayload(BaseModel):
    kind: Literal[NotificationKind.BOOKING_COMPLETED] = NotificationKind.BOOKING_COMPLETED
    booking_id: str


class PaymentConfirmedPayload(BaseModel):
    kind: Literal[NotificationKind.PAYMENT_CONFIRMED] = NotificationKind.PAYMENT_CONFIRMED
    booking_id: str
    transaction_id: str
    amount: Decimal


class PaymentFailedPayload(BaseModel):
    kind: Literal[NotificationKind.PAYMENT_FAILED] = NotificationKind.PAYMENT_FAILED
    booking_id: str
    transaction_id: str
    reason: str


class DisputeCreatedPayload(BaseModel):
    kind: Literal[NotificationKind.DISPUTE_CREATED] = NotificationKind.DISPUTE_CREATED
    dispute_id: str
    booking_id: str


class DisputeResolvedPayload(BaseModel):
    kind: Literal[NotificationKind.DISPUTE_RESOLVED] = NotificationKind.DISPUTE_RESOLVED
    dispute_id: str
    booking_id: str
    resolution: str
    refund_amount: Decimal | None = None


class RefundCreatedPayload(BaseModel):
    kind: Literal[NotificationKind.REFUND_CREATED] = NotificationKind.REFUND_CREATED
    refund_id: str
    transaction_id: str
    amount: Decimal


class RefundApprovedPayload(BaseModel):
    kind: Literal[NotificationKind.REFUND_APPROVED] = NotificationKind.REFUND_APPROVED
    refund_id: str
    amount: Decimal


class RefundRejectedPayload(BaseModel):
    kind: Literal[NotificationKind.REFUND_REJECTED] = NotificationKind.REFUND_REJECTED
    refund_id: str
    reason: str


class RefundFailedPayload(BaseModel):
    kind: Literal[NotificationKind.REFUND_FAILED] = NotificationKind.REFUND_FAILED
    refund_id: str
    amount: Decimal


NotificationPayload = Annotated[
    Union[
        BookingRequestPayload,
        BookingApprovedPayload,
        BookingDeclinedPayload,
        BookingCreatedPayload,
        BookingConfirmedPayload,
        BookingCancelledPayload,
        BookingCompletedPayload,
        PaymentConfirmedPayload,
        PaymentFailedPayload,
        DisputeCreatedPayload,
        DisputeResolvedPayload,
        RefundCreatedPayload,
        RefundApprovedPayload,
        RefundRejectedPayload,
        RefundFailedPayload,
    ],
    Field(discriminator="kind"),
]


class Notification(BaseModel):
    """A stored user notification."""

    notification_id: str
    user_id: str
    title: str
    message: str
    kind: NotificationKind
    payload: NotificationPayload
    read: bool = False
    created_at: datetime
