"""Booking models for the rental lifecycle."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import BookingStatus


class Booking(BaseModel):
    """One rental reservation.

    ``amount`` is fixed at creation from the property/unit rates and
    never changes afterwards. ``end_date`` is optional for period-based
    rentals, which run for one 30-day period.
    """

    booking_id: str = Field(..., description="Unique booking ID")
    renter_id: str = Field(..., description="Renter user ID")
    property_id: str = Field(..., description="Booked property")
    owner_id: str = Field(..., description="Property owner at booking time")
    start_date: date
    end_date: date | None = None
    amount: Decimal = Field(..., ge=0, description="Booking price, currency-exact")
    currency: str = Field(default="NGN")
    status: BookingStatus
    unit_ids: list[str] = Field(default_factory=list)
    idempotency_key: str | None = None
    special_requests: str | None = None
    active_dispute_id: str | None = Field(
        default=None, description="Set while a PENDING dispute freezes the booking"
    )
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    responded_at: datetime | None = None

    def is_party(self, user_id: str) -> bool:
        """True if the user is the renter or the property owner."""
        return user_id in (self.renter_id, self.owner_id)


class BookingRequestCreate(BaseModel):
    """Input for the two-step (host approval) flow."""

    model_config = ConfigDict(strict=False)

    property_id: str
    start_date: date
    end_date: Optional[date] = None
    unit_ids: list[str] = Field(default_factory=list)
    special_requests: Optional[str] = Field(default=None, max_length=500)


class BookingCreate(BaseModel):
    """Input for the direct-payment flow."""

    model_config = ConfigDict(strict=False)

    property_id: str
    start_date: date
    end_date: Optional[date] = None
    unit_ids: list[str] = Field(default_factory=list)
    special_requests: Optional[str] = Field(default=None, max_length=500)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class BookingStatusUpdate(BaseModel):
    """Input for a generic cancellation/completion transition."""

    model_config = ConfigDict(strict=False)

    booking_id: str
    status: BookingStatus
    user_id: str
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingPayment(BaseModel):
    """Booking together with its pending payment collection."""

    booking: Booking
    reference: str
    payment_url: str
    amount: Decimal
    currency: str


class PaymentConfirmation(BaseModel):
    """Result of confirming a payment reference."""

    booking: Booking
    transaction_id: str
    reference: str
    already_confirmed: bool = False


class Pagination(BaseModel):
    """Page metadata for list queries."""

    current_page: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    limit: int


class PaginatedBookings(BaseModel):
    """A page of bookings."""

    items: list[Booking]
    total_count: int
    pagination: Pagination
