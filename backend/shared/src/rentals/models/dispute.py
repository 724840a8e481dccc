"""Dispute models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .booking import Pagination
from .enums import BookingStatus, DisputeStatus


class Dispute(BaseModel):
    """An adjudication request raised against a booking.

    Terminal once RESOLVED or REJECTED. ``parent_dispute_id`` links an
    appeal to the dispute it follows up on.
    """

    dispute_id: str
    booking_id: str
    initiator_id: str
    reason: str
    description: str = ""
    status: DisputeStatus = DisputeStatus.PENDING
    resolution: str = ""
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    refund_id: str | None = None
    parent_dispute_id: str | None = None
    created_at: datetime
    updated_at: datetime


class DisputeCreate(BaseModel):
    """Input for raising a dispute."""

    model_config = ConfigDict(strict=False)

    booking_id: str
    reason: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    parent_dispute_id: Optional[str] = None


class DisputeResolve(BaseModel):
    """Admin resolution of a pending dispute.

    ``booking_status`` overrides the default outcome (COMPLETED for
    RESOLVED, CANCELLED for REJECTED).
    """

    model_config = ConfigDict(strict=False)

    dispute_id: str
    status: DisputeStatus
    resolution: str = Field(..., min_length=1, max_length=5000)
    refund_amount: Optional[Decimal] = Field(default=None, ge=0)
    booking_status: Optional[BookingStatus] = None

    @field_validator("status")
    @classmethod
    def _terminal_status(cls, value: DisputeStatus) -> DisputeStatus:
        if value == DisputeStatus.PENDING:
            raise ValueError("Resolution status must be RESOLVED or REJECTED")
        return value

    @field_validator("booking_status")
    @classmethod
    def _terminal_booking_status(
        cls, value: Optional[BookingStatus]
    ) -> Optional[BookingStatus]:
        if value is not None and value not in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
            raise ValueError("booking_status must be COMPLETED or CANCELLED")
        return value


class PaginatedDisputes(BaseModel):
    """A page of disputes."""

    items: list[Dispute]
    total_count: int
    pagination: Pagination
