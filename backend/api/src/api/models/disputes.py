"""API models for dispute endpoints."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rentals.models import BookingStatus, DisputeStatus


class DisputeResolveRequest(BaseModel):
    """Administrator resolution of a dispute; the dispute ID comes from the path."""

    model_config = ConfigDict(
        strict=False,
        json_schema_extra={
            "examples": [
                {
                    "status": "RESOLVED",
                    "resolution": "Unit was not as described; partial refund granted",
                    "refund_amount": "25000.00",
                }
            ]
        },
    )

    status: DisputeStatus = Field(..., description="RESOLVED or REJECTED")
    resolution: str = Field(..., min_length=1, max_length=5000)
    refund_amount: Optional[Decimal] = Field(default=None, ge=0)
    booking_status: Optional[BookingStatus] = Field(
        default=None, description="Override the booking outcome (COMPLETED or CANCELLED)"
    )

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
