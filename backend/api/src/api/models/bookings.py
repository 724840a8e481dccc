"""API models for booking endpoints.

Creation bodies reuse the shared BookingRequestCreate / BookingCreate
models; the caller's identity comes from the request headers.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from rentals.models import BookingStatus


class RespondRequest(BaseModel):
    """Host decision on a booking request."""

    model_config = ConfigDict(strict=False, json_schema_extra={"examples": [{"accept": True}]})

    accept: bool = Field(..., description="True to approve, false to decline")


class ConfirmPaymentRequest(BaseModel):
    """Confirm a payment by its reference."""

    model_config = ConfigDict(
        strict=False, json_schema_extra={"examples": [{"reference": "REF-3F9A0C1B2D4E5F60"}]}
    )

    reference: str = Field(..., min_length=1, description="Payment reference from initiation")


class StatusUpdateRequest(BaseModel):
    """Cancel, start or complete a booking."""

    model_config = ConfigDict(
        strict=False,
        json_schema_extra={"examples": [{"status": "CANCELLED", "reason": "Plans changed"}]},
    )

    status: BookingStatus = Field(..., description="CANCELLED, ACTIVE or COMPLETED")
    reason: Optional[str] = Field(default=None, max_length=500)
