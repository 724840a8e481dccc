"""Shared API response models.

Domain models and ErrorResponse live in rentals.models; this module only
holds HTTP-layer concerns.
"""

from pydantic import BaseModel, Field

from rentals.models import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "HealthResponse",
    "WebhookResponse",
]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., examples=["ok"])
    timestamp: str
    service: str = Field(..., examples=["rentals-api"])


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment gateway."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: str  # "success", "duplicate", "skipped", "ignored", "error"
    message: str | None = None
