"""Gateway webhook event log for idempotency and auditing."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(BaseModel):
    """Log of a received payment gateway webhook event.

    A row is written before the event is acted on, so a redelivered
    event is recognised and skipped.
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Gateway event ID",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Gateway event type",
        examples=["checkout.session.completed", "checkout.session.expired"],
    )
    processed_at: datetime
    payload_hash: str = Field(..., description="SHA-256 hash of the raw payload")
    reference: str | None = Field(
        default=None,
        description="Transaction reference carried in the event metadata",
    )
    booking_id: str | None = None
    processing_result: str = Field(
        default="success",
        description="Result of processing: success, ignored, error",
    )
    error_message: str | None = None
