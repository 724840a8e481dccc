"""Refund models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import RefundStatus


class Refund(BaseModel):
    """A monetary reversal against a completed payment transaction."""

    refund_id: str
    transaction_id: str
    booking_id: str
    user_id: str = Field(..., description="Owner of the refunded transaction")
    dispute_id: str | None = None
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(default="NGN")
    reason: str = ""
    status: RefundStatus = RefundStatus.PENDING
    requested_by: str
    processed_by: str | None = None
    processed_at: datetime | None = None
    rejection_reason: str | None = None
    failure_reason: str | None = None
    gateway_refund_ref: str | None = None
    created_at: datetime
    updated_at: datetime


class RefundCreate(BaseModel):
    """Input for creating a refund."""

    model_config = ConfigDict(strict=False)

    transaction_id: str
    amount: Decimal = Field(..., gt=0)
    reason: str = Field(default="", max_length=2000)
    dispute_id: Optional[str] = None
