"""Price quote model."""

from decimal import Decimal

from pydantic import BaseModel, Field


class PriceQuote(BaseModel):
    """Server-side price breakdown for a booking.

    ``amount`` is what the booking records; ``total_amount`` adds the
    platform fee and is what the renter is charged.
    """

    days: int = Field(..., ge=1)
    period_rate: Decimal = Field(..., description="Rate for one 30-day period")
    amount: Decimal
    platform_fee: Decimal = Field(default=Decimal("0"))
    total_amount: Decimal
    currency: str = Field(default="NGN")
    priced_by_units: bool = False
