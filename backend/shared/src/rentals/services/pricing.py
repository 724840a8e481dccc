"""Pricing service for booking amount calculation."""

import datetime as dt
import os
from decimal import ROUND_HALF_UP, Decimal

from rentals.models import PriceQuote, Property, Unit, ValidationError

CENTS = Decimal("0.01")
PERIOD_DAYS = 30


def quantize(amount: Decimal) -> Decimal:
    """Round an amount to currency precision."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class PricingService:
    """Computes booking prices from property and unit rates.

    Rates are stored per 30-day period. A booking without an end date
    runs for exactly one period.
    """

    def __init__(self, platform_fee_percent: Decimal | None = None) -> None:
        """Initialize pricing service.

        Args:
            platform_fee_percent: Fee added on top of the booking amount.
                Defaults to the PLATFORM_FEE_PERCENT env var (0 if unset).
        """
        if platform_fee_percent is None:
            platform_fee_percent = Decimal(os.getenv("PLATFORM_FEE_PERCENT", "0"))
        self.platform_fee_percent = platform_fee_percent

    @staticmethod
    def rental_days(start_date: dt.date, end_date: dt.date | None) -> int:
        """Number of billed days for the requested period.

        Raises:
            ValidationError: If end_date is not after start_date
        """
        if end_date is None:
            return PERIOD_DAYS
        days = (end_date - start_date).days
        if days < 1:
            raise ValidationError("End date must be after start date")
        return days

    def calculate_price(
        self,
        prop: Property,
        units: list[Unit],
        start_date: dt.date,
        end_date: dt.date | None,
    ) -> PriceQuote:
        """Calculate the booking amount and platform fee.

        The period rate is the sum of the selected units' rates when every
        unit carries one; otherwise the property rate applies.

        Args:
            prop: The booked property
            units: Units being booked (may be empty)
            start_date: First day of the rental
            end_date: Day the rental ends, or None for one period

        Returns:
            PriceQuote with the breakdown
        """
        days = self.rental_days(start_date, end_date)

        priced_by_units = bool(units) and all(u.amount is not None for u in units)
        if priced_by_units:
            period_rate = sum((u.amount for u in units), Decimal("0"))  # type: ignore[misc]
        else:
            period_rate = prop.amount

        amount = quantize(period_rate / PERIOD_DAYS * days)
        platform_fee = quantize(amount * self.platform_fee_percent / 100)

        return PriceQuote(
            days=days,
            period_rate=period_rate,
            amount=amount,
            platform_fee=platform_fee,
            total_amount=amount + platform_fee,
            currency=prop.currency,
            priced_by_units=priced_by_units,
        )

    def platform_fee_for(self, amount: Decimal) -> Decimal:
        """Platform fee for an already-priced booking amount."""
        return quantize(amount * self.platform_fee_percent / 100)
