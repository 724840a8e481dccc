"""Refund policy service for renter cancellations.

Cancellation refund tiers, counted against the booking start date:
- Full refund (100%): cancel 14+ days before start
- Partial refund (50%): cancel 7-13 days before start
- No refund (0%): cancel less than 7 days before start, or after it
"""

import datetime as dt
from decimal import Decimal
from typing import TypedDict

from .pricing import quantize


class RefundCalculation(TypedDict):
    """Result of refund policy calculation."""

    refund_amount: Decimal
    refund_percentage: int  # 0, 50, or 100
    policy_tier: str  # "full", "partial", or "none"
    days_until_start: int
    description: str


class RefundPolicyService:
    """Calculates refund amounts based on cancellation timing."""

    # Policy thresholds (days before start)
    FULL_REFUND_DAYS = 14
    PARTIAL_REFUND_DAYS = 7

    FULL_REFUND_PERCENT = 100
    PARTIAL_REFUND_PERCENT = 50
    NO_REFUND_PERCENT = 0

    def calculate_refund_amount(
        self,
        paid_amount: Decimal,
        start_date: dt.date,
        cancellation_date: dt.date,
    ) -> RefundCalculation:
        """Calculate refund amount based on cancellation timing.

        Args:
            paid_amount: Amount the renter paid
            start_date: Booking start date
            cancellation_date: Date of cancellation request

        Returns:
            RefundCalculation with refund amount and policy details
        """
        # Negative once the rental has started
        days_until_start = (start_date - cancellation_date).days

        if days_until_start >= self.FULL_REFUND_DAYS:
            percentage = self.FULL_REFUND_PERCENT
            tier = "full"
            description = (
                f"Full refund (100%): Cancelled {days_until_start} days before start"
            )
        elif days_until_start >= self.PARTIAL_REFUND_DAYS:
            percentage = self.PARTIAL_REFUND_PERCENT
            tier = "partial"
            description = (
                f"Partial refund (50%): Cancelled {days_until_start} days before start"
            )
        else:
            percentage = self.NO_REFUND_PERCENT
            tier = "none"
            if days_until_start < 0:
                description = "No refund: Cancelled after the rental started"
            else:
                description = (
                    f"No refund (0%): Cancelled {days_until_start} days before start"
                )

        refund_amount = quantize(paid_amount * percentage / 100)

        return RefundCalculation(
            refund_amount=refund_amount,
            refund_percentage=percentage,
            policy_tier=tier,
            days_until_start=days_until_start,
            description=description,
        )

    def get_policy_description(self) -> str:
        """Human-readable description of the refund policy."""
        return (
            "Cancellation Policy:\n"
            "• 14+ days before start: Full refund (100%)\n"
            "• 7-13 days before start: Partial refund (50%)\n"
            "• Less than 7 days before start: No refund\n"
            "• After the rental started: No refund"
        )
