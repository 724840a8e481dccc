"""Service wiring.

``build_services`` constructs the whole dependency graph once per
process. Nothing inside the services reaches for a global; tests pass
their own DynamoDB service or gateway instead.
"""

import os
from dataclasses import dataclass

from rentals.models import PaymentProvider

from .booking_service import BookingService
from .dispute_service import DisputeService
from .dynamodb import DynamoDBService
from .expiry_service import BookingExpiryService
from .ledger import LedgerRepository
from .notification_service import NotificationService
from .payment_gateway import MockPaymentGateway, PaymentGateway
from .pricing import PricingService
from .refund_policy_service import RefundPolicyService
from .refund_service import RefundService
from .ssm_service import SSMService
from .stripe_gateway import StripePaymentGateway
from .unit_availability import UnitAvailabilityChecker
from .webhook_handler import WebhookHandler


@dataclass
class Services:
    """Every service of one process, sharing one ledger and gateway."""

    db: DynamoDBService
    ledger: LedgerRepository
    gateway: PaymentGateway
    notifications: NotificationService
    pricing: PricingService
    checker: UnitAvailabilityChecker
    refund_policy: RefundPolicyService
    refunds: RefundService
    bookings: BookingService
    disputes: DisputeService
    expiry: BookingExpiryService
    webhooks: WebhookHandler

    @property
    def stripe(self) -> StripePaymentGateway | None:
        """The Stripe gateway, when it is the configured provider."""
        return self.gateway if isinstance(self.gateway, StripePaymentGateway) else None


def build_gateway(provider: str | None = None) -> PaymentGateway:
    """Create the payment gateway named by PAYMENT_PROVIDER.

    Raises:
        ValueError: If the provider is unknown
    """
    provider = (provider or os.getenv("PAYMENT_PROVIDER", PaymentProvider.STRIPE.value)).lower()
    if provider == PaymentProvider.STRIPE.value:
        return StripePaymentGateway(SSMService())
    if provider == PaymentProvider.MOCK.value:
        return MockPaymentGateway()
    raise ValueError(f"Unknown payment provider: {provider}")


def build_services(
    db: DynamoDBService | None = None,
    gateway: PaymentGateway | None = None,
) -> Services:
    """Wire every service.

    Args:
        db: DynamoDB access; defaults to one for the current ENVIRONMENT
        gateway: Payment gateway; defaults to the PAYMENT_PROVIDER one
    """
    db = db or DynamoDBService()
    gateway = gateway or build_gateway()

    ledger = LedgerRepository(db)
    notifications = NotificationService(db)
    pricing = PricingService()
    checker = UnitAvailabilityChecker(ledger)
    refund_policy = RefundPolicyService()
    refunds = RefundService(ledger, gateway, notifications)
    bookings = BookingService(
        ledger=ledger,
        checker=checker,
        pricing=pricing,
        gateway=gateway,
        notifications=notifications,
        refunds=refunds,
        refund_policy=refund_policy,
    )

    return Services(
        db=db,
        ledger=ledger,
        gateway=gateway,
        notifications=notifications,
        pricing=pricing,
        checker=checker,
        refund_policy=refund_policy,
        refunds=refunds,
        bookings=bookings,
        disputes=DisputeService(ledger, refunds, notifications),
        expiry=BookingExpiryService(ledger, notifications),
        webhooks=WebhookHandler(db, bookings),
    )
