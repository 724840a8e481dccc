"""Ledger services for the rental marketplace."""

from .booking_service import BookingService
from .container import Services, build_gateway, build_services
from .dispute_service import DisputeService
from .dynamodb import DynamoDBService
from .expiry_service import BookingExpiryService
from .ledger import LedgerRepository
from .notification_service import NotificationService
from .payment_gateway import MockPaymentGateway, PaymentGateway
from .pricing import PricingService
from .refund_policy_service import RefundPolicyService
from .refund_service import RefundService
from .ssm_service import SSMService, SSMServiceError
from .stripe_gateway import StripePaymentGateway
from .unit_availability import UnitAvailabilityChecker
from .webhook_handler import WebhookHandler

__all__ = [
    "BookingExpiryService",
    "BookingService",
    "DisputeService",
    "DynamoDBService",
    "LedgerRepository",
    "MockPaymentGateway",
    "NotificationService",
    "PaymentGateway",
    "PricingService",
    "RefundPolicyService",
    "RefundService",
    "SSMService",
    "SSMServiceError",
    "Services",
    "StripePaymentGateway",
    "UnitAvailabilityChecker",
    "WebhookHandler",
    "build_gateway",
    "build_services",
]
