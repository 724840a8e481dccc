"""FastAPI dependency providers for the ledger services.

The whole service graph is built once by ``build_services`` and cached
with @lru_cache. Route-level providers pick single services out of it,
so tests can swap the graph with ``app.dependency_overrides[get_services]``.

Usage in routes:
    from api.dependencies import get_booking_service

    @router.post("/bookings")
    async def create_booking(
        service: BookingService = Depends(get_booking_service),
    ):
        ...

Testing:
    Use reset_services() to clear the cached graph between tests.
"""

from functools import lru_cache

from fastapi import Depends

from rentals.services.booking_service import BookingService
from rentals.services.container import Services, build_services
from rentals.services.dispute_service import DisputeService
from rentals.services.refund_service import RefundService
from rentals.services.stripe_gateway import StripePaymentGateway
from rentals.services.webhook_handler import WebhookHandler


@lru_cache
def get_services() -> Services:
    """Get the cached service graph for this process."""
    return build_services()


def get_booking_service(services: Services = Depends(get_services)) -> BookingService:
    return services.bookings


def get_dispute_service(services: Services = Depends(get_services)) -> DisputeService:
    return services.disputes


def get_refund_service(services: Services = Depends(get_services)) -> RefundService:
    return services.refunds


def get_webhook_handler(services: Services = Depends(get_services)) -> WebhookHandler:
    return services.webhooks


def get_stripe_gateway(services: Services = Depends(get_services)) -> StripePaymentGateway | None:
    """The Stripe gateway, or None when another provider is configured."""
    return services.stripe


def reset_services() -> None:
    """Clear the cached service graph.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    get_services.cache_clear()
