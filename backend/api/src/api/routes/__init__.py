"""API routes package.

Routers are organized by domain:

- bookings: Booking requests, direct-pay bookings, payments and status changes
- disputes: Opening and resolving disputes
- refunds: Refund creation and processing
- webhooks: Payment gateway webhooks

All routers are registered in main.py with /api prefix.
"""

from api.routes.bookings import router as bookings_router
from api.routes.disputes import router as disputes_router
from api.routes.refunds import router as refunds_router
from api.routes.webhooks import router as webhooks_router

__all__ = [
    "bookings_router",
    "disputes_router",
    "refunds_router",
    "webhooks_router",
]
