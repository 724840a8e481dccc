"""Scheduled Lambda that cancels unpaid bookings past their payment window.

Triggered by an EventBridge schedule; the event body is ignored.
"""

from typing import Any

from rentals.services.container import build_services
from rentals.utils.logging import configure_logging, get_logger, set_correlation_id

configure_logging()
logger = get_logger(__name__)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point."""
    request_id = getattr(context, "aws_request_id", None)
    set_correlation_id(request_id)

    services = build_services()
    expired = services.expiry.expire_stale_bookings()

    logger.info("Booking expiry run finished", extra={"expired_count": len(expired)})
    return {"expired_count": len(expired), "booking_ids": expired}
