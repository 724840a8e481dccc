"""Webhook handler for processing payment gateway events.

Keeps the business side of webhooks apart from HTTP routing so it can
be unit tested without a request. Every event is recorded in the
webhook-events table; a redelivered event is recognised by its id and
acknowledged without being processed again.
"""

from typing import TYPE_CHECKING, Any

from rentals.models import BookingError, GatewayError, WebhookEvent
from rentals.utils.logging import get_logger, log_webhook_event

from .dynamodb import to_item, utc_now

if TYPE_CHECKING:
    from .booking_service import BookingService
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"


class WebhookHandler:
    """Applies verified gateway events to the ledger.

    Confirmation goes through the same path as a client-side confirm,
    with no caller check since the event signature was already verified.
    """

    WEBHOOK_EVENTS_TABLE = "webhook-events"

    def __init__(self, db: "DynamoDBService", bookings: "BookingService") -> None:
        self._db = db
        self._bookings = bookings

    def is_event_already_processed(self, event_id: str) -> bool:
        existing = self._db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
        return existing is not None

    def log_event(
        self,
        event_id: str,
        event_type: str,
        payload_hash: str,
        reference: str | None,
        booking_id: str | None,
        processing_result: str,
        error_message: str | None = None,
    ) -> None:
        """Record a webhook event for idempotency and audit."""
        record = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            processed_at=utc_now(),
            payload_hash=payload_hash,
            reference=reference,
            booking_id=booking_id,
            processing_result=processing_result,
            error_message=error_message,
        )
        stored = self._db.put_item(
            self.WEBHOOK_EVENTS_TABLE,
            to_item(record),
            condition_expression="attribute_not_exists(event_id)",
        )
        if not stored:
            logger.info("Webhook event %s was already logged", event_id)

    def handle_event(self, event: dict[str, Any], payload_hash: str) -> tuple[str, str | None]:
        """Process one verified event.

        Args:
            event: Parsed gateway event
            payload_hash: SHA-256 of the raw payload

        Returns:
            Tuple of (processing_result, error_message)
        """
        event_id = event.get("id", "")
        event_type = event.get("type", "")

        if self.is_event_already_processed(event_id):
            log_webhook_event(logger, event_type, event_id, result="duplicate")
            return "duplicate", None

        session = event.get("data", {}).get("object", {})
        reference = (session.get("metadata") or {}).get("reference")

        if event_type == CHECKOUT_COMPLETED:
            result, error, booking_id = self._process_checkout_completed(session, reference)
        elif event_type == CHECKOUT_EXPIRED:
            result, error, booking_id = self._process_checkout_expired(reference)
        else:
            result, error, booking_id = "ignored", None, None

        self.log_event(
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            reference=reference,
            booking_id=booking_id,
            processing_result=result,
            error_message=error,
        )
        log_webhook_event(
            logger,
            event_type,
            event_id,
            reference=reference,
            booking_id=booking_id,
            result=result,
            error=error,
        )
        return result, error

    def _process_checkout_completed(
        self, session: dict[str, Any], reference: str | None
    ) -> tuple[str, str | None, str | None]:
        if not reference:
            logger.warning("%s without reference in metadata", CHECKOUT_COMPLETED)
            return "error", "Missing reference in metadata", None

        payment_status = session.get("payment_status")
        if payment_status != "paid":
            return "skipped", f"Payment status is '{payment_status}', not 'paid'", None

        try:
            outcome = self._bookings.confirm_booking_payment(reference, None)
        except BookingError as e:
            return "error", e.message, None

        if not outcome.success or outcome.data is None:
            return "error", outcome.message, None
        return "success", None, outcome.data.booking.booking_id

    def _process_checkout_expired(
        self, reference: str | None
    ) -> tuple[str, str | None, str | None]:
        """Run confirmation on an expired session so the attempt is marked FAILED."""
        if not reference:
            return "error", "Missing reference in metadata", None

        try:
            outcome = self._bookings.confirm_booking_payment(reference, None)
        except GatewayError as e:
            # Expected: verification reports the session as not paid
            return "success", e.reason, None
        except BookingError as e:
            return "error", e.message, None

        if not outcome.success or outcome.data is None:
            return "error", outcome.message, None
        return "success", None, outcome.data.booking.booking_id
