"""Integration tests for gateway webhooks driving payment confirmation.

Covers the WebhookHandler against mocked DynamoDB tables:
1. checkout.session.completed confirms the booking
2. Redelivered events are recognised and not processed twice
3. Payments completed after the booking was cancelled are refunded
4. Unpaid, expired and unknown events
"""

import hashlib
import json

import pytest

from rentals.models import (
    BookingCreate,
    BookingStatus,
    BookingStatusUpdate,
    TransactionStatus,
    UnitStatus,
)
from rentals.services.container import Services


def _event(event_id: str, event_type: str, reference: str | None, payment_status: str = "paid"):
    metadata = {"reference": reference} if reference else {}
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"payment_status": payment_status, "metadata": metadata}},
    }


def _hash(event: dict) -> str:
    return hashlib.sha256(json.dumps(event).encode()).hexdigest()


@pytest.fixture
def pending(services: Services, seed):
    """A direct-pay booking waiting for the gateway."""
    prop = seed.property()
    unit = seed.unit(prop)
    result = services.bookings.create_booking(
        BookingCreate(
            property_id=prop.property_id,
            start_date=seed.days_from_now(30),
            unit_ids=[unit.unit_id],
        ),
        "renter-1",
    )
    return result.data, unit


# === checkout.session.completed ===


class TestCheckoutCompleted:
    """Successful checkout events."""

    def test_confirms_booking(self, services: Services, pending) -> None:
        payment, unit = pending
        event = _event("evt_1", "checkout.session.completed", payment.reference)

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert (result, error) == ("success", None)
        booking = services.ledger.get_booking(payment.booking.booking_id)
        assert booking.status == BookingStatus.CONFIRMED
        assert services.ledger.get_unit(unit.unit_id).status == UnitStatus.RENTED
        logged = services.db.get_item("webhook-events", {"event_id": "evt_1"})
        assert logged["processing_result"] == "success"
        assert logged["booking_id"] == booking.booking_id

    def test_duplicate_event_not_processed_twice(self, services: Services, pending) -> None:
        payment, _ = pending
        event = _event("evt_dup", "checkout.session.completed", payment.reference)
        services.webhooks.handle_event(event, _hash(event))

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "duplicate"
        assert error is None
        completed = [
            t
            for t in services.ledger.get_booking_transactions(payment.booking.booking_id)
            if t.status == TransactionStatus.COMPLETED
        ]
        assert len(completed) == 1

    def test_new_event_after_client_confirm(self, services: Services, pending) -> None:
        """A webhook arriving after the renter confirmed is a no-op success."""
        payment, _ = pending
        services.bookings.confirm_booking_payment(payment.reference, "renter-1")
        event = _event("evt_late", "checkout.session.completed", payment.reference)

        result, _ = services.webhooks.handle_event(event, _hash(event))

        assert result == "success"

    def test_paid_after_cancellation_is_refunded(
        self, services: Services, gateway, pending
    ) -> None:
        """The renter cancelled, then finished the still-open checkout."""
        payment, _ = pending
        booking_id = payment.booking.booking_id
        services.bookings.update_booking_status(
            BookingStatusUpdate(
                booking_id=booking_id, status=BookingStatus.CANCELLED, user_id="renter-1"
            )
        )
        event = _event("evt_after_cancel", "checkout.session.completed", payment.reference)

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "error"
        assert error == "This payment attempt was closed; the payment is being refunded"
        txn = services.ledger.get_transaction_by_reference(payment.reference)
        assert txn.refunded_amount == txn.amount
        assert len(gateway.refunds) == 1
        assert services.ledger.get_booking(booking_id).status == BookingStatus.CANCELLED

    def test_unpaid_session_skipped(self, services: Services, pending) -> None:
        payment, _ = pending
        event = _event("evt_unpaid", "checkout.session.completed", payment.reference, "unpaid")

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "skipped"
        assert "unpaid" in error
        booking = services.ledger.get_booking(payment.booking.booking_id)
        assert booking.status == BookingStatus.PENDING

    def test_missing_reference(self, services: Services) -> None:
        event = _event("evt_noref", "checkout.session.completed", None)

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "error"
        assert error == "Missing reference in metadata"

    def test_unknown_reference(self, services: Services) -> None:
        event = _event("evt_unknown", "checkout.session.completed", "REF-NONE")

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "error"
        assert error == "Payment reference not found"
        assert services.db.get_item("webhook-events", {"event_id": "evt_unknown"}) is not None


# === Other events ===


class TestOtherEvents:
    """Expired and irrelevant events."""

    def test_expired_session_fails_attempt(self, services: Services, gateway, pending) -> None:
        """An expired checkout marks the attempt FAILED and frees the units."""
        payment, unit = pending
        gateway.fail_verification = True
        event = _event("evt_exp", "checkout.session.expired", payment.reference)

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert result == "success"
        assert error == "card_declined"
        txn = services.ledger.get_transaction_by_reference(payment.reference)
        assert txn.status == TransactionStatus.FAILED
        assert services.ledger.get_unit(unit.unit_id).status == UnitStatus.AVAILABLE

    def test_unrelated_event_ignored(self, services: Services) -> None:
        event = _event("evt_other", "customer.created", None)

        result, error = services.webhooks.handle_event(event, _hash(event))

        assert (result, error) == ("ignored", None)
        logged = services.db.get_item("webhook-events", {"event_id": "evt_other"})
        assert logged["processing_result"] == "ignored"
        assert logged["payload_hash"] == _hash(event)
