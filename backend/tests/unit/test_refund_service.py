"""Unit tests for RefundService against mocked DynamoDB tables.

Test categories:
- create_refund(): refundable amount and transaction status checks
- process_refund(): approve, reject, gateway failure and retry
- Concurrency: racing creations, interleaved approvals, claiming a refund twice
- Reconciliation of refunds left PROCESSING
"""

import datetime as dt
from decimal import Decimal

import pytest

from rentals.models import (
    ConflictError,
    GatewayError,
    NotFoundError,
    RefundAction,
    RefundCreate,
    RefundGatewayError,
    RefundStatus,
    TransactionStatus,
    ValidationError,
)
from rentals.services.container import Services

ADMIN = "admin-1"


@pytest.fixture
def paid(services: Services, seed, gateway):
    booking, txn, units = seed.paid_booking(gateway)
    return booking, txn


def _create(services: Services, txn, amount: str, reason: str = "Goodwill") -> str:
    result = services.refunds.create_refund(
        RefundCreate(transaction_id=txn.transaction_id, amount=Decimal(amount), reason=reason),
        ADMIN,
    )
    assert result.success
    return result.data.refund_id


# === create_refund() ===


class TestCreateRefund:
    """Tests for refund creation."""

    def test_creates_pending_refund(self, services: Services, paid) -> None:
        """A refund starts PENDING and names the transaction owner."""
        booking, txn = paid

        result = services.refunds.create_refund(
            RefundCreate(transaction_id=txn.transaction_id, amount=Decimal("1000.00")),
            ADMIN,
        )

        refund = result.data
        assert refund.status == RefundStatus.PENDING
        assert refund.user_id == booking.renter_id
        assert refund.booking_id == booking.booking_id
        assert services.ledger.get_refund(refund.refund_id) is not None

    def test_unknown_transaction(self, services: Services) -> None:
        with pytest.raises(NotFoundError):
            services.refunds.create_refund(
                RefundCreate(transaction_id="TXN-NONE", amount=Decimal("1")), ADMIN
            )

    def test_over_refund_rejected(self, services: Services, paid) -> None:
        """More than the paid amount cannot be refunded."""
        _, txn = paid

        with pytest.raises(ValidationError, match="exceeds the refundable amount"):
            services.refunds.create_refund(
                RefundCreate(
                    transaction_id=txn.transaction_id, amount=txn.amount + Decimal("0.01")
                ),
                ADMIN,
            )

    def test_outstanding_refunds_count_against_available(
        self, services: Services, paid
    ) -> None:
        """Pending refunds reserve their amount until processed or rejected."""
        _, txn = paid
        _create(services, txn, str(txn.amount - Decimal("100.00")))

        with pytest.raises(ValidationError):
            _create(services, txn, "200.00")

        stored = services.ledger.get_transaction(txn.transaction_id)
        assert stored.reserved_refund_amount == txn.amount - Decimal("100.00")
        assert services.refunds.available_to_refund(stored) == Decimal("100.00")

    def test_pending_transaction_not_refundable(self, services: Services, seed) -> None:
        prop = seed.property()
        booking = seed.booking(prop)
        txn = seed.transaction(booking, status=TransactionStatus.PENDING)

        with pytest.raises(ValidationError, match="Only completed or held"):
            _create(services, txn, "10.00")


# === process_refund() ===


class TestProcessRefund:
    """Tests for approving and rejecting refunds."""

    def test_approve_executes_and_records(self, services: Services, paid, gateway) -> None:
        """Approval refunds through the gateway and bumps refunded_amount."""
        _, txn = paid
        refund_id = _create(services, txn, "50000.00")

        result = services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        refund = result.data
        assert refund.status == RefundStatus.PROCESSED
        assert refund.gateway_refund_ref is not None
        assert refund.processed_by == ADMIN
        assert f"refund_{refund_id}" in gateway.refunds
        stored_txn = services.ledger.get_transaction(txn.transaction_id)
        assert stored_txn.refunded_amount == Decimal("50000.00")
        assert services.ledger.get_refund(refund_id).status == RefundStatus.PROCESSED

    def test_reject(self, services: Services, paid) -> None:
        """Rejection closes the refund without touching the transaction."""
        _, txn = paid
        refund_id = _create(services, txn, "10.00")

        result = services.refunds.process_refund(
            refund_id, RefundAction.REJECT, ADMIN, "Not eligible"
        )

        assert result.data.status == RefundStatus.REJECTED
        assert result.data.rejection_reason == "Not eligible"
        stored = services.ledger.get_transaction(txn.transaction_id)
        assert stored.refunded_amount == 0
        assert stored.reserved_refund_amount == 0

    def test_gateway_failure_leaves_refund_failed(
        self, services: Services, paid, gateway
    ) -> None:
        """A refused refund is FAILED and raises a gateway error."""
        _, txn = paid
        refund_id = _create(services, txn, "10.00")
        gateway.fail_refunds = True

        with pytest.raises(RefundGatewayError) as exc_info:
            services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        assert exc_info.value.message == "The refund could not be completed by the payment provider"
        assert exc_info.value.to_error_response().recovery == "Approve the refund again to retry it"
        stored = services.ledger.get_refund(refund_id)
        assert stored.status == RefundStatus.FAILED
        assert stored.failure_reason == "Mock refund failure"
        assert services.ledger.get_transaction(txn.transaction_id).refunded_amount == 0

    def test_failed_refund_can_be_retried(self, services: Services, paid, gateway) -> None:
        """Approving a FAILED refund again retries it."""
        _, txn = paid
        refund_id = _create(services, txn, "10.00")
        gateway.fail_refunds = True
        with pytest.raises(GatewayError):
            services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        gateway.fail_refunds = False
        result = services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        assert result.data.status == RefundStatus.PROCESSED
        assert result.data.failure_reason is None

    def test_processed_refund_is_closed(self, services: Services, paid) -> None:
        """A processed refund cannot be approved or rejected again."""
        _, txn = paid
        refund_id = _create(services, txn, "10.00")
        services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        with pytest.raises(ValidationError, match="already processed"):
            services.refunds.process_refund(refund_id, RefundAction.REJECT, ADMIN)

    def test_unknown_refund(self, services: Services) -> None:
        with pytest.raises(NotFoundError):
            services.refunds.process_refund("RFD-NONE", RefundAction.APPROVE, ADMIN)

    def test_refunds_sum_to_payment(self, services: Services, paid) -> None:
        """Several partial refunds can cover the whole payment but no more."""
        _, txn = paid
        half = txn.amount / 2
        for _ in range(2):
            refund_id = _create(services, txn, str(half))
            services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        stored = services.ledger.get_transaction(txn.transaction_id)
        assert stored.refunded_amount == stored.amount
        with pytest.raises(ValidationError):
            _create(services, stored, "0.01")

    def test_refund_listing(self, services: Services, paid) -> None:
        _, txn = paid
        ids = {_create(services, txn, "1.00"), _create(services, txn, "2.00")}

        listed = services.refunds.get_transaction_refunds(txn.transaction_id)

        assert {r.refund_id for r in listed} == ids


class TestConcurrentApproval:
    """Tests for the PROCESSING claim."""

    def test_second_claim_conflicts(self, services: Services, paid) -> None:
        """A refund already PROCESSING cannot be claimed again."""
        _, txn = paid
        refund_id = _create(services, txn, "10.00")
        stale = services.ledger.get_refund(refund_id)
        claim = services.ledger.refund_transition_op(
            refund_id,
            [RefundStatus.PENDING],
            RefundStatus.PROCESSING,
            stale.created_at,
        )
        assert services.ledger.commit([claim])

        with pytest.raises(ConflictError):
            services.refunds.approve_refund(stale, ADMIN)

    def test_rejecting_a_claimed_refund_conflicts(self, services: Services, paid) -> None:
        _, txn = paid
        refund_id = _create(services, txn, "10.00")
        refund = services.ledger.get_refund(refund_id)
        services.ledger.commit(
            [
                services.ledger.refund_transition_op(
                    refund_id, [RefundStatus.PENDING], RefundStatus.PROCESSING, refund.created_at
                )
            ]
        )

        with pytest.raises(ConflictError):
            services.refunds.process_refund(refund_id, RefundAction.REJECT, ADMIN)

    def test_interleaved_approvals_stay_within_payment(
        self, services: Services, paid, gateway, monkeypatch
    ) -> None:
        """A second approval running during the first's gateway call is recorded too."""
        _, txn = paid
        first = _create(services, txn, "120000.00")
        second = _create(services, txn, "120000.00")
        issue_refund = gateway.issue_refund
        interleaved: list[str] = []

        def issue_then_approve_second(**kwargs):
            if kwargs["idempotency_key"] == f"refund_{first}" and not interleaved:
                interleaved.append(second)
                services.refunds.process_refund(second, RefundAction.APPROVE, ADMIN)
            return issue_refund(**kwargs)

        monkeypatch.setattr(gateway, "issue_refund", issue_then_approve_second)

        result = services.refunds.process_refund(first, RefundAction.APPROVE, ADMIN)

        assert result.data.status == RefundStatus.PROCESSED
        assert services.ledger.get_refund(second).status == RefundStatus.PROCESSED
        stored = services.ledger.get_transaction(txn.transaction_id)
        executed = sum((r.amount for r in gateway.refunds.values()), Decimal("0"))
        assert stored.refunded_amount == executed == Decimal("240000.00")


class TestConcurrentCreation:
    """Refund reservations on the transaction."""

    def test_stale_read_cannot_over_refund(
        self, services: Services, paid, monkeypatch
    ) -> None:
        """Two 60% refunds read the same free amount; only one is recorded."""
        _, txn = paid
        sixty_percent = Decimal("180000.00")
        _create(services, txn, str(sixty_percent))
        monkeypatch.setattr(services.ledger, "get_transaction", lambda transaction_id: txn)

        with pytest.raises(ConflictError):
            services.refunds.create_refund(
                RefundCreate(transaction_id=txn.transaction_id, amount=sixty_percent), ADMIN
            )

        monkeypatch.undo()
        stored = services.ledger.get_transaction(txn.transaction_id)
        assert stored.reserved_refund_amount == sixty_percent
        assert len(services.refunds.get_transaction_refunds(txn.transaction_id)) == 1

    def test_rejection_frees_the_amount(self, services: Services, paid) -> None:
        _, txn = paid
        refund_id = _create(services, txn, str(txn.amount))
        services.refunds.process_refund(refund_id, RefundAction.REJECT, ADMIN)

        assert _create(services, txn, str(txn.amount))


class TestReconciliation:
    """Refunds left PROCESSING by an interrupted approval."""

    def _abandon(self, services: Services, refund_id: str, minutes_ago: int) -> None:
        refund = services.ledger.get_refund(refund_id)
        claimed_at = refund.created_at - dt.timedelta(minutes=minutes_ago)
        assert services.ledger.commit(
            [
                services.ledger.refund_transition_op(
                    refund_id, [RefundStatus.PENDING], RefundStatus.PROCESSING, claimed_at
                )
            ]
        )

    def test_abandoned_claim_is_reconciled(self, services: Services, paid, gateway) -> None:
        """The gateway already refunded; approving again records it once."""
        _, txn = paid
        refund_id = _create(services, txn, "5000.00")
        self._abandon(services, refund_id, minutes_ago=10)
        gateway.issue_refund(
            gateway_ref=txn.gateway_ref,
            amount=Decimal("5000.00"),
            idempotency_key=f"refund_{refund_id}",
        )

        result = services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

        assert result.data.status == RefundStatus.PROCESSED
        executed = gateway.refunds[f"refund_{refund_id}"]
        assert result.data.gateway_refund_ref == executed.gateway_refund_ref
        assert len(gateway.refunds) == 1
        stored = services.ledger.get_transaction(txn.transaction_id)
        assert stored.refunded_amount == Decimal("5000.00")

    def test_recent_claim_is_left_alone(self, services: Services, paid) -> None:
        _, txn = paid
        refund_id = _create(services, txn, "5000.00")
        self._abandon(services, refund_id, minutes_ago=0)

        with pytest.raises(ConflictError, match="already being processed"):
            services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN)

    def test_recording_twice_is_a_no_op(self, services: Services, paid) -> None:
        _, txn = paid
        refund_id = _create(services, txn, "5000.00")
        processed = services.refunds.process_refund(refund_id, RefundAction.APPROVE, ADMIN).data
        stored_txn = services.ledger.get_transaction(txn.transaction_id)

        again = services.refunds._record_processed(
            processed, stored_txn, ADMIN, processed.gateway_refund_ref
        )

        assert again.status == RefundStatus.PROCESSED
        assert services.ledger.get_transaction(txn.transaction_id).refunded_amount == Decimal(
            "5000.00"
        )
