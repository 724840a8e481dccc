"""Refund processor.

A refund is created PENDING and reaches PROCESSED only after the payment
gateway confirms the reversal. Creation reserves the amount on the
transaction, so the refunds of one payment can never add up to more than
was paid. Approval first claims the refund (PENDING|FAILED -> PROCESSING)
so two admins cannot execute it twice; a gateway failure leaves it FAILED,
from where it can be approved again. A refund stuck in PROCESSING (the
process died between the gateway call and the ledger write) is reconciled
by approving it again once ``REFUND_RECONCILE_AFTER`` has passed; the
gateway idempotency key makes the repeated call return the first refund.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from rentals.models import (
    REFUNDABLE_TRANSACTION_STATUSES,
    ConflictError,
    GatewayError,
    NotFoundError,
    OperationResult,
    Refund,
    RefundAction,
    RefundCreate,
    RefundGatewayError,
    RefundStatus,
    Transaction,
    ValidationError,
)
from rentals.models.notification import (
    RefundApprovedPayload,
    RefundCreatedPayload,
    RefundFailedPayload,
    RefundRejectedPayload,
)
from rentals.utils.logging import get_logger, log_payment_operation

from .base import service_operation, success
from .dynamodb import utc_now

if TYPE_CHECKING:
    from .ledger import LedgerRepository
    from .notification_service import NotificationService
    from .payment_gateway import PaymentGateway

logger = get_logger(__name__)

OPEN_REFUND_STATUSES = (RefundStatus.PENDING, RefundStatus.FAILED)

# A PROCESSING claim older than this is treated as abandoned
REFUND_RECONCILE_AFTER = dt.timedelta(minutes=5)


class RefundService:
    """Owns the Refund lifecycle and applies refunds through the gateway."""

    def __init__(
        self,
        ledger: "LedgerRepository",
        gateway: "PaymentGateway",
        notifications: "NotificationService",
    ) -> None:
        self.ledger = ledger
        self.gateway = gateway
        self.notifications = notifications

    # =========================================================================
    # Creation
    # =========================================================================

    def available_to_refund(self, txn: Transaction) -> Decimal:
        """Amount not yet reserved by a pending, failed or processed refund."""
        return txn.unreserved_amount

    def create_refund_op(
        self,
        txn: Transaction,
        amount: Decimal,
        reason: str,
        requested_by: str,
        now: dt.datetime,
        dispute_id: str | None = None,
    ) -> tuple[Refund, list[dict[str, Any]]]:
        """Validate and build the writes creating a PENDING refund.

        The returned operations reserve ``amount`` on the transaction under
        a condition on the stored reservation total, so callers can embed
        them in a larger transaction and a concurrent refund makes the
        commit fail instead of over-refunding.

        Raises:
            ValidationError: If the transaction cannot be refunded by ``amount``
        """
        if amount <= 0:
            raise ValidationError("Refund amount must be greater than zero")
        if txn.status not in REFUNDABLE_TRANSACTION_STATUSES:
            raise ValidationError("Only completed or held transactions can be refunded")
        available = self.available_to_refund(txn)
        if amount > available:
            raise ValidationError(
                f"Refund amount exceeds the refundable amount of {available}"
            )

        refund = Refund(
            refund_id=f"RFD-{uuid.uuid4().hex[:12].upper()}",
            transaction_id=txn.transaction_id,
            booking_id=txn.booking_id,
            user_id=txn.user_id,
            dispute_id=dispute_id,
            amount=amount,
            currency=txn.currency,
            reason=reason,
            status=RefundStatus.PENDING,
            requested_by=requested_by,
            created_at=now,
            updated_at=now,
        )
        ops = [
            self.ledger.put_refund_op(refund),
            self.ledger.reserve_refund_op(txn, amount, now),
        ]
        return refund, ops

    def notify_created(self, refund: Refund) -> None:
        self.notifications.notify(
            refund.user_id,
            "Refund requested",
            f"A refund of {refund.amount} {refund.currency} has been requested.",
            RefundCreatedPayload(
                refund_id=refund.refund_id,
                transaction_id=refund.transaction_id,
                amount=refund.amount,
            ),
        )

    @service_operation("create_refund")
    def create_refund(self, data: RefundCreate, requested_by: str) -> OperationResult[Refund]:
        """Create a PENDING refund against a completed or held transaction.

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If the transaction is not refundable by the amount
            ConflictError: If a concurrent refund reserved the amount first
        """
        txn = self.ledger.get_transaction(data.transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")

        refund, ops = self.create_refund_op(
            txn, data.amount, data.reason, requested_by, utc_now(), data.dispute_id
        )
        if not self.ledger.commit(ops):
            raise ConflictError("Another refund was recorded against this transaction")

        log_payment_operation(
            logger,
            "create_refund",
            transaction_id=txn.transaction_id,
            booking_id=txn.booking_id,
            amount=refund.amount,
            status=refund.status.value,
            refund_id=refund.refund_id,
        )
        self.notify_created(refund)
        return success(refund, "Refund created")


    # =========================================================================
    # Processing
    # =========================================================================

    @service_operation("process_refund")
    def process_refund(
        self,
        refund_id: str,
        action: RefundAction,
        processed_by: str,
        reason: str | None = None,
    ) -> OperationResult[Refund]:
        """Approve (execute) or reject a refund.

        Approving a refund left PROCESSING by an interrupted approval
        reconciles it with the gateway.

        Raises:
            NotFoundError: If the refund does not exist
            ValidationError: If the refund was already processed or rejected
            ConflictError: If another request is processing the same refund
            RefundGatewayError: If the gateway refused the refund; it is left FAILED
        """
        refund = self.ledger.get_refund(refund_id)
        if refund is None:
            raise NotFoundError("Refund not found")
        if refund.status not in (*OPEN_REFUND_STATUSES, RefundStatus.PROCESSING):
            raise ValidationError(f"Refund is already {refund.status.value.lower()}")

        if action == RefundAction.REJECT:
            if refund.status == RefundStatus.PROCESSING:
                raise ConflictError("Refund is being processed and cannot be rejected")
            rejected = self._reject(refund, processed_by, reason or "Rejected by administrator")
            return success(rejected, "Refund rejected")

        processed = self.approve_refund(refund, processed_by)
        if processed.status == RefundStatus.FAILED:
            raise RefundGatewayError(reason=processed.failure_reason)
        return success(processed, "Refund processed")

    def _reject(self, refund: Refund, processed_by: str, reason: str) -> Refund:
        now = utc_now()
        ops = [
            self.ledger.refund_transition_op(
                refund.refund_id,
                OPEN_REFUND_STATUSES,
                RefundStatus.REJECTED,
                now,
                set_fields={
                    "rejection_reason": reason,
                    "processed_by": processed_by,
                    "processed_at": now,
                },
            ),
            self.ledger.release_refund_reservation_op(refund.transaction_id, refund.amount, now),
        ]
        if not self.ledger.commit(ops):
            raise ConflictError("Refund was processed by another request")

        rejected = refund.model_copy(
            update={
                "status": RefundStatus.REJECTED,
                "rejection_reason": reason,
                "processed_by": processed_by,
                "processed_at": now,
                "updated_at": now,
            }
        )
        log_payment_operation(
            logger,
            "reject_refund",
            transaction_id=refund.transaction_id,
            amount=refund.amount,
            status=RefundStatus.REJECTED.value,
            refund_id=refund.refund_id,
        )
        self.notifications.notify(
            refund.user_id,
            "Refund rejected",
            f"Your refund request was rejected: {reason}",
            RefundRejectedPayload(refund_id=refund.refund_id, reason=reason),
        )
        return rejected

    def _claim(self, refund: Refund, now: dt.datetime) -> None:
        """Take the PROCESSING claim, or take over one that was abandoned."""
        if refund.status == RefundStatus.PROCESSING:
            if now - refund.updated_at < REFUND_RECONCILE_AFTER:
                raise ConflictError("Refund is already being processed")
            logger.warning("Reconciling refund %s left in PROCESSING", refund.refund_id)
            claim = self.ledger.refund_transition_op(
                refund.refund_id,
                [RefundStatus.PROCESSING],
                RefundStatus.PROCESSING,
                now,
                extra_condition="updated_at = :seen",
                extra_values={":seen": refund.updated_at},
            )
        else:
            claim = self.ledger.refund_transition_op(
                refund.refund_id, OPEN_REFUND_STATUSES, RefundStatus.PROCESSING, now
            )
        if not self.ledger.commit([claim]):
            raise ConflictError("Refund is already being processed")

    def approve_refund(self, refund: Refund, processed_by: str) -> Refund:
        """Execute an open refund through the gateway.

        Returns the refund as PROCESSED, or FAILED if the gateway refused
        it. Gateway failures are recorded rather than raised so callers
        that already committed other work (dispute resolution, booking
        cancellation) are not unwound.

        Raises:
            ValidationError: If the transaction cannot take this refund
            ConflictError: If another request claimed the refund first
        """
        txn = self.ledger.get_transaction(refund.transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        if not txn.gateway_ref:
            raise ValidationError("Transaction has no gateway reference to refund against")

        self._claim(refund, utc_now())

        try:
            execution = self.gateway.issue_refund(
                gateway_ref=txn.gateway_ref,
                amount=refund.amount,
                idempotency_key=f"refund_{refund.refund_id}",
            )
            if not execution.succeeded:
                raise GatewayError(reason=f"Gateway refund status: {execution.status}")
        except GatewayError as e:
            return self._mark_failed(refund, e.reason or "Gateway refund failed")

        return self._record_processed(
            refund, txn, processed_by, execution.gateway_refund_ref
        )

    def _mark_failed(self, refund: Refund, failure_reason: str) -> Refund:
        now = utc_now()
        op = self.ledger.refund_transition_op(
            refund.refund_id,
            [RefundStatus.PROCESSING],
            RefundStatus.FAILED,
            now,
            set_fields={"failure_reason": failure_reason},
        )
        self.ledger.commit([op])
        log_payment_operation(
            logger,
            "process_refund",
            transaction_id=refund.transaction_id,
            amount=refund.amount,
            status=RefundStatus.FAILED.value,
            error=failure_reason,
            refund_id=refund.refund_id,
        )
        self.notifications.notify(
            refund.user_id,
            "Refund delayed",
            "We could not complete your refund yet. It will be retried.",
            RefundFailedPayload(refund_id=refund.refund_id, amount=refund.amount),
        )
        return refund.model_copy(
            update={
                "status": RefundStatus.FAILED,
                "failure_reason": failure_reason,
                "updated_at": now,
            }
        )

    def _record_processed(
        self,
        refund: Refund,
        txn: Transaction,
        processed_by: str,
        gateway_refund_ref: str | None,
    ) -> Refund:
        """Write PROCESSED and the refunded total; a repeat of a recorded refund is a no-op."""
        now = utc_now()
        ops = [
            self.ledger.refund_transition_op(
                refund.refund_id,
                [RefundStatus.PROCESSING],
                RefundStatus.PROCESSED,
                now,
                set_fields={
                    "gateway_refund_ref": gateway_refund_ref,
                    "processed_by": processed_by,
                    "processed_at": now,
                },
                remove_fields=["failure_reason"],
            ),
            self.ledger.add_refunded_amount_op(txn, refund.amount, now),
        ]
        if not self.ledger.commit(ops):
            stored = self.ledger.get_refund(refund.refund_id)
            if stored is not None and stored.status == RefundStatus.PROCESSED:
                return stored
            logger.error(
                "Refund %s executed at gateway (%s) but could not be recorded",
                refund.refund_id,
                gateway_refund_ref,
            )
            raise ConflictError("Refund executed but not yet recorded; approve it again")

        log_payment_operation(
            logger,
            "process_refund",
            transaction_id=refund.transaction_id,
            booking_id=refund.booking_id,
            amount=refund.amount,
            status=RefundStatus.PROCESSED.value,
            refund_id=refund.refund_id,
            gateway_refund_ref=gateway_refund_ref,
        )
        self.notifications.notify(
            refund.user_id,
            "Refund processed",
            f"Your refund of {refund.amount} {refund.currency} has been processed.",
            RefundApprovedPayload(refund_id=refund.refund_id, amount=refund.amount),
        )
        return refund.model_copy(
            update={
                "status": RefundStatus.PROCESSED,
                "gateway_refund_ref": gateway_refund_ref,
                "processed_by": processed_by,
                "processed_at": now,
                "failure_reason": None,
                "updated_at": now,
            }
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_refund(self, refund_id: str) -> Refund:
        refund = self.ledger.get_refund(refund_id)
        if refund is None:
            raise NotFoundError("Refund not found")
        return refund

    def get_transaction_refunds(self, transaction_id: str) -> list[Refund]:
        return sorted(
            self.ledger.get_transaction_refunds(transaction_id), key=lambda r: r.created_at
        )
