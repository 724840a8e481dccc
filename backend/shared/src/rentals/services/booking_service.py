"""Booking orchestrator.

Drives the booking state machine:

    REQUESTED -> APPROVED -> PENDING_PAYMENT -> CONFIRMED   (host approval flow)
    PENDING -> CONFIRMED                                  (direct-pay flow)
    CONFIRMED -> ACTIVE -> COMPLETED | CANCELLED | DISPUTED

Every mutation commits as one DynamoDB transaction whose writes are
conditioned on the prior status, so a concurrent change makes the whole
operation fail with ConflictError instead of leaving partial state.
Notifications go out only after the commit.
"""

import datetime as dt
import hashlib
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from rentals.models import (
    AWAITING_PAYMENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingCreate,
    BookingError,
    BookingPayment,
    BookingRequestCreate,
    BookingStatus,
    BookingStatusUpdate,
    BookingUnit,
    ConflictError,
    ForbiddenError,
    GatewayError,
    GatewayPaymentStatus,
    NotFoundError,
    OperationResult,
    PaginatedBookings,
    PaymentConfirmation,
    PaymentVerification,
    Property,
    PropertyStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Unit,
    UnitStatus,
    ValidationError,
    get_user_friendly_stripe_message,
)
from rentals.models.notification import (
    BookingApprovedPayload,
    BookingCancelledPayload,
    BookingCompletedPayload,
    BookingConfirmedPayload,
    BookingCreatedPayload,
    BookingDeclinedPayload,
    BookingRequestPayload,
    PaymentConfirmedPayload,
    PaymentFailedPayload,
)
from rentals.utils.logging import get_logger, log_booking_operation, log_payment_operation

from .base import paginate, service_operation, success
from .dynamodb import utc_now

if TYPE_CHECKING:
    from .ledger import LedgerRepository
    from .notification_service import NotificationService
    from .payment_gateway import PaymentGateway
    from .pricing import PricingService
    from .refund_policy_service import RefundPolicyService
    from .refund_service import RefundService
    from .unit_availability import UnitAvailabilityChecker

logger = get_logger(__name__)

RENTER = "renter"
OWNER = "owner"
BOTH = frozenset({RENTER, OWNER})

LATE_PAYMENT_REASON = "Payment received after the booking stopped accepting it"
LATE_PAYMENT_REFUNDED = "This payment attempt was closed; the payment is being refunded"

# target status -> current status -> roles allowed to request it
STATUS_TRANSITIONS: dict[BookingStatus, dict[BookingStatus, frozenset[str]]] = {
    BookingStatus.CANCELLED: {
        BookingStatus.REQUESTED: frozenset({RENTER}),
        BookingStatus.APPROVED: BOTH,
        BookingStatus.PENDING: BOTH,
        BookingStatus.PENDING_PAYMENT: BOTH,
        BookingStatus.CONFIRMED: BOTH,
        BookingStatus.ACTIVE: BOTH,
    },
    BookingStatus.ACTIVE: {
        BookingStatus.CONFIRMED: frozenset({OWNER}),
    },
    BookingStatus.COMPLETED: {
        BookingStatus.CONFIRMED: frozenset({OWNER}),
        BookingStatus.ACTIVE: frozenset({OWNER}),
    },
}


class BookingService:
    """Booking lifecycle operations."""

    def __init__(
        self,
        ledger: "LedgerRepository",
        checker: "UnitAvailabilityChecker",
        pricing: "PricingService",
        gateway: "PaymentGateway",
        notifications: "NotificationService",
        refunds: "RefundService",
        refund_policy: "RefundPolicyService",
    ) -> None:
        self.ledger = ledger
        self.checker = checker
        self.pricing = pricing
        self.gateway = gateway
        self.notifications = notifications
        self.refunds = refunds
        self.refund_policy = refund_policy

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _booking_id(renter_id: str, idempotency_key: str | None) -> str:
        if idempotency_key:
            digest = hashlib.sha256(f"{renter_id}:{idempotency_key}".encode()).hexdigest()
            return f"BKG-{digest[:16].upper()}"
        return f"BKG-{uuid.uuid4().hex[:16].upper()}"

    @staticmethod
    def _new_transaction_ids() -> tuple[str, str]:
        """Return (transaction_id, reference) for a new payment attempt."""
        return (
            f"TXN-{uuid.uuid4().hex[:16].upper()}",
            f"REF-{uuid.uuid4().hex[:16].upper()}",
        )

    def _load_booking(self, booking_id: str) -> Booking:
        booking = self.ledger.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def _load_bookable_property(self, property_id: str, renter_id: str) -> Property:
        prop = self.ledger.get_property(property_id)
        if prop is None:
            raise NotFoundError("Property not found")
        if prop.status != PropertyStatus.ACTIVE:
            raise ValidationError("Property is not available for rent")
        if prop.owner_id == renter_id:
            raise ValidationError("You cannot book your own property")
        return prop

    def _validate_dates(self, start_date: dt.date, end_date: dt.date | None) -> None:
        if start_date < utc_now().date():
            raise ValidationError("Start date cannot be in the past")
        if end_date is not None and end_date <= start_date:
            raise ValidationError("End date must be after start date")

    def _validated_units(
        self, unit_ids: list[str], property_id: str, booking_id: str | None = None
    ) -> list[Unit]:
        result = self.checker.validate_units_for_booking(
            unit_ids, property_id=property_id, booking_id=booking_id
        )
        if not result.is_valid:
            raise ValidationError(
                "; ".join(result.errors), details={"unit_ids": ",".join(unit_ids)}
            )
        units = self.ledger.get_units(unit_ids)
        return [units[uid] for uid in unit_ids]

    def _new_transaction(
        self, booking: Booking, now: dt.datetime
    ) -> Transaction:
        transaction_id, reference = self._new_transaction_ids()
        platform_fee = self.pricing.platform_fee_for(booking.amount)
        return Transaction(
            transaction_id=transaction_id,
            reference=reference,
            type=TransactionType.RENT_PAYMENT,
            amount=booking.amount + platform_fee,
            base_amount=booking.amount,
            platform_fee=platform_fee,
            currency=booking.currency,
            status=TransactionStatus.PENDING,
            booking_id=booking.booking_id,
            user_id=booking.renter_id,
            property_id=booking.property_id,
            gateway=self.gateway.provider,
            created_at=now,
            updated_at=now,
        )

    def _start_collection(self, booking: Booking, txn: Transaction) -> Transaction:
        """Ask the gateway for a payment URL and record it on the transaction.

        Raises:
            GatewayError: If the gateway could not start the collection
        """
        collection = self.gateway.initiate_collection(
            amount=txn.amount,
            currency=txn.currency,
            payer_ref=booking.renter_id,
            callback_ref=txn.reference,
            description=f"Booking {booking.booking_id}",
        )
        now = utc_now()
        self.ledger.db.update_item(
            self.ledger.TRANSACTIONS_TABLE,
            {"transaction_id": txn.transaction_id},
            "SET gateway_ref = :gateway_ref, payment_url = :payment_url, updated_at = :now",
            {
                ":gateway_ref": collection.gateway_ref,
                ":payment_url": collection.payment_url,
                ":now": now,
            },
        )
        log_payment_operation(
            logger,
            "initiate_collection",
            transaction_id=txn.transaction_id,
            booking_id=booking.booking_id,
            amount=txn.amount,
            status=txn.status.value,
            gateway_ref=collection.gateway_ref,
        )
        return txn.model_copy(
            update={
                "gateway_ref": collection.gateway_ref,
                "payment_url": collection.payment_url,
                "updated_at": now,
            }
        )

    def _payment_view(self, booking: Booking, txn: Transaction) -> BookingPayment:
        return BookingPayment(
            booking=booking,
            reference=txn.reference,
            payment_url=txn.payment_url or "",
            amount=txn.amount,
            currency=txn.currency,
        )

    def _conflict_reason(self, booking_id: str, expected: set[BookingStatus]) -> ConflictError:
        """Explain a cancelled transaction by re-reading the booking."""
        current = self.ledger.get_booking(booking_id)
        if current is None or current.status not in expected:
            return ConflictError("Booking was modified by another request")
        return ConflictError("Unit no longer available")

    # =========================================================================
    # Two-step flow: request, host response, payment
    # =========================================================================

    @service_operation("create_booking_request")
    def create_booking_request(
        self, data: BookingRequestCreate, renter_id: str
    ) -> OperationResult[Booking]:
        """Create a booking in REQUESTED status awaiting host approval.

        Raises:
            NotFoundError: If the property does not exist
            ValidationError: If the property is inactive, the dates are
                invalid or any requested unit is unavailable
        """
        prop = self._load_bookable_property(data.property_id, renter_id)
        self._validate_dates(data.start_date, data.end_date)
        units = (
            self._validated_units(data.unit_ids, prop.property_id) if data.unit_ids else []
        )
        quote = self.pricing.calculate_price(prop, units, data.start_date, data.end_date)

        now = utc_now()
        booking = Booking(
            booking_id=self._booking_id(renter_id, None),
            renter_id=renter_id,
            property_id=prop.property_id,
            owner_id=prop.owner_id,
            start_date=data.start_date,
            end_date=data.end_date,
            amount=quote.amount,
            currency=prop.currency,
            status=BookingStatus.REQUESTED,
            unit_ids=[u.unit_id for u in units],
            special_requests=data.special_requests,
            created_at=now,
            updated_at=now,
        )
        ops = [self.ledger.put_booking_op(booking)]
        ops += [
            self.ledger.put_booking_unit_op(
                BookingUnit(
                    booking_id=booking.booking_id,
                    unit_id=u.unit_id,
                    property_id=prop.property_id,
                    created_at=now,
                )
            )
            for u in units
        ]
        if not self.ledger.commit(ops):
            raise ConflictError("Booking could not be created, please retry")

        log_booking_operation(
            logger,
            "create_booking_request",
            booking_id=booking.booking_id,
            to_status=booking.status.value,
            user_id=renter_id,
            amount=str(booking.amount),
        )
        self.notifications.notify(
            prop.owner_id,
            "New booking request",
            f"You have a new booking request for {prop.title}.",
            BookingRequestPayload(booking_id=booking.booking_id, property_id=prop.property_id),
        )
        return success(booking, "Booking request sent")

    @service_operation("respond_to_booking_request")
    def respond_to_booking_request(
        self, booking_id: str, host_id: str, accept: bool
    ) -> OperationResult[Booking]:
        """Approve or decline a REQUESTED booking.

        Approval holds the requested units in the same transaction.

        Raises:
            NotFoundError: If the booking does not exist
            ForbiddenError: If the caller does not own the property
            ConflictError: If the booking was already answered or a unit
                was taken in the meantime
        """
        booking = self._load_booking(booking_id)
        if booking.owner_id != host_id:
            raise ForbiddenError("Only the property owner can respond to this booking request")
        if booking.status != BookingStatus.REQUESTED:
            raise ConflictError("Booking request has already been answered")

        now = utc_now()
        if accept:
            new_status = BookingStatus.APPROVED
            ops = [
                self.ledger.booking_transition_op(
                    booking_id,
                    [BookingStatus.REQUESTED],
                    new_status,
                    now,
                    set_fields={"responded_at": now},
                )
            ]
            ops += [self.ledger.hold_unit_op(uid, booking_id, now) for uid in booking.unit_ids]
        else:
            new_status = BookingStatus.CANCELLED
            ops = [
                self.ledger.booking_transition_op(
                    booking_id,
                    [BookingStatus.REQUESTED],
                    new_status,
                    now,
                    set_fields={
                        "responded_at": now,
                        "cancellation_reason": "Declined by host",
                    },
                )
            ]

        if not self.ledger.commit(ops):
            raise self._conflict_reason(booking_id, {BookingStatus.REQUESTED})

        updated = self._load_booking(booking_id)
        log_booking_operation(
            logger,
            "respond_to_booking_request",
            booking_id=booking_id,
            from_status=BookingStatus.REQUESTED.value,
            to_status=new_status.value,
            user_id=host_id,
        )
        if accept:
            self.notifications.notify(
                booking.renter_id,
                "Booking request approved",
                "Your booking request was approved. Complete payment to confirm it.",
                BookingApprovedPayload(booking_id=booking_id, property_id=booking.property_id),
            )
        else:
            self.notifications.notify(
                booking.renter_id,
                "Booking request declined",
                "Your booking request was declined by the host.",
                BookingDeclinedPayload(booking_id=booking_id, property_id=booking.property_id),
            )
        verb = "approved" if accept else "declined"
        return success(updated, f"Booking request {verb} successfully")

    @service_operation("initiate_booking_payment")
    def initiate_booking_payment(
        self, booking_id: str, renter_id: str
    ) -> OperationResult[BookingPayment]:
        """Start (or retry) payment for a booking awaiting payment.

        Re-holds the booking's units, supersedes any earlier pending
        payment attempt and opens a new gateway collection.

        Raises:
            NotFoundError: If the booking does not exist
            ForbiddenError: If the caller is not the renter
            ValidationError: If the booking is not awaiting payment
            ConflictError: If a unit was taken or the booking changed
            GatewayError: If the gateway could not start the collection
        """
        booking = self._load_booking(booking_id)
        if booking.renter_id != renter_id:
            raise ForbiddenError("Only the renter can pay for this booking")
        if booking.status not in AWAITING_PAYMENT_STATUSES:
            raise ValidationError("Booking is not awaiting payment")

        now = utc_now()
        txn = self._new_transaction(booking, now)
        ops = [
            self.ledger.booking_transition_op(
                booking_id,
                [booking.status],
                BookingStatus.PENDING_PAYMENT,
                now,
            ),
            self.ledger.put_transaction_op(txn),
        ]
        ops += [self.ledger.hold_unit_op(uid, booking_id, now) for uid in booking.unit_ids]
        for previous in self.ledger.get_booking_transactions(booking_id):
            if previous.status == TransactionStatus.PENDING:
                ops.append(
                    self.ledger.transaction_transition_op(
                        previous.transaction_id,
                        [TransactionStatus.PENDING],
                        TransactionStatus.FAILED,
                        now,
                        set_fields={"failure_reason": "Superseded by a new payment attempt"},
                    )
                )

        if not self.ledger.commit(ops):
            raise self._conflict_reason(booking_id, {booking.status})

        try:
            txn = self._start_collection(booking, txn)
        except GatewayError as e:
            self._fail_transaction(txn, e.reason or "Payment could not be initiated")
            raise

        booking = self._load_booking(booking_id)
        log_booking_operation(
            logger,
            "initiate_booking_payment",
            booking_id=booking_id,
            to_status=booking.status.value,
            user_id=renter_id,
        )
        return success(self._payment_view(booking, txn), "Payment initiated")

    # =========================================================================
    # Direct-pay flow
    # =========================================================================

    @service_operation("create_booking")
    def create_booking(
        self, data: BookingCreate, renter_id: str
    ) -> OperationResult[BookingPayment]:
        """Book units and open a payment collection in one step.

        The booking, its unit links, the unit holds and the pending
        transaction are written in one transaction; of two concurrent
        requests for the same unit exactly one commits.

        Raises:
            NotFoundError: If the property does not exist
            ValidationError: If the input or any unit is invalid
            ConflictError: If a unit was taken by a concurrent booking
            GatewayError: If the gateway could not start the collection; the
                booking is cancelled and its units released
        """
        if not data.unit_ids:
            raise ValidationError("At least one unit must be selected")

        booking_id = self._booking_id(renter_id, data.idempotency_key)
        if data.idempotency_key:
            existing = self.ledger.get_booking(booking_id)
            if existing is not None:
                return self._replay(existing)

        prop = self._load_bookable_property(data.property_id, renter_id)
        self._validate_dates(data.start_date, data.end_date)
        units = self._validated_units(data.unit_ids, prop.property_id)
        quote = self.pricing.calculate_price(prop, units, data.start_date, data.end_date)

        now = utc_now()
        booking = Booking(
            booking_id=booking_id,
            renter_id=renter_id,
            property_id=prop.property_id,
            owner_id=prop.owner_id,
            start_date=data.start_date,
            end_date=data.end_date,
            amount=quote.amount,
            currency=prop.currency,
            status=BookingStatus.PENDING,
            unit_ids=[u.unit_id for u in units],
            idempotency_key=data.idempotency_key,
            special_requests=data.special_requests,
            created_at=now,
            updated_at=now,
        )
        txn = self._new_transaction(booking, now)

        ops = [self.ledger.put_booking_op(booking), self.ledger.put_transaction_op(txn)]
        for u in units:
            ops.append(
                self.ledger.put_booking_unit_op(
                    BookingUnit(
                        booking_id=booking_id,
                        unit_id=u.unit_id,
                        property_id=prop.property_id,
                        created_at=now,
                    )
                )
            )
            ops.append(self.ledger.hold_unit_op(u.unit_id, booking_id, now))

        if not self.ledger.commit(ops):
            if data.idempotency_key:
                existing = self.ledger.get_booking(booking_id)
                if existing is not None:
                    return self._replay(existing)
            log_booking_operation(
                logger,
                "create_booking",
                booking_id=booking_id,
                user_id=renter_id,
                error="unit no longer available",
            )
            raise ConflictError("Unit no longer available")

        try:
            txn = self._start_collection(booking, txn)
        except GatewayError as e:
            self._compensate_failed_collection(booking, txn, e.reason)
            raise

        log_booking_operation(
            logger,
            "create_booking",
            booking_id=booking_id,
            to_status=booking.status.value,
            user_id=renter_id,
            amount=str(booking.amount),
        )
        self.notifications.notify(
            renter_id,
            "Booking created",
            "Your booking was created. Complete payment to confirm it.",
            BookingCreatedPayload(
                booking_id=booking_id,
                payment_url=txn.payment_url or "",
                total_amount=txn.amount,
                platform_fee=txn.platform_fee,
            ),
        )
        return success(self._payment_view(booking, txn), "Booking created, awaiting payment")

    def _replay(self, booking: Booking) -> OperationResult[BookingPayment]:
        """Return the outcome of an already-processed create_booking request."""
        transactions = sorted(
            self.ledger.get_booking_transactions(booking.booking_id),
            key=lambda t: t.created_at,
        )
        if not transactions:
            raise ConflictError("Booking is still being created, please retry")
        return success(self._payment_view(booking, transactions[-1]), "Booking already exists")

    def _compensate_failed_collection(
        self, booking: Booking, txn: Transaction, reason: str | None
    ) -> None:
        now = utc_now()
        ops = [
            self.ledger.transaction_transition_op(
                txn.transaction_id,
                [TransactionStatus.PENDING],
                TransactionStatus.FAILED,
                now,
                set_fields={"failure_reason": reason or "Payment could not be initiated"},
            ),
            self.ledger.booking_transition_op(
                booking.booking_id,
                [BookingStatus.PENDING],
                BookingStatus.CANCELLED,
                now,
                set_fields={"cancellation_reason": "Payment could not be initiated"},
            ),
        ]
        ops += self.ledger.release_units_ops(booking, now)
        if not self.ledger.commit(ops):
            logger.error(
                "Compensation for booking %s failed; state must be reconciled",
                booking.booking_id,
            )
            return
        log_booking_operation(
            logger,
            "create_booking",
            booking_id=booking.booking_id,
            from_status=BookingStatus.PENDING.value,
            to_status=BookingStatus.CANCELLED.value,
            error=reason or "collection failed",
        )

    # =========================================================================
    # Payment confirmation
    # =========================================================================

    @service_operation("confirm_booking_payment")
    def confirm_booking_payment(
        self, reference: str, user_id: str | None
    ) -> OperationResult[PaymentConfirmation]:
        """Verify a payment reference and confirm the booking.

        On success the transaction, booking and units change together.
        Re-confirming an already completed reference is a no-op success.
        ``user_id`` is None when the call comes from a verified gateway
        webhook.

        A checkout can still be paid after its attempt was closed here
        (superseded, expired or failed). Such a payment confirms the
        booking if it still awaits payment; otherwise it is recorded and
        refunded in full.

        Raises:
            NotFoundError: If the reference is unknown
            ForbiddenError: If the payment belongs to another user
            ValidationError: If the payment attempt is no longer pending, or
                it was paid too late and is being refunded
            GatewayError: If the gateway reports failure or a wrong amount
            ConflictError: If the booking changed during confirmation
        """
        txn = self.ledger.get_transaction_by_reference(reference)
        if txn is None:
            raise NotFoundError("Payment reference not found")
        if user_id is not None and txn.user_id != user_id:
            raise ForbiddenError("This payment belongs to another user")

        booking = self._load_booking(txn.booking_id)

        if txn.status == TransactionStatus.COMPLETED:
            return self._settled_outcome(txn, reference)
        if txn.status == TransactionStatus.FAILED and txn.gateway_ref:
            return self._settle_closed_attempt(txn, booking, reference)
        if txn.status != TransactionStatus.PENDING:
            raise ValidationError("This payment attempt is no longer pending")
        if not txn.gateway_ref:
            raise ValidationError("Payment has not been initiated")

        try:
            verification = self.gateway.verify_payment(txn.gateway_ref)
        except GatewayError as e:
            self._record_payment_failure(
                txn, booking, e.reason or "Verification failed", e.gateway_error_code
            )
            raise

        if not verification.succeeded:
            if verification.status == GatewayPaymentStatus.PENDING:
                raise GatewayError(reason="Payment not completed yet")
            reason = verification.failure_reason or "Payment failed"
            self._record_payment_failure(txn, booking, reason)
            raise GatewayError(reason=reason)

        if verification.amount != txn.amount:
            reason = f"Amount mismatch: expected {txn.amount}, got {verification.amount}"
            self._record_payment_failure(txn, booking, reason)
            raise GatewayError(reason=reason)

        if booking.status in AWAITING_PAYMENT_STATUSES:
            confirmed = self._commit_confirmation(
                txn, booking, TransactionStatus.PENDING, verification, reference
            )
            if confirmed is not None:
                return confirmed
            booking = self._load_booking(booking.booking_id)
            if booking.status in AWAITING_PAYMENT_STATUSES:
                return self._settled_or_conflict(txn, reference)

        if not self._refund_late_payment(txn, booking, TransactionStatus.PENDING, verification):
            return self._settled_or_conflict(txn, reference)
        raise ValidationError(LATE_PAYMENT_REFUNDED)

    def _settle_closed_attempt(
        self, txn: Transaction, booking: Booking, reference: str
    ) -> OperationResult[PaymentConfirmation]:
        """Confirm with, or refund, a payment made on a closed attempt."""
        verification = self.gateway.verify_payment(txn.gateway_ref or "")
        if not verification.succeeded:
            raise ValidationError("This payment attempt is no longer pending")
        if verification.amount != txn.amount:
            logger.error(
                "Closed attempt %s paid with %s instead of %s",
                reference,
                verification.amount,
                txn.amount,
            )
            raise GatewayError(
                reason=f"Amount mismatch: expected {txn.amount}, got {verification.amount}"
            )

        if booking.status in AWAITING_PAYMENT_STATUSES:
            confirmed = self._commit_confirmation(
                txn, booking, TransactionStatus.FAILED, verification, reference
            )
            if confirmed is not None:
                return confirmed
            booking = self._load_booking(booking.booking_id)

        if not self._refund_late_payment(txn, booking, TransactionStatus.FAILED, verification):
            return self._settled_or_conflict(txn, reference)
        raise ValidationError(LATE_PAYMENT_REFUNDED)

    def _commit_confirmation(
        self,
        txn: Transaction,
        booking: Booking,
        expected: TransactionStatus,
        verification: PaymentVerification,
        reference: str,
    ) -> OperationResult[PaymentConfirmation] | None:
        """Complete the attempt and confirm the booking; None if a condition failed.

        Any other pending attempt of the booking is failed in the same write.
        """
        now = utc_now()
        ops = [
            self.ledger.transaction_transition_op(
                txn.transaction_id,
                [expected],
                TransactionStatus.COMPLETED,
                now,
                set_fields={"processed_at": now, "gateway_ref": verification.gateway_ref},
                remove_fields=["failure_reason"],
            ),
            self.ledger.booking_transition_op(
                booking.booking_id,
                [BookingStatus.PENDING, BookingStatus.PENDING_PAYMENT],
                BookingStatus.CONFIRMED,
                now,
            ),
        ]
        ops += [
            self.ledger.rent_unit_op(uid, booking.booking_id, now) for uid in booking.unit_ids
        ]
        for other in self.ledger.get_booking_transactions(booking.booking_id):
            if other.transaction_id != txn.transaction_id and (
                other.status == TransactionStatus.PENDING
            ):
                ops.append(
                    self.ledger.transaction_transition_op(
                        other.transaction_id,
                        [TransactionStatus.PENDING],
                        TransactionStatus.FAILED,
                        now,
                        set_fields={"failure_reason": "Superseded by a completed payment"},
                    )
                )

        if not self.ledger.commit(ops):
            return None

        confirmed = self._load_booking(booking.booking_id)
        log_payment_operation(
            logger,
            "confirm_booking_payment",
            transaction_id=txn.transaction_id,
            booking_id=booking.booking_id,
            amount=txn.amount,
            status=TransactionStatus.COMPLETED.value,
        )
        self.notifications.notify(
            booking.renter_id,
            "Payment confirmed",
            "Your payment was received and your booking is confirmed.",
            PaymentConfirmedPayload(
                booking_id=booking.booking_id,
                transaction_id=txn.transaction_id,
                amount=txn.amount,
            ),
        )
        self.notifications.notify(
            booking.owner_id,
            "Booking confirmed",
            "A booking for your property has been paid and confirmed.",
            BookingConfirmedPayload(booking_id=booking.booking_id, property_id=booking.property_id),
        )
        return success(
            PaymentConfirmation(
                booking=confirmed,
                transaction_id=txn.transaction_id,
                reference=reference,
            ),
            "Payment confirmed",
        )

    def _refund_late_payment(
        self,
        txn: Transaction,
        booking: Booking,
        expected: TransactionStatus,
        verification: PaymentVerification,
    ) -> bool:
        """Record a payment the booking can no longer use and refund it in full.

        Returns False if another request settled the attempt first. A
        refund the gateway refuses stays FAILED for an administrator to
        retry.
        """
        now = utc_now()
        op = self.ledger.transaction_transition_op(
            txn.transaction_id,
            [expected],
            TransactionStatus.COMPLETED,
            now,
            set_fields={
                "processed_at": now,
                "gateway_ref": verification.gateway_ref,
                "late_payment": True,
            },
            remove_fields=["failure_reason"],
        )
        if not self.ledger.commit([op]):
            return False

        logger.warning(
            "Payment %s arrived while booking %s is %s; refunding it",
            txn.reference,
            booking.booking_id,
            booking.status.value,
        )
        recorded = self.ledger.get_transaction(txn.transaction_id) or txn
        refund, ops = self.refunds.create_refund_op(
            recorded, recorded.unreserved_amount, LATE_PAYMENT_REASON, txn.user_id, now
        )
        if not self.ledger.commit(ops):
            logger.error("Refund of late payment %s could not be recorded", txn.reference)
            return True

        self.refunds.notify_created(refund)
        try:
            self.refunds.approve_refund(refund, processed_by=txn.user_id)
        except BookingError as e:
            logger.error("Refund %s of late payment left open: %s", refund.refund_id, e.message)
        return True

    def _settled_outcome(
        self, txn: Transaction, reference: str
    ) -> OperationResult[PaymentConfirmation]:
        if txn.late_payment:
            raise ValidationError(LATE_PAYMENT_REFUNDED)
        return success(
            PaymentConfirmation(
                booking=self._load_booking(txn.booking_id),
                transaction_id=txn.transaction_id,
                reference=reference,
                already_confirmed=True,
            ),
            "Payment already confirmed",
        )

    def _settled_or_conflict(
        self, txn: Transaction, reference: str
    ) -> OperationResult[PaymentConfirmation]:
        """Outcome after a lost race: whatever the winning request recorded."""
        current = self.ledger.get_transaction(txn.transaction_id)
        if current is not None and current.status == TransactionStatus.COMPLETED:
            return self._settled_outcome(current, reference)
        logger.error(
            "Payment %s verified but booking %s could not be confirmed",
            reference,
            txn.booking_id,
        )
        raise ConflictError("Booking changed while confirming payment")

    def _fail_transaction(self, txn: Transaction, reason: str) -> None:
        op = self.ledger.transaction_transition_op(
            txn.transaction_id,
            [TransactionStatus.PENDING],
            TransactionStatus.FAILED,
            utc_now(),
            set_fields={"failure_reason": reason},
        )
        self.ledger.commit([op])

    def _record_payment_failure(
        self,
        txn: Transaction,
        booking: Booking,
        reason: str,
        error_code: str | None = None,
    ) -> None:
        """Mark the attempt FAILED and release held units; the booking keeps its status."""
        now = utc_now()
        ops = [
            self.ledger.transaction_transition_op(
                txn.transaction_id,
                [TransactionStatus.PENDING],
                TransactionStatus.FAILED,
                now,
                set_fields={"failure_reason": reason},
            )
        ]
        ops += [
            self.ledger.release_unit_op(u.unit_id, booking.booking_id, now)
            for u in self.ledger.units_held_by(booking)
            if u.status == UnitStatus.HELD
        ]
        if not self.ledger.commit(ops):
            logger.warning("Could not record failure of payment %s", txn.reference)
            return

        log_payment_operation(
            logger,
            "confirm_booking_payment",
            transaction_id=txn.transaction_id,
            booking_id=booking.booking_id,
            amount=txn.amount,
            status=TransactionStatus.FAILED.value,
            error=reason,
        )
        self.notifications.notify(
            booking.renter_id,
            "Payment failed",
            get_user_friendly_stripe_message(error_code),
            PaymentFailedPayload(
                booking_id=booking.booking_id,
                transaction_id=txn.transaction_id,
                reason=reason,
            ),
        )

    # =========================================================================
    # Cancellation / completion
    # =========================================================================

    @service_operation("update_booking_status")
    def update_booking_status(self, data: BookingStatusUpdate) -> OperationResult[Booking]:
        """Cancel, start or complete a booking.

        Cancelling a paid booking refunds the renter: in full when the
        owner cancels, by the cancellation policy when the renter does.

        Raises:
            NotFoundError: If the booking does not exist
            ForbiddenError: If the caller may not make this transition
            ValidationError: If the transition is not legal
            ConflictError: If the booking changed concurrently
        """
        booking = self._load_booking(data.booking_id)
        if not booking.is_party(data.user_id):
            raise ForbiddenError("You are not a party to this booking")

        current, target = booking.status, data.status
        allowed = STATUS_TRANSITIONS.get(target, {}).get(current)
        if allowed is None:
            raise ValidationError(
                f"Cannot change booking from {current.value} to {target.value}"
            )
        roles = set()
        if data.user_id == booking.renter_id:
            roles.add(RENTER)
        if data.user_id == booking.owner_id:
            roles.add(OWNER)
        if not roles & allowed:
            raise ForbiddenError(f"You cannot change this booking to {target.value}")

        now = utc_now()
        set_fields: dict[str, Any] = {}
        if target == BookingStatus.CANCELLED:
            set_fields["cancellation_reason"] = data.reason or f"Cancelled by {'/'.join(sorted(roles))}"
        ops = [
            self.ledger.booking_transition_op(
                booking.booking_id, [current], target, now, set_fields=set_fields
            )
        ]
        if target in TERMINAL_BOOKING_STATUSES:
            ops += self.ledger.release_units_ops(booking, now)
        if target == BookingStatus.CANCELLED and current in AWAITING_PAYMENT_STATUSES:
            for txn in self.ledger.get_booking_transactions(booking.booking_id):
                if txn.status == TransactionStatus.PENDING:
                    ops.append(
                        self.ledger.transaction_transition_op(
                            txn.transaction_id,
                            [TransactionStatus.PENDING],
                            TransactionStatus.FAILED,
                            now,
                            set_fields={"failure_reason": "Booking cancelled"},
                        )
                    )

        if not self.ledger.commit(ops):
            raise ConflictError("Booking was modified by another request")

        log_booking_operation(
            logger,
            "update_booking_status",
            booking_id=booking.booking_id,
            from_status=current.value,
            to_status=target.value,
            user_id=data.user_id,
        )

        if target == BookingStatus.CANCELLED and current in (
            BookingStatus.CONFIRMED,
            BookingStatus.ACTIVE,
        ):
            self._refund_cancellation(
                booking,
                cancelled_by_owner=OWNER in roles and RENTER not in roles,
                requested_by=data.user_id,
            )

        self._notify_status_change(booking, target, data.user_id, data.reason)
        return success(self._load_booking(booking.booking_id), f"Booking {target.value.lower()}")

    def _refund_cancellation(
        self, booking: Booking, cancelled_by_owner: bool, requested_by: str
    ) -> None:
        """Create and approve the compensating refund for a cancelled paid booking.

        Runs after the cancellation committed; failures are logged and the
        refund (if created) is left for an administrator to retry.
        """
        txn = self.ledger.get_completed_transaction(booking.booking_id)
        if txn is None:
            logger.error("Paid booking %s has no completed transaction", booking.booking_id)
            return

        if cancelled_by_owner:
            amount = txn.unreserved_amount
            reason = "Booking cancelled by host"
        else:
            calc = self.refund_policy.calculate_refund_amount(
                txn.amount, booking.start_date, utc_now().date()
            )
            amount = min(calc["refund_amount"], txn.unreserved_amount)
            reason = calc["description"]

        if amount <= Decimal("0"):
            logger.info("No refund due for cancelled booking %s", booking.booking_id)
            return

        try:
            refund, ops = self.refunds.create_refund_op(
                txn, amount, reason, requested_by, utc_now()
            )
        except ValidationError as e:
            logger.warning("Refund for booking %s not created: %s", booking.booking_id, e.message)
            return
        if not self.ledger.commit(ops):
            logger.error("Refund for booking %s could not be recorded", booking.booking_id)
            return

        self.refunds.notify_created(refund)
        try:
            self.refunds.approve_refund(refund, processed_by=requested_by)
        except BookingError as e:
            logger.error(
                "Refund %s for booking %s left pending: %s",
                refund.refund_id,
                booking.booking_id,
                e.message,
            )

    def _notify_status_change(
        self, booking: Booking, target: BookingStatus, actor_id: str, reason: str | None
    ) -> None:
        recipients = [uid for uid in (booking.renter_id, booking.owner_id) if uid != actor_id]
        for uid in recipients:
            if target == BookingStatus.CANCELLED:
                self.notifications.notify(
                    uid,
                    "Booking cancelled",
                    "A booking you are part of was cancelled.",
                    BookingCancelledPayload(
                        booking_id=booking.booking_id, cancelled_by=actor_id, reason=reason
                    ),
                )
            elif target == BookingStatus.COMPLETED:
                self.notifications.notify(
                    uid,
                    "Booking completed",
                    "Your booking has been completed.",
                    BookingCompletedPayload(booking_id=booking.booking_id),
                )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_user_booking_by_id(
        self, booking_id: str, user_id: str, is_admin: bool = False
    ) -> Booking:
        """Return a booking visible to its renter, owner or an admin.

        Raises:
            NotFoundError: If the booking does not exist
            ForbiddenError: If the caller may not see it
        """
        booking = self._load_booking(booking_id)
        if not (is_admin or booking.is_party(user_id)):
            raise ForbiddenError("You do not have access to this booking")
        return booking

    def get_host_booking_requests(
        self,
        host_id: str,
        page: int = 1,
        limit: int = 10,
        status: BookingStatus | None = None,
    ) -> PaginatedBookings:
        """Bookings on the host's properties, newest first."""
        bookings = self.ledger.query_bookings("owner_id-index", "owner_id", host_id)
        if status is not None:
            bookings = [b for b in bookings if b.status == status]
        items, pagination = paginate(bookings, page, limit)
        return PaginatedBookings(items=items, total_count=len(bookings), pagination=pagination)

    def get_renter_bookings(
        self,
        renter_id: str,
        page: int = 1,
        limit: int = 10,
        status: BookingStatus | None = None,
        current_user_id: str | None = None,
        is_admin: bool = False,
    ) -> PaginatedBookings:
        """A renter's bookings, newest first.

        Raises:
            ForbiddenError: If a non-admin lists another renter's bookings
        """
        if current_user_id is not None and current_user_id != renter_id and not is_admin:
            raise ForbiddenError("You can only view your own bookings")
        bookings = self.ledger.query_bookings("renter_id-index", "renter_id", renter_id)
        if status is not None:
            bookings = [b for b in bookings if b.status == status]
        items, pagination = paginate(bookings, page, limit)
        return PaginatedBookings(items=items, total_count=len(bookings), pagination=pagination)
