"""Dispute resolver.

Raising a dispute freezes a paid booking in DISPUTED. The booking row
carries ``active_dispute_id`` and the freeze is conditioned on its
absence, so a booking has at most one PENDING dispute. Resolution moves
the dispute, the booking and any refund together in one transaction.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from rentals.models import (
    BookingError,
    BookingStatus,
    ConflictError,
    Dispute,
    DisputeCreate,
    DisputeResolve,
    DisputeStatus,
    ForbiddenError,
    NotFoundError,
    OperationResult,
    PaginatedDisputes,
    Refund,
    ValidationError,
)
from rentals.models.notification import DisputeCreatedPayload, DisputeResolvedPayload
from rentals.utils.logging import get_logger, log_booking_operation

from .base import paginate, service_operation, success
from .dynamodb import utc_now

if TYPE_CHECKING:
    from .ledger import LedgerRepository
    from .notification_service import NotificationService
    from .refund_service import RefundService

logger = get_logger(__name__)

DISPUTABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.ACTIVE)


class DisputeService:
    """Creates and resolves booking disputes."""

    def __init__(
        self,
        ledger: "LedgerRepository",
        refunds: "RefundService",
        notifications: "NotificationService",
    ) -> None:
        self.ledger = ledger
        self.refunds = refunds
        self.notifications = notifications

    @service_operation("create_dispute")
    def create_dispute(self, data: DisputeCreate, initiator_id: str) -> OperationResult[Dispute]:
        """Raise a dispute and freeze the booking.

        Raises:
            NotFoundError: If the booking or parent dispute does not exist
            ForbiddenError: If the initiator is not a party to the booking
            ValidationError: If the booking is already disputed or not in a
                disputable status
        """
        booking = self.ledger.get_booking(data.booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if not booking.is_party(initiator_id):
            raise ForbiddenError("Only the renter or the property owner can open a dispute")
        if booking.status == BookingStatus.DISPUTED or booking.active_dispute_id:
            raise ValidationError("Booking already disputed")
        if booking.status not in DISPUTABLE_STATUSES:
            raise ValidationError(
                f"Bookings in status {booking.status.value} cannot be disputed"
            )

        if data.parent_dispute_id:
            parent = self.ledger.get_dispute(data.parent_dispute_id)
            if parent is None:
                raise NotFoundError("Parent dispute not found")
            if parent.booking_id != booking.booking_id:
                raise ValidationError("Parent dispute belongs to another booking")

        now = utc_now()
        dispute = Dispute(
            dispute_id=f"DSP-{uuid.uuid4().hex[:12].upper()}",
            booking_id=booking.booking_id,
            initiator_id=initiator_id,
            reason=data.reason,
            description=data.description,
            status=DisputeStatus.PENDING,
            parent_dispute_id=data.parent_dispute_id,
            created_at=now,
            updated_at=now,
        )
        ops = [
            self.ledger.put_dispute_op(dispute),
            self.ledger.booking_transition_op(
                booking.booking_id,
                DISPUTABLE_STATUSES,
                BookingStatus.DISPUTED,
                now,
                set_fields={"active_dispute_id": dispute.dispute_id},
                extra_condition="attribute_not_exists(active_dispute_id)",
            ),
        ]
        if not self.ledger.commit(ops):
            current = self.ledger.get_booking(booking.booking_id)
            if current is not None and current.active_dispute_id:
                raise ValidationError("Booking already disputed")
            raise ConflictError("Booking was modified by another request")

        log_booking_operation(
            logger,
            "create_dispute",
            booking_id=booking.booking_id,
            from_status=booking.status.value,
            to_status=BookingStatus.DISPUTED.value,
            user_id=initiator_id,
            dispute_id=dispute.dispute_id,
        )
        for user_id in (booking.renter_id, booking.owner_id):
            self.notifications.notify(
                user_id,
                "Dispute opened",
                f"A dispute was opened for booking {booking.booking_id}: {data.reason}",
                DisputeCreatedPayload(
                    dispute_id=dispute.dispute_id, booking_id=booking.booking_id
                ),
            )
        return success(dispute, "Dispute created")

    @service_operation("resolve_dispute")
    def resolve_dispute(self, data: DisputeResolve, admin_id: str) -> OperationResult[Dispute]:
        """Apply an administrator's resolution to a PENDING dispute.

        A RESOLVED dispute with a refund amount also creates a refund
        against the booking's completed payment, which is approved right
        after the resolution commits.

        Raises:
            NotFoundError: If the dispute or booking does not exist
            ValidationError: If the dispute is not PENDING, the refund exceeds
                the booking amount or the booking has no completed payment
            ConflictError: If the dispute or booking changed concurrently
        """
        dispute = self.ledger.get_dispute(data.dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute not found")
        if dispute.status != DisputeStatus.PENDING:
            raise ValidationError("Dispute has already been resolved")
        booking = self.ledger.get_booking(dispute.booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        booking_status = data.booking_status or (
            BookingStatus.COMPLETED
            if data.status == DisputeStatus.RESOLVED
            else BookingStatus.CANCELLED
        )

        now = utc_now()
        refund: Refund | None = None
        refund_ops = []
        if (
            data.status == DisputeStatus.RESOLVED
            and data.refund_amount is not None
            and data.refund_amount > Decimal("0")
        ):
            if data.refund_amount > booking.amount:
                raise ValidationError("Refund amount cannot exceed the booking amount")
            txn = self.ledger.get_completed_transaction(booking.booking_id)
            if txn is None:
                raise ValidationError("No completed payment found for this booking")
            refund, refund_ops = self.refunds.create_refund_op(
                txn,
                data.refund_amount,
                f"Dispute resolution: {data.resolution}",
                admin_id,
                now,
                dispute_id=dispute.dispute_id,
            )

        ops = [
            self.ledger.dispute_transition_op(
                dispute.dispute_id,
                [DisputeStatus.PENDING],
                data.status,
                now,
                set_fields={
                    "resolution": data.resolution,
                    "resolved_at": now,
                    "resolved_by": admin_id,
                    "refund_id": refund.refund_id if refund else None,
                },
            ),
            self.ledger.booking_transition_op(
                booking.booking_id,
                [BookingStatus.DISPUTED],
                booking_status,
                now,
                remove_fields=["active_dispute_id"],
                extra_condition="active_dispute_id = :dispute_id",
                extra_values={":dispute_id": dispute.dispute_id},
            ),
            *refund_ops,
        ]
        if not self.ledger.commit(ops):
            raise ConflictError("Dispute or booking was modified by another request")

        log_booking_operation(
            logger,
            "resolve_dispute",
            booking_id=booking.booking_id,
            from_status=BookingStatus.DISPUTED.value,
            to_status=booking_status.value,
            user_id=admin_id,
            dispute_id=dispute.dispute_id,
            resolution=data.status.value,
        )

        if not self.ledger.commit(self.ledger.release_units_ops(booking, utc_now())):
            logger.warning("Units of booking %s were not released", booking.booking_id)

        if refund is not None:
            self.refunds.notify_created(refund)
            try:
                self.refunds.approve_refund(refund, processed_by=admin_id)
            except BookingError as e:
                logger.error(
                    "Refund %s for dispute %s left pending: %s",
                    refund.refund_id,
                    dispute.dispute_id,
                    e.message,
                )

        for user_id in (booking.renter_id, booking.owner_id):
            self.notifications.notify(
                user_id,
                "Dispute resolved",
                f"The dispute on booking {booking.booking_id} was {data.status.value.lower()}.",
                DisputeResolvedPayload(
                    dispute_id=dispute.dispute_id,
                    booking_id=booking.booking_id,
                    resolution=data.resolution,
                    refund_amount=refund.amount if refund else None,
                ),
            )

        resolved = self.ledger.get_dispute(dispute.dispute_id)
        return success(resolved, "Dispute resolved")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_dispute(
        self, dispute_id: str, user_id: str | None = None, is_admin: bool = False
    ) -> Dispute:
        dispute = self.ledger.get_dispute(dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute not found")
        if user_id is not None and not is_admin:
            booking = self.ledger.get_booking(dispute.booking_id)
            if booking is None or not booking.is_party(user_id):
                raise ForbiddenError("You do not have access to this dispute")
        return dispute

    def get_pending_disputes(self, page: int = 1, limit: int = 10) -> PaginatedDisputes:
        """PENDING disputes, oldest first."""
        disputes = sorted(
            self.ledger.get_disputes_by_status(DisputeStatus.PENDING),
            key=lambda d: d.created_at,
        )
        items, pagination = paginate(disputes, page, limit)
        return PaginatedDisputes(items=items, total_count=len(disputes), pagination=pagination)

    def get_booking_disputes(self, booking_id: str) -> list[Dispute]:
        return self.ledger.get_booking_disputes(booking_id)
