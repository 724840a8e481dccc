"""Expiry of bookings whose payment window has lapsed.

A booking waiting for payment holds its units. If the renter never
pays, the booking is cancelled here so the units return to the pool.
"""

import datetime as dt
import os
from typing import TYPE_CHECKING

from rentals.models import AWAITING_PAYMENT_STATUSES, Booking, BookingStatus, TransactionStatus
from rentals.models.notification import BookingCancelledPayload
from rentals.utils.logging import get_logger, log_booking_operation

from .dynamodb import utc_now

if TYPE_CHECKING:
    from .ledger import LedgerRepository
    from .notification_service import NotificationService

logger = get_logger(__name__)

EXPIRY_REASON = "payment window expired"
DEFAULT_TIMEOUT_HOURS = 48


class BookingExpiryService:
    """Cancels stale unpaid bookings."""

    def __init__(
        self,
        ledger: "LedgerRepository",
        notifications: "NotificationService",
        timeout_hours: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.notifications = notifications
        if timeout_hours is None:
            timeout_hours = int(
                os.environ.get("BOOKING_PAYMENT_TIMEOUT_HOURS", DEFAULT_TIMEOUT_HOURS)
            )
        self.timeout = dt.timedelta(hours=timeout_hours)

    def expire_stale_bookings(self, now: dt.datetime | None = None) -> list[str]:
        """Cancel every unpaid booking untouched for longer than the timeout.

        Each booking is cancelled in its own transaction; one that changed
        since it was read is skipped.

        Returns:
            IDs of the bookings that were cancelled
        """
        now = now or utc_now()
        cutoff = now - self.timeout
        expired: list[str] = []

        for status in sorted(AWAITING_PAYMENT_STATUSES, key=lambda s: s.value):
            for booking in self.ledger.get_bookings_updated_before(status, cutoff):
                if self._expire(booking, now):
                    expired.append(booking.booking_id)

        logger.info("Expired %d unpaid bookings older than %s", len(expired), cutoff.isoformat())
        return expired

    def _expire(self, booking: Booking, now: dt.datetime) -> bool:
        ops = [
            self.ledger.booking_transition_op(
                booking.booking_id,
                [booking.status],
                BookingStatus.CANCELLED,
                now,
                set_fields={"cancellation_reason": EXPIRY_REASON},
                extra_condition="updated_at = :read_at",
                extra_values={":read_at": booking.updated_at},
            ),
            *self.ledger.release_units_ops(booking, now),
        ]
        for txn in self.ledger.get_booking_transactions(booking.booking_id):
            if txn.status == TransactionStatus.PENDING:
                ops.append(
                    self.ledger.transaction_transition_op(
                        txn.transaction_id,
                        [TransactionStatus.PENDING],
                        TransactionStatus.FAILED,
                        now,
                        set_fields={"failure_reason": EXPIRY_REASON},
                    )
                )

        if not self.ledger.commit(ops):
            logger.info("Booking %s changed before it could expire", booking.booking_id)
            return False

        log_booking_operation(
            logger,
            "expire_booking",
            booking_id=booking.booking_id,
            from_status=booking.status.value,
            to_status=BookingStatus.CANCELLED.value,
        )
        self.notifications.notify(
            booking.renter_id,
            "Booking expired",
            "Your booking was cancelled because payment was not completed in time.",
            BookingCancelledPayload(
                booking_id=booking.booking_id, cancelled_by="system", reason=EXPIRY_REASON
            ),
        )
        return True
