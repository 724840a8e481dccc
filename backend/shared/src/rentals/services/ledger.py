"""Typed access to the ledger tables.

Reads return pydantic entities. Writes are returned as TransactWriteItems
operations rather than executed, so each service can commit everything
one logical operation touches in a single ``transact_write`` call. Every
state change is a compare-and-swap on the expected prior status.
"""

import datetime as dt
from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from rentals.models import (
    Booking,
    BookingStatus,
    BookingUnit,
    Dispute,
    DisputeStatus,
    Property,
    Refund,
    Transaction,
    TransactionStatus,
    Unit,
    UnitStatus,
)

from .dynamodb import from_item, to_dynamo_value, to_item

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class LedgerRepository:
    """Repository over the properties, units, bookings, transactions,
    disputes and refunds tables."""

    PROPERTIES_TABLE = "properties"
    UNITS_TABLE = "units"
    BOOKINGS_TABLE = "bookings"
    BOOKING_UNITS_TABLE = "booking-units"
    TRANSACTIONS_TABLE = "transactions"
    DISPUTES_TABLE = "disputes"
    REFUNDS_TABLE = "refunds"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    def get_property(self, property_id: str) -> Property | None:
        item = self.db.get_item(self.PROPERTIES_TABLE, {"property_id": property_id})
        return from_item(Property, item) if item else None

    def get_unit(self, unit_id: str) -> Unit | None:
        item = self.db.get_item(self.UNITS_TABLE, {"unit_id": unit_id})
        return from_item(Unit, item) if item else None

    def get_units(self, unit_ids: Iterable[str]) -> dict[str, Unit]:
        """Load units by ID; missing IDs are simply absent from the result."""
        keys = [{"unit_id": uid} for uid in dict.fromkeys(unit_ids)]
        return {
            item["unit_id"]: from_item(Unit, item)
            for item in self.db.batch_get(self.UNITS_TABLE, keys)
        }

    def get_property_units(self, property_id: str) -> list[Unit]:
        items = self.db.query_by_gsi(
            self.UNITS_TABLE, "property_id-index", "property_id", property_id
        )
        return [from_item(Unit, item) for item in items]

    def get_booking(self, booking_id: str) -> Booking | None:
        item = self.db.get_item(self.BOOKINGS_TABLE, {"booking_id": booking_id})
        return from_item(Booking, item) if item else None

    def get_booking_units(self, booking_id: str) -> list[BookingUnit]:
        items = self.db.query(
            self.BOOKING_UNITS_TABLE, Key("booking_id").eq(booking_id)
        )
        return [from_item(BookingUnit, item) for item in items]

    def get_unit_booking_links(self, unit_id: str) -> list[BookingUnit]:
        items = self.db.query_by_gsi(
            self.BOOKING_UNITS_TABLE, "unit_id-index", "unit_id", unit_id
        )
        return [from_item(BookingUnit, item) for item in items]

    def query_bookings(
        self,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
        newest_first: bool = True,
    ) -> list[Booking]:
        items = self.db.query_by_gsi(
            self.BOOKINGS_TABLE,
            index_name,
            partition_key_name,
            partition_key_value,
            scan_index_forward=not newest_first,
        )
        return [from_item(Booking, item) for item in items]

    def get_bookings_updated_before(
        self, status: BookingStatus, cutoff: dt.datetime
    ) -> list[Booking]:
        """Bookings in ``status`` whose last update is older than ``cutoff``."""
        items = self.db.query_by_gsi(
            self.BOOKINGS_TABLE,
            "status-index",
            "status",
            status.value,
            sort_key_condition=Key("updated_at").lt(cutoff.isoformat()),
        )
        return [from_item(Booking, item) for item in items]

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        item = self.db.get_item(self.TRANSACTIONS_TABLE, {"transaction_id": transaction_id})
        return from_item(Transaction, item) if item else None

    def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        items = self.db.query_by_gsi(
            self.TRANSACTIONS_TABLE, "reference-index", "reference", reference
        )
        if not items:
            return None
        # GSI reads are eventually consistent; re-read the base item
        return self.get_transaction(items[0]["transaction_id"])

    def get_transaction_by_gateway_ref(self, gateway_ref: str) -> Transaction | None:
        items = self.db.query_by_gsi(
            self.TRANSACTIONS_TABLE, "gateway_ref-index", "gateway_ref", gateway_ref
        )
        if not items:
            return None
        return self.get_transaction(items[0]["transaction_id"])

    def get_booking_transactions(self, booking_id: str) -> list[Transaction]:
        items = self.db.query_by_gsi(
            self.TRANSACTIONS_TABLE, "booking_id-index", "booking_id", booking_id
        )
        return [from_item(Transaction, item) for item in items]

    def get_completed_transaction(self, booking_id: str) -> Transaction | None:
        """The booking's completed payment transaction, if any."""
        for txn in self.get_booking_transactions(booking_id):
            if txn.status == TransactionStatus.COMPLETED:
                return txn
        return None

    def get_dispute(self, dispute_id: str) -> Dispute | None:
        item = self.db.get_item(self.DISPUTES_TABLE, {"dispute_id": dispute_id})
        return from_item(Dispute, item) if item else None

    def get_booking_disputes(self, booking_id: str) -> list[Dispute]:
        items = self.db.query_by_gsi(
            self.DISPUTES_TABLE, "booking_id-index", "booking_id", booking_id
        )
        return sorted(
            (from_item(Dispute, item) for item in items), key=lambda d: d.created_at
        )

    def get_disputes_by_status(self, status: DisputeStatus) -> list[Dispute]:
        items = self.db.query_by_gsi(
            self.DISPUTES_TABLE, "status-index", "status", status.value
        )
        return [from_item(Dispute, item) for item in items]

    def get_refund(self, refund_id: str) -> Refund | None:
        item = self.db.get_item(self.REFUNDS_TABLE, {"refund_id": refund_id})
        return from_item(Refund, item) if item else None

    def get_transaction_refunds(self, transaction_id: str) -> list[Refund]:
        items = self.db.query_by_gsi(
            self.REFUNDS_TABLE, "transaction_id-index", "transaction_id", transaction_id
        )
        return [from_item(Refund, item) for item in items]

    # =========================================================================
    # Transaction operation builders
    # =========================================================================

    def create_op(self, table: str, key_name: str, entity: Any) -> dict[str, Any]:
        """Put a new entity; fails the transaction if the key already exists."""
        return self.db.put_op(
            table,
            to_item(entity),
            condition_expression=f"attribute_not_exists({key_name})",
        )

    def put_booking_op(self, booking: Booking) -> dict[str, Any]:
        return self.create_op(self.BOOKINGS_TABLE, "booking_id", booking)

    def put_booking_unit_op(self, link: BookingUnit) -> dict[str, Any]:
        return self.db.put_op(
            self.BOOKING_UNITS_TABLE,
            to_item(link),
            condition_expression="attribute_not_exists(unit_id)",
        )

    def put_transaction_op(self, txn: Transaction) -> dict[str, Any]:
        return self.create_op(self.TRANSACTIONS_TABLE, "transaction_id", txn)

    def put_dispute_op(self, dispute: Dispute) -> dict[str, Any]:
        return self.create_op(self.DISPUTES_TABLE, "dispute_id", dispute)

    def put_refund_op(self, refund: Refund) -> dict[str, Any]:
        return self.create_op(self.REFUNDS_TABLE, "refund_id", refund)

    def transition_op(
        self,
        table: str,
        key: dict[str, Any],
        expected: Iterable[Any],
        new_status: Any,
        now: dt.datetime,
        set_fields: dict[str, Any] | None = None,
        remove_fields: Iterable[str] = (),
        extra_condition: str | None = None,
        extra_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Compare-and-swap an entity's status.

        Args:
            table: Table name without prefix
            key: Primary key dict
            expected: Statuses the entity must currently be in
            new_status: Status to move to
            now: Timestamp stored as updated_at
            set_fields: Other attributes to set (None values are skipped)
            remove_fields: Attributes to remove
            extra_condition: Additional condition ANDed with the status check
            extra_values: Expression values used by extra_condition

        Returns:
            An Update operation for transact_write
        """
        names = {"#status": "status"}
        values: dict[str, Any] = {":new_status": new_status, ":now": now}
        assignments = ["#status = :new_status", "updated_at = :now"]

        for i, (field, value) in enumerate((set_fields or {}).items()):
            if value is None:
                continue
            names[f"#f{i}"] = field
            values[f":f{i}"] = value
            assignments.append(f"#f{i} = :f{i}")

        expected_keys = []
        for i, status in enumerate(expected):
            values[f":expected{i}"] = status
            expected_keys.append(f":expected{i}")
        condition = f"#status IN ({', '.join(expected_keys)})"
        if extra_condition:
            condition = f"{condition} AND ({extra_condition})"
        values.update(extra_values or {})

        expression = "SET " + ", ".join(assignments)
        removals = list(remove_fields)
        if removals:
            for i, field in enumerate(removals):
                names[f"#r{i}"] = field
            expression += " REMOVE " + ", ".join(f"#r{i}" for i in range(len(removals)))

        return self.db.update_op(
            table,
            key,
            expression,
            expression_attribute_values=to_dynamo_value(values),
            expression_attribute_names=names,
            condition_expression=condition,
        )

    def booking_transition_op(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        new_status: BookingStatus,
        now: dt.datetime,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return self.transition_op(
            self.BOOKINGS_TABLE, {"booking_id": booking_id}, expected, new_status, now, **kwargs
        )

    def transaction_transition_op(
        self,
        transaction_id: str,
        expected: Iterable[TransactionStatus],
        new_status: TransactionStatus,
        now: dt.datetime,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return self.transition_op(
            self.TRANSACTIONS_TABLE,
            {"transaction_id": transaction_id},
            expected,
            new_status,
            now,
            **kwargs,
        )

    def dispute_transition_op(
        self,
        dispute_id: str,
        expected: Iterable[DisputeStatus],
        new_status: DisputeStatus,
        now: dt.datetime,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return self.transition_op(
            self.DISPUTES_TABLE, {"dispute_id": dispute_id}, expected, new_status, now, **kwargs
        )

    def refund_transition_op(
        self,
        refund_id: str,
        expected: Iterable[Any],
        new_status: Any,
        now: dt.datetime,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return self.transition_op(
            self.REFUNDS_TABLE, {"refund_id": refund_id}, expected, new_status, now, **kwargs
        )

    def hold_unit_op(self, unit_id: str, booking_id: str, now: dt.datetime) -> dict[str, Any]:
        """Hold a unit for a booking: AVAILABLE, or already HELD by it, becomes HELD."""
        return self.transition_op(
            self.UNITS_TABLE,
            {"unit_id": unit_id},
            [UnitStatus.AVAILABLE, UnitStatus.HELD],
            UnitStatus.HELD,
            now,
            set_fields={"booking_id": booking_id},
            extra_condition="#status = :available OR booking_id = :booking_id",
            extra_values={":available": UnitStatus.AVAILABLE.value, ":booking_id": booking_id},
        )

    def rent_unit_op(self, unit_id: str, booking_id: str, now: dt.datetime) -> dict[str, Any]:
        """Mark a unit RENTED by a booking that holds it (or that finds it free)."""
        return self.transition_op(
            self.UNITS_TABLE,
            {"unit_id": unit_id},
            [UnitStatus.AVAILABLE, UnitStatus.HELD],
            UnitStatus.RENTED,
            now,
            set_fields={"booking_id": booking_id},
            extra_condition="#status = :available OR booking_id = :booking_id",
            extra_values={":available": UnitStatus.AVAILABLE.value, ":booking_id": booking_id},
        )

    def release_unit_op(self, unit_id: str, booking_id: str, now: dt.datetime) -> dict[str, Any]:
        """Return a unit held or rented by ``booking_id`` to AVAILABLE."""
        return self.transition_op(
            self.UNITS_TABLE,
            {"unit_id": unit_id},
            [UnitStatus.HELD, UnitStatus.RENTED],
            UnitStatus.AVAILABLE,
            now,
            remove_fields=["booking_id"],
            extra_condition="booking_id = :booking_id",
            extra_values={":booking_id": booking_id},
        )

    def reserve_refund_op(
        self, txn: Transaction, refund_amount: Decimal, now: dt.datetime
    ) -> dict[str, Any]:
        """Reserve part of a completed or held payment for a new refund.

        The counter is incremented in place under a condition on the stored
        total, so concurrent refunds against one payment serialize here and
        their sum can never exceed the amount paid.
        """
        return self.db.update_op(
            self.TRANSACTIONS_TABLE,
            {"transaction_id": txn.transaction_id},
            "SET reserved_refund_amount = reserved_refund_amount + :amount, updated_at = :now",
            expression_attribute_values=to_dynamo_value(
                {
                    ":amount": refund_amount,
                    ":limit": txn.amount - refund_amount,
                    ":completed": TransactionStatus.COMPLETED,
                    ":held": TransactionStatus.HELD,
                    ":now": now,
                }
            ),
            expression_attribute_names={"#status": "status"},
            condition_expression=(
                "#status IN (:completed, :held) AND reserved_refund_amount <= :limit"
            ),
        )

    def release_refund_reservation_op(
        self, transaction_id: str, refund_amount: Decimal, now: dt.datetime
    ) -> dict[str, Any]:
        """Give back the reservation of a refund that will not be executed."""
        return self.db.update_op(
            self.TRANSACTIONS_TABLE,
            {"transaction_id": transaction_id},
            "SET reserved_refund_amount = reserved_refund_amount - :amount, updated_at = :now",
            expression_attribute_values=to_dynamo_value({":amount": refund_amount, ":now": now}),
            condition_expression="reserved_refund_amount >= :amount",
        )

    def add_refunded_amount_op(
        self, txn: Transaction, refund_amount: Decimal, now: dt.datetime
    ) -> dict[str, Any]:
        """Add an executed refund to the transaction's refunded total."""
        return self.db.update_op(
            self.TRANSACTIONS_TABLE,
            {"transaction_id": txn.transaction_id},
            "SET refunded_amount = refunded_amount + :amount, updated_at = :now",
            expression_attribute_values=to_dynamo_value(
                {":amount": refund_amount, ":limit": txn.amount - refund_amount, ":now": now}
            ),
            condition_expression="refunded_amount <= :limit",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def units_held_by(self, booking: Booking) -> list[Unit]:
        """Units currently HELD or RENTED on behalf of ``booking``."""
        units = self.get_units(booking.unit_ids)
        return [
            unit
            for unit in units.values()
            if unit.booking_id == booking.booking_id
            and unit.status in (UnitStatus.HELD, UnitStatus.RENTED)
        ]

    def release_units_ops(self, booking: Booking, now: dt.datetime) -> list[dict[str, Any]]:
        return [
            self.release_unit_op(unit.unit_id, booking.booking_id, now)
            for unit in self.units_held_by(booking)
        ]

    def commit(self, ops: list[dict[str, Any]]) -> bool:
        """Commit operations atomically. False means a condition failed."""
        if not ops:
            return True
        return self.db.transact_write(ops)
