"""Unit availability checks guarding against double-booking.

These checks collect every problem into a result object instead of
raising, so callers can report them all at once. The authoritative
guard is still the conditional write that holds the units; a passing
check here only means the units looked free when read.
"""

from typing import TYPE_CHECKING

from rentals.models import (
    TERMINAL_BOOKING_STATUSES,
    PropertyStatus,
    UnitStatus,
    UnitUpdate,
    UnitValidationResult,
    ValidationReport,
)

if TYPE_CHECKING:
    from .ledger import LedgerRepository

OCCUPIED_UNIT_STATUSES = (UnitStatus.RENTED, UnitStatus.HELD)


class UnitAvailabilityChecker:
    """Validates units for bookings and guards unit reconfiguration."""

    def __init__(self, ledger: "LedgerRepository") -> None:
        self.ledger = ledger

    def validate_units_for_booking(
        self,
        unit_ids: list[str],
        property_id: str | None = None,
        booking_id: str | None = None,
    ) -> UnitValidationResult:
        """Check that units exist, are free, and share one active property.

        Args:
            unit_ids: Requested unit IDs
            property_id: Property the units must belong to, if known
            booking_id: Booking re-validating its own units; units HELD by
                it count as available

        Returns:
            UnitValidationResult listing every problem found
        """
        errors: list[str] = []

        if not unit_ids:
            return UnitValidationResult(
                is_valid=False, errors=["At least one unit must be selected"]
            )

        seen: set[str] = set()
        for uid in unit_ids:
            if uid in seen:
                errors.append(f"Unit {uid} is listed more than once")
            seen.add(uid)

        units = self.ledger.get_units(unit_ids)
        missing = [uid for uid in dict.fromkeys(unit_ids) if uid not in units]
        for uid in missing:
            errors.append(f"Unit {uid} not found")

        available: list[str] = []
        for unit in units.values():
            held_by_this_booking = (
                booking_id is not None
                and unit.status == UnitStatus.HELD
                and unit.booking_id == booking_id
            )
            if unit.status == UnitStatus.AVAILABLE or held_by_this_booking:
                available.append(unit.unit_id)
            else:
                errors.append(
                    f"Unit {unit.name or unit.unit_id} is not available "
                    f"(status: {unit.status.value})"
                )

        property_ids = {unit.property_id for unit in units.values()}
        if len(property_ids) > 1:
            errors.append("All units must belong to the same property")

        resolved_property_id = property_id
        if property_ids and property_id is not None and property_ids != {property_id}:
            errors.append(f"Units do not belong to property {property_id}")
        elif resolved_property_id is None and len(property_ids) == 1:
            resolved_property_id = next(iter(property_ids))

        if resolved_property_id is not None:
            prop = self.ledger.get_property(resolved_property_id)
            if prop is None:
                errors.append(f"Property {resolved_property_id} not found")
            elif prop.status != PropertyStatus.ACTIVE:
                errors.append("Property is not available for rent")

        return UnitValidationResult(
            is_valid=not errors,
            errors=errors,
            available_units=available,
            property_id=resolved_property_id,
        )

    def validate_property_update(
        self,
        property_id: str,
        owner_id: str,
        units: list[UnitUpdate] | None = None,
        unit_count: int | None = None,
    ) -> ValidationReport:
        """Guard a property reconfiguration against rented or held units.

        Args:
            property_id: Property being updated
            owner_id: Caller; must own the property
            units: Requested per-unit changes
            unit_count: New total number of units, if changing

        Returns:
            ValidationReport listing every problem found
        """
        prop = self.ledger.get_property(property_id)
        if prop is None:
            return ValidationReport(is_valid=False, errors=["Property not found"])
        if prop.owner_id != owner_id:
            return ValidationReport(
                is_valid=False, errors=["You can only update your own properties"]
            )

        errors: list[str] = []
        current = {u.unit_id: u for u in self.ledger.get_property_units(property_id)}
        occupied = [u for u in current.values() if u.status in OCCUPIED_UNIT_STATUSES]

        if unit_count is not None and unit_count < len(occupied):
            errors.append(
                f"Cannot reduce units to {unit_count}: {len(occupied)} units are rented or held"
            )

        for change in units or []:
            if change.unit_id is None:
                continue
            unit = current.get(change.unit_id)
            if unit is None:
                errors.append(f"Unit {change.unit_id} does not belong to this property")
                continue
            if (
                unit.status in OCCUPIED_UNIT_STATUSES
                and change.status is not None
                and change.status != unit.status
            ):
                errors.append(
                    f"Cannot change status of unit {unit.name or unit.unit_id} "
                    f"while it is {unit.status.value}"
                )

        return ValidationReport(is_valid=not errors, errors=errors)

    def validate_unit_deletion(self, unit_id: str, property_id: str) -> ValidationReport:
        """Block deleting a unit that is rented, held or tied to a live booking."""
        unit = self.ledger.get_unit(unit_id)
        if unit is None or unit.property_id != property_id:
            return ValidationReport(is_valid=False, errors=["Unit not found"])

        errors: list[str] = []
        if unit.status in OCCUPIED_UNIT_STATUSES:
            errors.append(f"Cannot delete a {unit.status.value.lower()} unit")

        for link in self.ledger.get_unit_booking_links(unit_id):
            booking = self.ledger.get_booking(link.booking_id)
            if booking is not None and booking.status not in TERMINAL_BOOKING_STATUSES:
                errors.append("Cannot delete unit with active bookings")
                break

        return ValidationReport(is_valid=not errors, errors=errors)
