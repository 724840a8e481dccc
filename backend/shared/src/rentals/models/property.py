"""Property and unit models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import PropertyStatus, UnitStatus


class Property(BaseModel):
    """A listed property owned by a host.

    ``amount`` is the rate for one 30-day period in ``currency``.
    """

    property_id: str = Field(..., description="Unique property ID")
    owner_id: str = Field(..., description="Host user ID")
    title: str = Field(..., description="Listing title")
    status: PropertyStatus = Field(default=PropertyStatus.ACTIVE)
    amount: Decimal = Field(..., ge=0, description="Rate per 30-day period")
    currency: str = Field(default="NGN")
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Unit(BaseModel):
    """A leasable sub-unit of a property (e.g. one room).

    ``booking_id`` names the booking holding the unit while it is
    HELD or RENTED.
    """

    unit_id: str = Field(..., description="Unique unit ID")
    property_id: str = Field(..., description="Parent property")
    name: str | None = None
    status: UnitStatus = Field(default=UnitStatus.AVAILABLE)
    amount: Decimal | None = Field(
        default=None, ge=0, description="Unit rate per 30-day period, if priced per unit"
    )
    booking_id: str | None = None
    updated_at: datetime | None = None


class BookingUnit(BaseModel):
    """Join row linking a booking to one reserved unit."""

    booking_id: str
    unit_id: str
    property_id: str
    created_at: datetime


class UnitUpdate(BaseModel):
    """A requested change to a unit during a property update."""

    unit_id: str | None = None
    status: UnitStatus | None = None
    amount: Decimal | None = None
