"""Result envelopes returned by the ledger services."""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """The ``{success, message, data?}`` envelope every operation returns."""

    success: bool = True
    message: str = "Operation successful"
    data: Optional[T] = None


class UnitValidationResult(BaseModel):
    """Outcome of validating units for a booking.

    All problems are collected in ``errors`` so callers can report
    them at once instead of failing on the first.
    """

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    available_units: list[str] = Field(default_factory=list)
    property_id: Optional[str] = None


class ValidationReport(BaseModel):
    """Outcome of a guard check on property or unit changes."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
