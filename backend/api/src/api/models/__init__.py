"""API-specific request/response models.

Domain models (Booking, Dispute, Refund, ...) are in rentals.models and
are reused here where appropriate.

Modules:
- common: Health and webhook responses
- bookings: Booking request bodies
- disputes: Dispute resolution body
- refunds: Refund processing body
"""

__all__: list[str] = []
