"""Booking endpoints.

Provides REST endpoints for:
- Booking requests and host responses (two-step flow)
- Direct-pay bookings and payment initiation/confirmation
- Status changes (cancel, start, complete)
- Booking lookups for renters and hosts

All endpoints require the caller identity passed by API Gateway
(x-user-sub, x-user-groups).
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query
from starlette.status import HTTP_201_CREATED

from api.auth import CurrentUser, get_current_user
from api.dependencies import get_booking_service
from api.exceptions import ensure_success
from api.models.bookings import ConfirmPaymentRequest, RespondRequest, StatusUpdateRequest
from rentals.models import (
    Booking,
    BookingCreate,
    BookingPayment,
    BookingRequestCreate,
    BookingStatus,
    BookingStatusUpdate,
    OperationResult,
    PaginatedBookings,
    PaymentConfirmation,
)
from rentals.services.booking_service import BookingService

router = APIRouter(tags=["bookings"])

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Invalid request or illegal transition"},
    401: {"description": "Caller identity missing"},
    403: {"description": "Caller may not act on this booking"},
    404: {"description": "Booking or property not found"},
    409: {"description": "Booking or unit changed concurrently"},
}


@router.post(
    "/booking-requests",
    summary="Request a booking",
    description="""
Create a booking request that waits for the host's approval.

The price is computed from the property and unit rates; requested units
are checked for availability but only held once the host approves.
""",
    response_model=OperationResult[Booking],
    status_code=HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_booking_request(
    body: BookingRequestCreate,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[Booking]:
    return ensure_success(service.create_booking_request(body, user.user_id))


@router.post(
    "/booking-requests/{booking_id}/respond",
    summary="Approve or decline a booking request",
    response_model=OperationResult[Booking],
    responses=ERROR_RESPONSES,
)
async def respond_to_booking_request(
    booking_id: str,
    body: RespondRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[Booking]:
    """Host-only. Approval holds the requested units."""
    return ensure_success(
        service.respond_to_booking_request(booking_id, user.user_id, body.accept)
    )


@router.post(
    "/bookings",
    summary="Book and pay",
    description="""
Create a booking, hold its units and open a payment collection.

**Idempotent** when an idempotency key is given in the body or the
`Idempotency-Key` header: replaying the request returns the original
booking and payment URL.
""",
    response_model=OperationResult[BookingPayment],
    status_code=HTTP_201_CREATED,
    responses={**ERROR_RESPONSES, 502: {"description": "Payment gateway failed"}},
)
async def create_booking(
    body: BookingCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[BookingPayment]:
    if idempotency_key and not body.idempotency_key:
        body = body.model_copy(update={"idempotency_key": idempotency_key})
    return ensure_success(service.create_booking(body, user.user_id))


@router.post(
    "/bookings/payments/confirm",
    summary="Confirm a payment",
    description="""
Verify a payment reference with the gateway and confirm the booking.

Confirming an already confirmed reference succeeds with
`already_confirmed: true`.
""",
    response_model=OperationResult[PaymentConfirmation],
    responses={**ERROR_RESPONSES, 502: {"description": "Payment failed or not verifiable"}},
)
async def confirm_booking_payment(
    body: ConfirmPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[PaymentConfirmation]:
    return ensure_success(service.confirm_booking_payment(body.reference, user.user_id))


@router.post(
    "/bookings/{booking_id}/payments",
    summary="Start or retry payment",
    response_model=OperationResult[BookingPayment],
    status_code=HTTP_201_CREATED,
    responses={**ERROR_RESPONSES, 502: {"description": "Payment gateway failed"}},
)
async def initiate_booking_payment(
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[BookingPayment]:
    return ensure_success(service.initiate_booking_payment(booking_id, user.user_id))


@router.patch(
    "/bookings/{booking_id}/status",
    summary="Change booking status",
    description="""
Cancel, start or complete a booking.

Cancelling a paid booking refunds the renter: in full when the host
cancels, according to the cancellation policy when the renter does.
""",
    response_model=OperationResult[Booking],
    responses=ERROR_RESPONSES,
)
async def update_booking_status(
    booking_id: str,
    body: StatusUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> OperationResult[Booking]:
    data = BookingStatusUpdate(
        booking_id=booking_id,
        status=body.status,
        user_id=user.user_id,
        reason=body.reason,
    )
    return ensure_success(service.update_booking_status(data))


@router.get(
    "/bookings/host/requests",
    summary="List bookings on the caller's properties",
    response_model=PaginatedBookings,
    responses=ERROR_RESPONSES,
)
async def get_host_booking_requests(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    status: Optional[BookingStatus] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> PaginatedBookings:
    return service.get_host_booking_requests(user.user_id, page, limit, status)


@router.get(
    "/bookings/renter",
    summary="List a renter's bookings",
    description="Defaults to the caller. Only administrators may list another renter's bookings.",
    response_model=PaginatedBookings,
    responses=ERROR_RESPONSES,
)
async def get_renter_bookings(
    renter_id: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=10),
    status: Optional[BookingStatus] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> PaginatedBookings:
    return service.get_renter_bookings(
        renter_id or user.user_id,
        page,
        limit,
        status,
        current_user_id=user.user_id,
        is_admin=user.is_admin,
    )


@router.get(
    "/bookings/{booking_id}",
    summary="Get booking",
    response_model=Booking,
    responses=ERROR_RESPONSES,
)
async def get_booking(
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
) -> Booking:
    return service.get_user_booking_by_id(booking_id, user.user_id, user.is_admin)
