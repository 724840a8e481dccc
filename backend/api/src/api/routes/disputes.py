"""Dispute endpoints.

Parties to a booking may open a dispute; only administrators resolve
them or list the pending queue.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED

from api.auth import CurrentUser, get_current_user, require_admin
from api.dependencies import get_booking_service, get_dispute_service
from api.exceptions import ensure_success
from api.models.disputes import DisputeResolveRequest
from rentals.models import (
    Dispute,
    DisputeCreate,
    DisputeResolve,
    OperationResult,
    PaginatedDisputes,
)
from rentals.services.booking_service import BookingService
from rentals.services.dispute_service import DisputeService

router = APIRouter(tags=["disputes"])

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Booking not disputable or dispute not pending"},
    401: {"description": "Caller identity missing"},
    403: {"description": "Caller may not act on this dispute"},
    404: {"description": "Dispute or booking not found"},
    409: {"description": "Dispute or booking changed concurrently"},
}


@router.post(
    "/disputes",
    summary="Open a dispute",
    description="""
Raise a dispute on a confirmed or active booking. The booking is frozen
in DISPUTED until an administrator resolves it.
""",
    response_model=OperationResult[Dispute],
    status_code=HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_dispute(
    body: DisputeCreate,
    user: CurrentUser = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service),
) -> OperationResult[Dispute]:
    return ensure_success(service.create_dispute(body, user.user_id))


@router.get(
    "/disputes/pending",
    summary="List pending disputes (admin)",
    response_model=PaginatedDisputes,
    responses=ERROR_RESPONSES,
)
async def get_pending_disputes(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    admin: CurrentUser = Depends(require_admin),
    service: DisputeService = Depends(get_dispute_service),
) -> PaginatedDisputes:
    return service.get_pending_disputes(page, limit)


@router.post(
    "/disputes/{dispute_id}/resolve",
    summary="Resolve a dispute (admin)",
    description="""
Apply a binding resolution. A RESOLVED dispute with `refund_amount`
refunds the renter from the booking's completed payment.
""",
    response_model=OperationResult[Dispute],
    responses={**ERROR_RESPONSES, 502: {"description": "Refund could not be executed"}},
)
async def resolve_dispute(
    dispute_id: str,
    body: DisputeResolveRequest,
    admin: CurrentUser = Depends(require_admin),
    service: DisputeService = Depends(get_dispute_service),
) -> OperationResult[Dispute]:
    data = DisputeResolve(dispute_id=dispute_id, **body.model_dump())
    return ensure_success(service.resolve_dispute(data, admin.user_id))


@router.get(
    "/disputes/{dispute_id}",
    summary="Get dispute",
    response_model=Dispute,
    responses=ERROR_RESPONSES,
)
async def get_dispute(
    dispute_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service),
) -> Dispute:
    return service.get_dispute(dispute_id, user.user_id, user.is_admin)


@router.get(
    "/bookings/{booking_id}/disputes",
    summary="List a booking's disputes",
    response_model=list[Dispute],
    responses=ERROR_RESPONSES,
)
async def get_booking_disputes(
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
    service: DisputeService = Depends(get_dispute_service),
) -> list[Dispute]:
    # access check
    bookings.get_user_booking_by_id(booking_id, user.user_id, user.is_admin)
    return service.get_booking_disputes(booking_id)
