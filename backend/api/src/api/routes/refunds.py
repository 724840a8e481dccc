"""Refund endpoints.

Refunds are created and processed by administrators. The user whose
payment is refunded may read the refund.
"""

from typing import Any

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from api.auth import CurrentUser, get_current_user, require_admin
from api.dependencies import get_refund_service
from api.exceptions import ensure_success
from api.models.refunds import RefundProcessRequest
from rentals.models import ForbiddenError, OperationResult, Refund, RefundCreate
from rentals.services.refund_service import RefundService

router = APIRouter(tags=["refunds"])

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Transaction not refundable or refund already closed"},
    401: {"description": "Caller identity missing"},
    403: {"description": "Administrator access required"},
    404: {"description": "Refund or transaction not found"},
    409: {"description": "Refund or transaction changed concurrently"},
}


@router.post(
    "/refunds",
    summary="Create a refund (admin)",
    response_model=OperationResult[Refund],
    status_code=HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_refund(
    body: RefundCreate,
    admin: CurrentUser = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
) -> OperationResult[Refund]:
    return ensure_success(service.create_refund(body, admin.user_id))


@router.post(
    "/refunds/{refund_id}/process",
    summary="Approve or reject a refund (admin)",
    description="""
APPROVE executes the refund through the payment gateway. A gateway
failure leaves the refund FAILED and returns 502; approving it again
retries.
""",
    response_model=OperationResult[Refund],
    responses={**ERROR_RESPONSES, 502: {"description": "Gateway refused the refund"}},
)
async def process_refund(
    refund_id: str,
    body: RefundProcessRequest,
    admin: CurrentUser = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
) -> OperationResult[Refund]:
    return ensure_success(
        service.process_refund(refund_id, body.action, admin.user_id, body.reason)
    )


@router.get(
    "/refunds/{refund_id}",
    summary="Get refund",
    response_model=Refund,
    responses=ERROR_RESPONSES,
)
async def get_refund(
    refund_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
) -> Refund:
    refund = service.get_refund(refund_id)
    if not user.is_admin and refund.user_id != user.user_id:
        raise ForbiddenError("You do not have access to this refund")
    return refund
