"""Webhook endpoints for the payment gateway.

Provides:
- Stripe webhook events (checkout.session.completed, checkout.session.expired)

No JWT authentication: payloads are signed by Stripe and verified here.
"""

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_stripe_gateway, get_webhook_handler
from api.models.common import ErrorResponse, WebhookResponse
from rentals.models import InvalidWebhookSignatureError
from rentals.services.stripe_gateway import StripePaymentGateway
from rentals.services.webhook_handler import WebhookHandler
from rentals.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events. Handles:
- checkout.session.completed: Confirms the booking paid through the session
- checkout.session.expired: Marks the payment attempt failed and frees held units

**No authentication required** - signature is verified using the Stripe webhook secret.

**Idempotent**: Duplicate events (same event id) return 200 with 'duplicate' result.
""",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event received and processed (or acknowledged)"},
        400: {"description": "Invalid signature or missing header", "model": ErrorResponse},
    },
)
async def handle_stripe_webhook(
    request: Request,
    stripe_gateway: StripePaymentGateway | None = Depends(get_stripe_gateway),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    """Verify the signature, then hand the event to the webhook handler."""
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise InvalidWebhookSignatureError(details={"message": "Missing Stripe-Signature header"})
    if stripe_gateway is None:
        logger.warning("Stripe webhook received but Stripe is not the payment provider")
        raise InvalidWebhookSignatureError(details={"message": "Stripe is not configured"})

    payload = await request.body()
    event = stripe_gateway.verify_webhook_signature(payload, signature)
    event_id = event.get("id")
    event_type = event.get("type")
    log_webhook_event(logger, event_type, event_id, result="received")

    result, error = handler.handle_event(event, stripe_gateway.compute_payload_hash(payload))

    return WebhookResponse(
        received=True,
        event_id=event_id,
        event_type=event_type,
        processing_result=result,
        message=error if result == "error" else None,
    )
