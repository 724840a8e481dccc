"""Stripe payment gateway for checkout sessions and refunds.

Provides integration with Stripe using the v8+ StripeClient pattern.
Retrieves API keys from SSM Parameter Store.
"""

import hashlib
import json
import os
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from stripe import StripeClient

from rentals.models import (
    CollectionResult,
    GatewayError,
    GatewayPaymentStatus,
    InvalidWebhookSignatureError,
    PaymentProvider,
    PaymentVerification,
    RefundExecution,
    get_user_friendly_stripe_message,
    is_stripe_error_retryable,
)
from rentals.utils.logging import get_logger

from .ssm_service import SSMService, SSMServiceError

logger = get_logger(__name__)

# Checkout sessions expire after 30 minutes
CHECKOUT_TTL_SECONDS = 1800


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to Stripe's integer minor units."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal | None:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class StripePaymentGateway:
    """PaymentGateway backed by Stripe Checkout.

    Handles:
    - Checkout session creation
    - Session verification
    - Refund processing
    - Webhook signature validation
    """

    provider = PaymentProvider.STRIPE

    def __init__(
        self,
        ssm: SSMService,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> None:
        """Initialize the gateway; credentials are fetched lazily from SSM.

        Args:
            ssm: Parameter Store access for the secret key and webhook secret
            success_url: Redirect after payment. Defaults to PAYMENT_SUCCESS_URL.
            cancel_url: Redirect on abandon. Defaults to PAYMENT_CANCEL_URL.
        """
        self._ssm = ssm
        self._success_url = success_url or os.getenv(
            "PAYMENT_SUCCESS_URL",
            "http://localhost:3000/bookings/payment/success?session_id={CHECKOUT_SESSION_ID}",
        )
        self._cancel_url = cancel_url or os.getenv(
            "PAYMENT_CANCEL_URL", "http://localhost:3000/bookings/payment/cancelled"
        )
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            GatewayError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_secret("stripe/secret_key")
                self._client = StripeClient(secret_key)
                logger.info("Stripe client initialized for environment: %s", self._ssm.environment)
            except SSMServiceError as e:
                raise GatewayError(reason=f"Failed to initialize Stripe client: {e}") from e
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._ssm.get_secret("stripe/webhook_secret")
            except SSMServiceError as e:
                raise GatewayError(reason=f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    def _gateway_error(self, operation: str, error: stripe.StripeError) -> GatewayError:
        error_code = getattr(error, "code", None)
        logger.error(
            "Stripe %s failed: %s (code: %s, retryable: %s)",
            operation,
            str(error),
            error_code,
            is_stripe_error_retryable(error_code),
        )
        return GatewayError(
            reason=get_user_friendly_stripe_message(error_code),
            gateway_error_code=error_code,
        )

    def initiate_collection(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str,
        callback_ref: str,
        description: str,
    ) -> CollectionResult:
        """Create a Stripe Checkout session for the transaction.

        The transaction reference is both the idempotency key and the
        session metadata, so a retried request reuses the same session.

        Raises:
            GatewayError: If session creation fails.
        """
        client = self._get_client()

        try:
            logger.info(
                "Creating Stripe checkout session for reference %s, amount %s %s",
                callback_ref,
                amount,
                currency,
            )

            session = client.checkout.sessions.create(
                params={
                    "mode": "payment",
                    "payment_method_types": ["card"],
                    "line_items": [
                        {
                            "price_data": {
                                "currency": currency.lower(),
                                "unit_amount": to_minor_units(amount),
                                "product_data": {
                                    "name": "Property Rental",
                                    "description": description,
                                },
                            },
                            "quantity": 1,
                        }
                    ],
                    "success_url": self._success_url,
                    "cancel_url": self._cancel_url,
                    "client_reference_id": payer_ref,
                    "metadata": {"reference": callback_ref, "payer_ref": payer_ref},
                    "expires_at": int(datetime.now(timezone.utc).timestamp())
                    + CHECKOUT_TTL_SECONDS,
                },
                options={"idempotency_key": f"checkout_{callback_ref}"},
            )

        except stripe.StripeError as e:
            raise self._gateway_error("checkout session creation", e) from e

        logger.info("Checkout session created: %s for reference %s", session.id, callback_ref)

        return CollectionResult(
            payment_url=session.url,
            gateway_ref=session.id,
            expires_at=datetime.fromtimestamp(session.expires_at, tz=timezone.utc),
        )

    def verify_payment(self, gateway_ref: str) -> PaymentVerification:
        """Retrieve a Checkout session and map its payment status.

        Raises:
            GatewayError: If the session cannot be retrieved.
        """
        client = self._get_client()

        try:
            session = client.checkout.sessions.retrieve(gateway_ref)
        except stripe.StripeError as e:
            raise self._gateway_error("session retrieval", e) from e

        if session.payment_status == "paid":
            status = GatewayPaymentStatus.SUCCESS
            failure_reason = None
        elif session.status == "expired":
            status = GatewayPaymentStatus.FAILED
            failure_reason = "Checkout session expired"
        else:
            status = GatewayPaymentStatus.PENDING
            failure_reason = None

        payment_intent = session.payment_intent
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id

        return PaymentVerification(
            status=status,
            amount=from_minor_units(session.amount_total),
            gateway_ref=session.id,
            payment_intent_id=payment_intent,
            failure_reason=failure_reason,
        )

    def issue_refund(
        self,
        *,
        gateway_ref: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> RefundExecution:
        """Refund part or all of a paid Checkout session.

        Raises:
            GatewayError: If the session has no payment or Stripe rejects the refund.
        """
        verification = self.verify_payment(gateway_ref)
        if not verification.payment_intent_id:
            raise GatewayError(reason=f"No payment found for session {gateway_ref}")

        client = self._get_client()

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s",
                verification.payment_intent_id,
                amount,
            )
            refund = client.refunds.create(
                params={
                    "payment_intent": verification.payment_intent_id,
                    "amount": to_minor_units(amount),
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise self._gateway_error("refund creation", e) from e

        logger.info("Refund created: %s for session %s", refund.id, gateway_ref)

        return RefundExecution(
            status=refund.status or "pending",
            gateway_refund_ref=refund.id,
            amount=from_minor_units(refund.amount),
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Raises:
            InvalidWebhookSignatureError: If signature is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise InvalidWebhookSignatureError() from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        parsed: dict[str, Any] = json.loads(payload)
        return parsed

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of a webhook payload."""
        return hashlib.sha256(payload).hexdigest()
