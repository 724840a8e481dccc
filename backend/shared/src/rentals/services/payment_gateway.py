"""Payment gateway adapter interface and in-process mock provider.

The ledger services only talk to a gateway through the PaymentGateway
protocol. StripePaymentGateway (stripe_gateway.py) is the production
implementation; MockPaymentGateway is used when PAYMENT_PROVIDER=mock
and in tests.
"""

import uuid
from decimal import Decimal
from typing import Protocol

from rentals.models import (
    CollectionResult,
    GatewayError,
    GatewayPaymentStatus,
    PaymentProvider,
    PaymentVerification,
    RefundExecution,
)


class PaymentGateway(Protocol):
    """Operations the ledger needs from a payment provider."""

    provider: PaymentProvider

    def initiate_collection(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str,
        callback_ref: str,
        description: str,
    ) -> CollectionResult:
        """Start collecting ``amount`` from the payer.

        ``callback_ref`` is the transaction reference the gateway echoes
        back on verification and in webhooks.
        """
        ...

    def verify_payment(self, gateway_ref: str) -> PaymentVerification:
        """Resolve a collection to success, failure or still pending."""
        ...

    def issue_refund(
        self,
        *,
        gateway_ref: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> RefundExecution:
        """Refund ``amount`` against a completed collection."""
        ...


class MockPaymentGateway:
    """Deterministic in-process gateway.

    Collections succeed on verification with the amount that was
    requested. Each failure mode can be switched on to exercise the
    compensating paths.
    """

    provider = PaymentProvider.MOCK

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, object]] = {}
        self.refunds: dict[str, RefundExecution] = {}
        self.fail_collection = False
        self.fail_verification = False
        self.fail_refunds = False
        self.pending_verification = False
        self.paid_amount_override: Decimal | None = None

    def _generate_ref(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    def initiate_collection(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str,
        callback_ref: str,
        description: str,
    ) -> CollectionResult:
        if self.fail_collection:
            raise GatewayError(reason="Mock collection failure")

        gateway_ref = self._generate_ref("MOCK")
        self.collections[gateway_ref] = {
            "amount": amount,
            "currency": currency,
            "payer_ref": payer_ref,
            "reference": callback_ref,
            "description": description,
        }
        return CollectionResult(
            payment_url=f"https://pay.mock.local/checkout/{gateway_ref}",
            gateway_ref=gateway_ref,
        )

    def verify_payment(self, gateway_ref: str) -> PaymentVerification:
        collection = self.collections.get(gateway_ref)
        if collection is None:
            return PaymentVerification(
                status=GatewayPaymentStatus.FAILED,
                gateway_ref=gateway_ref,
                failure_reason="Unknown collection",
            )
        if self.fail_verification:
            return PaymentVerification(
                status=GatewayPaymentStatus.FAILED,
                gateway_ref=gateway_ref,
                failure_reason="card_declined",
            )
        if self.pending_verification:
            return PaymentVerification(
                status=GatewayPaymentStatus.PENDING, gateway_ref=gateway_ref
            )

        amount = self.paid_amount_override
        if amount is None:
            amount = collection["amount"]  # type: ignore[assignment]
        return PaymentVerification(
            status=GatewayPaymentStatus.SUCCESS,
            amount=amount,
            gateway_ref=gateway_ref,
            payment_intent_id=f"pi_{gateway_ref}",
        )

    def issue_refund(
        self,
        *,
        gateway_ref: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> RefundExecution:
        if self.fail_refunds:
            raise GatewayError(reason="Mock refund failure")

        # Replays with the same key return the original refund
        if idempotency_key in self.refunds:
            return self.refunds[idempotency_key]

        execution = RefundExecution(
            status="succeeded",
            gateway_refund_ref=self._generate_ref("RFND"),
            amount=amount,
        )
        self.refunds[idempotency_key] = execution
        return execution
