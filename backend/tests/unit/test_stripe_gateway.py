"""Unit tests for StripePaymentGateway.

Tests verify the gateway logic without making actual Stripe API calls.
All Stripe interactions are mocked.

Test categories:
- Initialization and credential retrieval
- initiate_collection() (checkout session creation)
- verify_payment() status mapping
- issue_refund()
- verify_webhook_signature()
"""

import json
import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe

from rentals.models import (
    GatewayError,
    GatewayPaymentStatus,
    InvalidWebhookSignatureError,
    PaymentProvider,
)
from rentals.services.ssm_service import SSMServiceError
from rentals.services.stripe_gateway import (
    StripePaymentGateway,
    from_minor_units,
    to_minor_units,
)


# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_abc123xyz"
TEST_WEBHOOK_SECRET = "whsec_test_secret123"
TEST_REFERENCE = "REF-ABC123"


# === Test Fixtures ===


@pytest.fixture
def mock_ssm():
    """Mock SSM service for credential retrieval."""
    ssm = MagicMock()
    ssm.environment = "dev"
    ssm.get_secret.side_effect = lambda name: {
        "stripe/secret_key": TEST_SECRET_KEY,
        "stripe/webhook_secret": TEST_WEBHOOK_SECRET,
    }[name]
    return ssm


@pytest.fixture
def mock_stripe_client():
    """Mock Stripe client for API calls."""
    with patch("rentals.services.stripe_gateway.StripeClient") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client
        yield mock_client


@pytest.fixture
def gateway(mock_ssm) -> StripePaymentGateway:
    return StripePaymentGateway(
        mock_ssm,
        success_url="https://example.com/success",
        cancel_url="https://example.com/cancel",
    )


def _session(**overrides):
    session = MagicMock()
    session.id = "cs_test_123"
    session.url = "https://checkout.stripe.com/c/pay/cs_test_123"
    session.expires_at = int(time.time()) + 1800
    session.payment_status = "unpaid"
    session.status = "open"
    session.amount_total = 30000000
    session.payment_intent = "pi_test_456"
    for key, value in overrides.items():
        setattr(session, key, value)
    return session


# === Initialization Tests ===


class TestInitialization:
    """Test gateway initialization and credential handling."""

    def test_provider_is_stripe(self, gateway: StripePaymentGateway) -> None:
        """Gateway identifies as the Stripe provider."""
        assert gateway.provider == PaymentProvider.STRIPE

    def test_client_lazy_initialized(self, gateway: StripePaymentGateway) -> None:
        """Client is not created until first use."""
        assert gateway._client is None

    def test_client_created_with_secret_key(
        self, gateway: StripePaymentGateway, mock_ssm
    ) -> None:
        """Secret key comes from the environment's SSM path."""
        with patch("rentals.services.stripe_gateway.StripeClient") as mock_client_class:
            gateway._get_client()
            gateway._get_client()

        mock_client_class.assert_called_once_with(TEST_SECRET_KEY)

    def test_raises_gateway_error_when_ssm_fails(self, mock_ssm) -> None:
        """SSM failure surfaces as a GatewayError."""
        mock_ssm.get_secret.side_effect = SSMServiceError("SSM error")
        gateway = StripePaymentGateway(mock_ssm)

        with pytest.raises(GatewayError) as exc_info:
            gateway._get_client()

        assert "Failed to initialize Stripe client" in exc_info.value.reason


# === initiate_collection() Tests ===


class TestInitiateCollection:
    """Test checkout session creation."""

    def test_creates_session(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """Returns the session URL and id."""
        mock_stripe_client.checkout.sessions.create.return_value = _session()

        result = gateway.initiate_collection(
            amount=Decimal("300000.00"),
            currency="NGN",
            payer_ref="renter-1",
            callback_ref=TEST_REFERENCE,
            description="Two-bedroom flat",
        )

        assert result.gateway_ref == "cs_test_123"
        assert result.payment_url == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert result.expires_at is not None

    def test_uses_reference_for_idempotency_and_metadata(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """The transaction reference is the idempotency key and session metadata."""
        mock_stripe_client.checkout.sessions.create.return_value = _session()

        gateway.initiate_collection(
            amount=Decimal("1125.00"),
            currency="EUR",
            payer_ref="renter-1",
            callback_ref=TEST_REFERENCE,
            description="Test booking",
        )

        call_kwargs = mock_stripe_client.checkout.sessions.create.call_args.kwargs
        assert call_kwargs["options"]["idempotency_key"] == f"checkout_{TEST_REFERENCE}"
        params = call_kwargs["params"]
        assert params["metadata"]["reference"] == TEST_REFERENCE
        assert params["line_items"][0]["price_data"]["currency"] == "eur"
        assert params["line_items"][0]["price_data"]["unit_amount"] == 112500

    def test_stripe_error_becomes_gateway_error(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """Stripe failures keep the Stripe error code."""
        error = stripe.CardError("Card declined", "card", "card_declined")
        mock_stripe_client.checkout.sessions.create.side_effect = error

        with pytest.raises(GatewayError) as exc_info:
            gateway.initiate_collection(
                amount=Decimal("10"),
                currency="NGN",
                payer_ref="renter-1",
                callback_ref=TEST_REFERENCE,
                description="x",
            )

        assert exc_info.value.gateway_error_code == "card_declined"
        assert exc_info.value.message == "Payment could not be verified, please retry"


# === verify_payment() Tests ===


class TestVerifyPayment:
    """Test checkout session status mapping."""

    def test_paid_session_is_success(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """payment_status=paid maps to SUCCESS with the paid amount."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = _session(
            payment_status="paid", status="complete"
        )

        result = gateway.verify_payment("cs_test_123")

        assert result.status == GatewayPaymentStatus.SUCCESS
        assert result.amount == Decimal("300000.00")
        assert result.payment_intent_id == "pi_test_456"

    def test_expired_session_is_failure(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """An expired session is a definite failure."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = _session(
            status="expired", payment_intent=None
        )

        result = gateway.verify_payment("cs_test_123")

        assert result.status == GatewayPaymentStatus.FAILED
        assert result.failure_reason == "Checkout session expired"

    def test_open_session_is_pending(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """An open unpaid session is still pending."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = _session()

        assert gateway.verify_payment("cs_test_123").status == GatewayPaymentStatus.PENDING

    def test_retrieval_error_becomes_gateway_error(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """Stripe API failures are GatewayErrors."""
        mock_stripe_client.checkout.sessions.retrieve.side_effect = stripe.APIConnectionError(
            "Network down"
        )

        with pytest.raises(GatewayError):
            gateway.verify_payment("cs_test_123")


# === issue_refund() Tests ===


class TestIssueRefund:
    """Test refund creation."""

    def test_refunds_session_payment_intent(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """Refund targets the session's PaymentIntent in minor units."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = _session(
            payment_status="paid"
        )
        refund = MagicMock()
        refund.id = "re_test_789"
        refund.status = "succeeded"
        refund.amount = 5000000
        mock_stripe_client.refunds.create.return_value = refund

        result = gateway.issue_refund(
            gateway_ref="cs_test_123",
            amount=Decimal("50000.00"),
            idempotency_key="refund_RFD-1",
        )

        assert result.succeeded
        assert result.gateway_refund_ref == "re_test_789"
        assert result.amount == Decimal("50000.00")
        call_kwargs = mock_stripe_client.refunds.create.call_args.kwargs
        assert call_kwargs["params"] == {"payment_intent": "pi_test_456", "amount": 5000000}
        assert call_kwargs["options"] == {"idempotency_key": "refund_RFD-1"}

    def test_session_without_payment_rejected(
        self, gateway: StripePaymentGateway, mock_stripe_client
    ) -> None:
        """No PaymentIntent means nothing to refund."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = _session(
            payment_intent=None
        )

        with pytest.raises(GatewayError):
            gateway.issue_refund(
                gateway_ref="cs_test_123", amount=Decimal("1"), idempotency_key="k"
            )

        mock_stripe_client.refunds.create.assert_not_called()


# === verify_webhook_signature() Tests ===


class TestVerifyWebhookSignature:
    """Test webhook signature verification."""

    def test_verifies_valid_signature(self, gateway: StripePaymentGateway) -> None:
        """Returns parsed event for valid signature."""
        test_event = {
            "id": "evt_test_123",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_test_123"}},
        }
        payload = json.dumps(test_event).encode()

        with patch("stripe.Webhook.construct_event", return_value=test_event) as construct:
            result = gateway.verify_webhook_signature(payload, "t=123,v1=abc")

        assert result == test_event
        assert construct.call_args.args[2] == TEST_WEBHOOK_SECRET

    def test_raises_error_on_invalid_signature(self, gateway: StripePaymentGateway) -> None:
        """Invalid signature raises InvalidWebhookSignatureError."""
        with patch(
            "stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("Invalid signature", "sig"),
        ):
            with pytest.raises(InvalidWebhookSignatureError):
                gateway.verify_webhook_signature(b'{"test": "payload"}', "invalid")

    def test_payload_hash_is_sha256(self) -> None:
        """Payload hash is a hex SHA-256 digest."""
        digest = StripePaymentGateway.compute_payload_hash(b"payload")

        assert len(digest) == 64
        assert digest == StripePaymentGateway.compute_payload_hash(b"payload")


def test_minor_unit_conversion() -> None:
    assert to_minor_units(Decimal("1125.005")) == 112501
    assert from_minor_units(112500) == Decimal("1125.00")
    assert from_minor_units(None) is None
