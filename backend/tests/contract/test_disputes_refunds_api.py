"""Contract tests for the dispute and refund endpoints.

Test categories:
- POST /api/disputes and GET lookups
- Admin-only dispute queue and resolution
- Admin refund creation and processing, including gateway failure (502)
"""

from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_502_BAD_GATEWAY,
)

RENTER = {"x-user-sub": "renter-1"}
OWNER = {"x-user-sub": "owner-1"}
STRANGER = {"x-user-sub": "stranger"}
ADMIN = {"x-user-sub": "admin-1", "x-user-groups": "admin"}


def _open_dispute(client: TestClient, booking_id: str) -> str:
    response = client.post(
        "/api/disputes",
        json={"booking_id": booking_id, "reason": "Water supply cut off"},
        headers=RENTER,
    )
    assert response.status_code == HTTP_201_CREATED
    return response.json()["data"]["dispute_id"]


# === Disputes ===


class TestDisputeEndpoints:
    """Dispute creation, lookup and resolution."""

    def test_open_dispute(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)

        dispute_id = _open_dispute(client, booking.booking_id)

        booking_view = client.get(f"/api/bookings/{booking.booking_id}", headers=OWNER)
        assert booking_view.json()["status"] == "DISPUTED"
        listed = client.get(f"/api/bookings/{booking.booking_id}/disputes", headers=OWNER)
        assert [d["dispute_id"] for d in listed.json()] == [dispute_id]

    def test_second_dispute_is_400(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        _open_dispute(client, booking.booking_id)

        response = client.post(
            "/api/disputes",
            json={"booking_id": booking.booking_id, "reason": "Again"},
            headers=OWNER,
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "Booking already disputed"

    def test_pending_queue_is_admin_only(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        _open_dispute(client, booking.booking_id)

        assert client.get("/api/disputes/pending", headers=RENTER).status_code == (
            HTTP_403_FORBIDDEN
        )
        response = client.get("/api/disputes/pending", headers=ADMIN)
        assert response.status_code == HTTP_200_OK
        assert response.json()["total_count"] == 1

    def test_resolve_with_refund(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        dispute_id = _open_dispute(client, booking.booking_id)
        body = {"status": "RESOLVED", "resolution": "Partial refund", "refund_amount": "25000.00"}

        response = client.post(f"/api/disputes/{dispute_id}/resolve", json=body, headers=ADMIN)

        assert response.status_code == HTTP_200_OK
        data = response.json()["data"]
        assert data["status"] == "RESOLVED"
        refund = client.get(f"/api/refunds/{data['refund_id']}", headers=RENTER)
        assert refund.status_code == HTTP_200_OK
        assert refund.json()["status"] == "PROCESSED"

    def test_resolve_requires_admin(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        dispute_id = _open_dispute(client, booking.booking_id)

        response = client.post(
            f"/api/disputes/{dispute_id}/resolve",
            json={"status": "REJECTED", "resolution": "No"},
            headers=OWNER,
        )

        assert response.status_code == HTTP_403_FORBIDDEN

    def test_pending_is_not_a_resolution(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        dispute_id = _open_dispute(client, booking.booking_id)

        response = client.post(
            f"/api/disputes/{dispute_id}/resolve",
            json={"status": "PENDING", "resolution": "Later"},
            headers=ADMIN,
        )

        assert response.status_code == 422

    def test_dispute_access(self, client: TestClient, seed, gateway) -> None:
        booking, _, _ = seed.paid_booking(gateway)
        dispute_id = _open_dispute(client, booking.booking_id)

        assert client.get(f"/api/disputes/{dispute_id}", headers=OWNER).status_code == (
            HTTP_200_OK
        )
        assert client.get(f"/api/disputes/{dispute_id}", headers=STRANGER).status_code == (
            HTTP_403_FORBIDDEN
        )
        assert client.get("/api/disputes/DSP-NONE", headers=ADMIN).status_code == (
            HTTP_404_NOT_FOUND
        )


# === Refunds ===


class TestRefundEndpoints:
    """Admin refund workflow."""

    def _create(self, client: TestClient, txn, amount: str = "1000.00"):
        return client.post(
            "/api/refunds",
            json={"transaction_id": txn.transaction_id, "amount": amount, "reason": "Goodwill"},
            headers=ADMIN,
        )

    def test_create_and_approve(self, client: TestClient, seed, gateway) -> None:
        _, txn, _ = seed.paid_booking(gateway)

        created = self._create(client, txn)
        assert created.status_code == HTTP_201_CREATED
        refund_id = created.json()["data"]["refund_id"]
        assert created.json()["data"]["status"] == "PENDING"

        processed = client.post(
            f"/api/refunds/{refund_id}/process", json={"action": "APPROVE"}, headers=ADMIN
        )
        assert processed.status_code == HTTP_200_OK
        assert processed.json()["data"]["status"] == "PROCESSED"

    def test_create_requires_admin(self, client: TestClient, seed, gateway) -> None:
        _, txn, _ = seed.paid_booking(gateway)

        response = client.post(
            "/api/refunds",
            json={"transaction_id": txn.transaction_id, "amount": "10.00"},
            headers=RENTER,
        )

        assert response.status_code == HTTP_403_FORBIDDEN

    def test_over_refund_is_400(self, client: TestClient, seed, gateway) -> None:
        _, txn, _ = seed.paid_booking(gateway)

        response = self._create(client, txn, amount=str(txn.amount * 2))

        assert response.status_code == HTTP_400_BAD_REQUEST

    def test_gateway_refusal_is_502(self, client: TestClient, seed, gateway) -> None:
        """The refund stays FAILED and a second approval retries it."""
        _, txn, _ = seed.paid_booking(gateway)
        refund_id = self._create(client, txn).json()["data"]["refund_id"]
        path = f"/api/refunds/{refund_id}/process"
        gateway.fail_refunds = True

        failed = client.post(path, json={"action": "APPROVE"}, headers=ADMIN)
        assert failed.status_code == HTTP_502_BAD_GATEWAY
        assert failed.json()["message"] == (
            "The refund could not be completed by the payment provider"
        )
        assert failed.json()["recovery"] == "Approve the refund again to retry it"
        assert client.get(f"/api/refunds/{refund_id}", headers=ADMIN).json()["status"] == (
            "FAILED"
        )

        gateway.fail_refunds = False
        retried = client.post(path, json={"action": "APPROVE"}, headers=ADMIN)
        assert retried.status_code == HTTP_200_OK

    def test_reject(self, client: TestClient, seed, gateway) -> None:
        _, txn, _ = seed.paid_booking(gateway)
        refund_id = self._create(client, txn).json()["data"]["refund_id"]

        response = client.post(
            f"/api/refunds/{refund_id}/process",
            json={"action": "REJECT", "reason": "Outside policy"},
            headers=ADMIN,
        )

        assert response.json()["data"]["status"] == "REJECTED"
        assert response.json()["data"]["rejection_reason"] == "Outside policy"

    def test_refund_visible_to_payer_only(self, client: TestClient, seed, gateway) -> None:
        _, txn, _ = seed.paid_booking(gateway)
        refund_id = self._create(client, txn).json()["data"]["refund_id"]

        assert client.get(f"/api/refunds/{refund_id}", headers=RENTER).status_code == (
            HTTP_200_OK
        )
        assert client.get(f"/api/refunds/{refund_id}", headers=OWNER).status_code == (
            HTTP_403_FORBIDDEN
        )
