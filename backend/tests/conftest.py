"""Pytest configuration and fixtures for the rental marketplace backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (every ledger table with its GSIs)
- A wired service graph using the in-process mock payment gateway
- A seeder for properties, units, bookings and transactions
"""

import datetime as dt
import os
import uuid
from decimal import Decimal
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-rentals")
os.environ.setdefault("PAYMENT_PROVIDER", "mock")
os.environ.setdefault("PLATFORM_FEE_PERCENT", "0")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from rentals.models import (  # noqa: E402
    Booking,
    BookingStatus,
    BookingUnit,
    PaymentProvider,
    Property,
    PropertyStatus,
    Transaction,
    TransactionStatus,
    Unit,
    UnitStatus,
)
from rentals.services.container import Services, build_services  # noqa: E402
from rentals.services.dynamodb import DynamoDBService, to_item, utc_now  # noqa: E402
from rentals.services.payment_gateway import MockPaymentGateway  # noqa: E402

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]

OWNER_ID = "owner-1"
RENTER_ID = "renter-1"


# === Table Definitions ===


def _gsi(name: str, hash_key: str, range_key: str | None = None) -> dict[str, Any]:
    schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {"IndexName": name, "KeySchema": schema, "Projection": {"ProjectionType": "ALL"}}


def _table(
    name: str,
    hash_key: str,
    range_key: str | None = None,
    indexes: tuple[dict[str, Any], ...] = (),
) -> dict[str, Any]:
    attributes = {hash_key}
    schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        attributes.add(range_key)
        schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    for index in indexes:
        attributes.update(k["AttributeName"] for k in index["KeySchema"])

    spec: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": schema,
        "AttributeDefinitions": [
            {"AttributeName": a, "AttributeType": "S"} for a in sorted(attributes)
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        spec["GlobalSecondaryIndexes"] = list(indexes)
    return spec


TABLES = [
    _table("properties", "property_id"),
    _table("units", "unit_id", indexes=(_gsi("property_id-index", "property_id"),)),
    _table(
        "bookings",
        "booking_id",
        indexes=(
            _gsi("renter_id-index", "renter_id", "created_at"),
            _gsi("owner_id-index", "owner_id", "created_at"),
            _gsi("status-index", "status", "updated_at"),
        ),
    ),
    _table("booking-units", "booking_id", "unit_id", indexes=(_gsi("unit_id-index", "unit_id"),)),
    _table(
        "transactions",
        "transaction_id",
        indexes=(
            _gsi("reference-index", "reference"),
            _gsi("booking_id-index", "booking_id"),
            _gsi("gateway_ref-index", "gateway_ref"),
        ),
    ),
    _table(
        "disputes",
        "dispute_id",
        indexes=(
            _gsi("booking_id-index", "booking_id"),
            _gsi("status-index", "status", "created_at"),
        ),
    ),
    _table("refunds", "refund_id", indexes=(_gsi("transaction_id-index", "transaction_id"),)),
    _table(
        "notifications",
        "notification_id",
        indexes=(_gsi("user_id-index", "user_id", "created_at"),),
    ),
    _table("webhook-events", "event_id"),
]


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Create every ledger table inside a moto mock."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for spec in TABLES:
            client.create_table(**spec)
        yield client


@pytest.fixture
def db(dynamodb_tables: Any) -> DynamoDBService:
    return DynamoDBService(environment="test")


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture
def services(db: DynamoDBService, gateway: MockPaymentGateway) -> Services:
    """Service graph over the mocked tables and the mock gateway."""
    return build_services(db=db, gateway=gateway)


# === Seed Data ===


class Seeder:
    """Writes fixture entities straight to the mocked tables."""

    def __init__(self, db: DynamoDBService) -> None:
        self.db = db

    @staticmethod
    def days_from_now(days: int) -> dt.date:
        return utc_now().date() + dt.timedelta(days=days)

    def property(
        self,
        owner_id: str = OWNER_ID,
        amount: Decimal = Decimal("300000.00"),
        status: PropertyStatus = PropertyStatus.ACTIVE,
    ) -> Property:
        prop = Property(
            property_id=f"PROP-{uuid.uuid4().hex[:8].upper()}",
            owner_id=owner_id,
            title="Two-bedroom flat, Yaba",
            status=status,
            amount=amount,
            currency="NGN",
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        self.db.put_item("properties", to_item(prop))
        return prop

    def unit(
        self,
        prop: Property,
        amount: Decimal | None = None,
        status: UnitStatus = UnitStatus.AVAILABLE,
        booking_id: str | None = None,
        name: str | None = None,
    ) -> Unit:
        unit = Unit(
            unit_id=f"UNIT-{uuid.uuid4().hex[:8].upper()}",
            property_id=prop.property_id,
            name=name,
            status=status,
            amount=amount,
            booking_id=booking_id,
            updated_at=utc_now(),
        )
        self.db.put_item("units", to_item(unit))
        return unit

    def booking(
        self,
        prop: Property,
        units: list[Unit] | None = None,
        renter_id: str = RENTER_ID,
        status: BookingStatus = BookingStatus.CONFIRMED,
        amount: Decimal = Decimal("300000.00"),
        start_in_days: int = 30,
        updated_at: dt.datetime | None = None,
    ) -> Booking:
        now = utc_now()
        booking = Booking(
            booking_id=f"BKG-{uuid.uuid4().hex[:16].upper()}",
            renter_id=renter_id,
            property_id=prop.property_id,
            owner_id=prop.owner_id,
            start_date=self.days_from_now(start_in_days),
            amount=amount,
            currency=prop.currency,
            status=status,
            unit_ids=[u.unit_id for u in units or []],
            created_at=updated_at or now,
            updated_at=updated_at or now,
        )
        self.db.put_item("bookings", to_item(booking))
        for unit in units or []:
            self.db.put_item(
                "booking-units",
                to_item(
                    BookingUnit(
                        booking_id=booking.booking_id,
                        unit_id=unit.unit_id,
                        property_id=prop.property_id,
                        created_at=now,
                    )
                ),
            )
        return booking

    def transaction(
        self,
        booking: Booking,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        amount: Decimal | None = None,
        gateway_ref: str | None = "MOCK-SEEDED",
        refunded_amount: Decimal = Decimal("0"),
    ) -> Transaction:
        now = utc_now()
        txn = Transaction(
            transaction_id=f"TXN-{uuid.uuid4().hex[:16].upper()}",
            reference=f"REF-{uuid.uuid4().hex[:16].upper()}",
            amount=amount if amount is not None else booking.amount,
            base_amount=booking.amount,
            currency=booking.currency,
            status=status,
            booking_id=booking.booking_id,
            user_id=booking.renter_id,
            property_id=booking.property_id,
            gateway=PaymentProvider.MOCK,
            gateway_ref=gateway_ref,
            refunded_amount=refunded_amount,
            reserved_refund_amount=refunded_amount,
            processed_at=now if status == TransactionStatus.COMPLETED else None,
            created_at=now,
            updated_at=now,
        )
        self.db.put_item("transactions", to_item(txn))
        return txn

    def paid_booking(
        self,
        gateway: MockPaymentGateway,
        status: BookingStatus = BookingStatus.CONFIRMED,
        start_in_days: int = 30,
        unit_count: int = 1,
        amount: Decimal = Decimal("300000.00"),
    ) -> tuple[Booking, Transaction, list[Unit]]:
        """A booking with RENTED units and a completed payment the gateway knows."""
        prop = self.property()
        units = [self.unit(prop, status=UnitStatus.RENTED) for _ in range(unit_count)]
        booking = self.booking(
            prop, units, status=status, amount=amount, start_in_days=start_in_days
        )
        for unit in units:
            self.db.update_item(
                "units",
                {"unit_id": unit.unit_id},
                "SET booking_id = :booking_id",
                {":booking_id": booking.booking_id},
            )
        collection = gateway.initiate_collection(
            amount=booking.amount,
            currency=booking.currency,
            payer_ref=booking.renter_id,
            callback_ref="seed",
            description="seed",
        )
        txn = self.transaction(booking, gateway_ref=collection.gateway_ref)
        return booking, txn, units


@pytest.fixture
def seed(db: DynamoDBService) -> Seeder:
    return Seeder(db)
