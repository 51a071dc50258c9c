from __future__ import annotations

import sqlite3

import pytest

from flight_booking.booking.models import (
    Booking,
    BookingPricing,
    BookingStatus,
    BookingType,
    ContactDetails,
    FlightLeg,
    Payment,
    PaymentStatus,
)
from flight_booking.core.errors import ConflictError
from flight_booking.flights.models import (
    AirportRef,
    FarePricing,
    FlightEndpoint,
    FlightOffer,
    FlightSegment,
)
from flight_booking.storage.sqlite_store import SCHEMA_VERSION, SqliteStore

_SYNCHRONOUS_MAP = {0: "off", 1: "normal", 2: "full", 3: "extra"}


def _endpoint(code: str, when: str) -> FlightEndpoint:
    return FlightEndpoint(airport=AirportRef(code=code), scheduled_time=when)


def _offer() -> FlightOffer:
    return FlightOffer(
        index=None,
        airline_code="6E",
        segments=[
            FlightSegment(
                flight_number="2001",
                airline_code="6E",
                departure=_endpoint("DEL", "2026-11-20T06:00:00"),
                arrival=_endpoint("BOM", "2026-11-20T08:10:00"),
            )
        ],
        pricing=FarePricing(currency="INR", gross=5234.0, net=5100.0),
    )


def _booking(reference: str = "FBABC123XYZ", transaction_id: str = "1001") -> Booking:
    return Booking(
        booking_reference=reference,
        transaction_id=transaction_id,
        type=BookingType.ONE_WAY,
        flights=[
            FlightLeg(
                flight_id=None,
                flight_number="2001",
                tui="tui-1",
                departure=_endpoint("DEL", "2026-11-20T06:00:00"),
                arrival=_endpoint("BOM", "2026-11-20T08:10:00"),
            )
        ],
        passengers=[],
        contact=ContactDetails(email="asha@example.com", phone="9800000000"),
        pricing=BookingPricing(currency="INR", total_amount=5234.0, net_amount=5100.0),
    )


@pytest.mark.asyncio
async def test_sqlite_store_persists_flights_and_bookings(tmp_path) -> None:
    db_path = tmp_path / "store.sqlite"
    store = SqliteStore(db_path)
    await store.initialize()

    flight_id = await store.save_flight(_offer(), tui="tui-1", transaction_id="1001")
    restored = await store.fetch_flight(flight_id)
    assert restored == _offer()

    booking = await store.create_booking(_booking())
    assert booking.id is not None
    assert booking.created_at is not None

    booking.transition(BookingStatus.PENDING_PAYMENT)
    await store.update_booking(booking)

    fetched = await store.fetch_booking_by_reference("FBABC123XYZ")
    assert fetched is not None
    assert fetched.id == booking.id
    assert fetched.status is BookingStatus.PENDING_PAYMENT
    assert fetched.tui == "tui-1"

    writer_sync_mode = store._require_connection().execute("PRAGMA synchronous").fetchone()[0]
    assert _SYNCHRONOUS_MAP[int(writer_sync_mode)] == "normal"

    await store.close()

    conn = sqlite3.connect(db_path)
    try:
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert journal_mode.lower() == "wal"
        version = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()[0]
        assert int(version) == SCHEMA_VERSION
        status = conn.execute("SELECT status FROM bookings WHERE id=?", (booking.id,)).fetchone()[0]
        assert status == "PENDING_PAYMENT"
    finally:
        conn.close()


@pytest.mark.asyncio
async def test_duplicate_booking_is_a_conflict(tmp_path) -> None:
    store = SqliteStore(tmp_path / "dupes.sqlite")
    await store.initialize()
    await store.create_booking(_booking())

    with pytest.raises(ConflictError):
        await store.create_booking(_booking(reference="FBOTHER0001"))
    with pytest.raises(ConflictError):
        await store.create_booking(_booking(transaction_id="2002"))

    await store.close()


@pytest.mark.asyncio
async def test_payment_upsert_keeps_one_row_per_transaction(tmp_path) -> None:
    store = SqliteStore(tmp_path / "payments.sqlite")
    await store.initialize()
    booking = await store.create_booking(_booking())

    payment = Payment(
        booking_id=booking.id,
        transaction_id="1001",
        tui="tui-1",
        payment_amount=5100.0,
        net_amount=5100.0,
    )
    payment.record(PaymentStatus.INITIATED, "2026-11-01T10:00:00.000000Z", "Payment initiated")
    saved = await store.save_payment(payment)

    saved.status = PaymentStatus.SUCCESS
    saved.record(PaymentStatus.SUCCESS, "2026-11-01T10:05:00.000000Z")
    again = await store.save_payment(saved)

    assert again.id == saved.id
    fetched = await store.fetch_payment_by_transaction("1001")
    assert fetched is not None
    assert fetched.status is PaymentStatus.SUCCESS
    assert [entry.status for entry in fetched.history] == ["INITIATED", "SUCCESS"]
    assert (await store.fetch_payment(saved.id)) == fetched

    await store.close()


@pytest.mark.asyncio
async def test_sqlite_store_custom_pragmas(tmp_path) -> None:
    db_path = tmp_path / "custom.sqlite"
    store = SqliteStore(db_path, journal_mode="delete", synchronous="full")
    await store.initialize()

    writer_sync_mode = store._require_connection().execute("PRAGMA synchronous").fetchone()[0]
    assert _SYNCHRONOUS_MAP[int(writer_sync_mode)] == "full"

    await store.close()

    conn = sqlite3.connect(db_path)
    try:
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert journal_mode.lower() == "delete"
    finally:
        conn.close()


def test_unknown_pragma_is_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        SqliteStore(tmp_path / "bad.sqlite", journal_mode="sideways")


@pytest.mark.asyncio
async def test_store_requires_initialisation(tmp_path) -> None:
    store = SqliteStore(tmp_path / "uninit.sqlite")

    with pytest.raises(RuntimeError):
        await store.fetch_booking(1)
