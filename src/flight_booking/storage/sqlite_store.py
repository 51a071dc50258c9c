"""SQLite-backed persistence for flights, bookings and payments."""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from flight_booking.booking.models import Booking, Payment
from flight_booking.core.errors import ConflictError
from flight_booking.flights.models import FlightOffer

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
SCHEMA_VERSION = 2

VALID_JOURNAL_MODES = frozenset({"delete", "truncate", "persist", "memory", "wal", "off"})
VALID_SYNCHRONOUS_MODES = frozenset({"off", "normal", "full", "extra"})

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


MIGRATIONS: dict[int, str] = {
    1: """
    CREATE TABLE IF NOT EXISTS flights (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tui TEXT,
        transaction_id TEXT,
        flight_number TEXT,
        airline_code TEXT,
        origin TEXT,
        destination TEXT,
        departure_time TEXT,
        offer_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_flights_tui ON flights(tui);

    CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        booking_reference TEXT NOT NULL UNIQUE,
        transaction_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        payment_status TEXT NOT NULL,
        user_id TEXT,
        data_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        booking_id INTEGER NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
        transaction_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        data_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_payments_booking ON payments(booking_id);
    """,
    2: """
    CREATE INDEX IF NOT EXISTS idx_bookings_status ON bookings(status);
    CREATE INDEX IF NOT EXISTS idx_bookings_user ON bookings(user_id);
    """,
}


class SqliteStore:
    """Thin async wrapper over sqlite3 for structured persistence."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 2000,
        journal_mode: str | None = "wal",
        synchronous: str | None = "normal",
    ) -> None:
        self._path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._journal_mode = self._normalize_pragma(journal_mode, VALID_JOURNAL_MODES, "journal_mode")
        self._synchronous = self._normalize_pragma(synchronous, VALID_SYNCHRONOUS_MODES, "synchronous")
        self._connection: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # lifecycle

    async def initialize(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is None:
                conn = await asyncio.to_thread(self._open_connection)
                self._connection = conn

    async def close(self) -> None:
        if self._connection is None:
            return
        conn = self._connection
        self._connection = None
        await asyncio.to_thread(conn.close)

    def _open_connection(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(max(self._busy_timeout_ms, 0))};")
        if self._journal_mode:
            conn.execute(f"PRAGMA journal_mode = {self._journal_mode.upper()};")
        if self._synchronous:
            conn.execute(f"PRAGMA synchronous = {self._synchronous.upper()};")
        try:
            self._apply_migrations(conn)
        except sqlite3.OperationalError as exc:
            conn.close()
            logger.error(
                "SQLite migration failed (path=%s, timeout_ms=%s): %s",
                self._path,
                self._busy_timeout_ms,
                exc,
            )
            raise
        return conn

    @staticmethod
    def _normalize_pragma(value: str | None, allowed: frozenset[str], name: str) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in allowed:
            raise ValueError(f"Unsupported SQLite {name} '{value}'. Expected one of: {sorted(allowed)}")
        return mode

    def _apply_migrations(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        current = self._get_schema_version(conn)
        if current >= SCHEMA_VERSION:
            return
        for version in range(current + 1, SCHEMA_VERSION + 1):
            script = MIGRATIONS.get(version)
            if not script:
                raise RuntimeError(f"Missing migration script for version {version}")
            conn.executescript(script)
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('schema_version', ?)\n"
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (str(version),),
            )
        conn.commit()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("SELECT value FROM meta WHERE key='schema_version'")
        row = cursor.fetchone()
        if not row:
            return 0
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return 0

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise RuntimeError("SQLite store has not been initialised")
        return self._connection

    # ------------------------------------------------------------------
    # flights

    async def save_flight(
        self,
        offer: FlightOffer,
        *,
        tui: str | None,
        transaction_id: str | None,
    ) -> int:
        """Persist a priced offer and return its row id."""

        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO flights(
                        tui, transaction_id, flight_number, airline_code, origin,
                        destination, departure_time, offer_json, created_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tui,
                        transaction_id,
                        offer.flight_numbers[0] if offer.flight_numbers else None,
                        offer.airline_code,
                        offer.origin,
                        offer.destination,
                        offer.departure_time,
                        _json_dumps(offer.to_dict()),
                        utc_now(),
                    ),
                )
                return int(cursor.lastrowid)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def fetch_flight(self, flight_id: int) -> FlightOffer | None:
        def _op() -> FlightOffer | None:
            conn = self._require_connection()
            row = conn.execute("SELECT offer_json FROM flights WHERE id=?", (flight_id,)).fetchone()
            if not row:
                return None
            return FlightOffer.from_dict(json.loads(row[0]))

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # bookings

    async def create_booking(self, booking: Booking) -> Booking:
        """Insert ``booking``; duplicate references or transaction ids raise :class:`ConflictError`."""

        def _op() -> Booking:
            conn = self._require_connection()
            now = utc_now()
            booking.created_at = booking.created_at or now
            booking.updated_at = now
            try:
                with conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO bookings(
                            booking_reference, transaction_id, status, payment_status,
                            user_id, data_json, created_at, updated_at
                        ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            booking.booking_reference,
                            booking.transaction_id,
                            booking.status.value,
                            booking.payment_status.value,
                            booking.user_id,
                            _json_dumps(booking.to_dict()),
                            booking.created_at,
                            booking.updated_at,
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"Booking {booking.booking_reference} / transaction {booking.transaction_id} already exists"
                ) from exc
            booking.id = int(cursor.lastrowid)
            return booking

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def update_booking(self, booking: Booking) -> Booking:
        if booking.id is None:
            raise ValueError("Cannot update a booking that has not been created")

        def _op() -> Booking:
            conn = self._require_connection()
            booking.updated_at = utc_now()
            with conn:
                conn.execute(
                    """
                    UPDATE bookings
                    SET status=?, payment_status=?, data_json=?, updated_at=?
                    WHERE id=?
                    """,
                    (
                        booking.status.value,
                        booking.payment_status.value,
                        _json_dumps(booking.to_dict()),
                        booking.updated_at,
                        booking.id,
                    ),
                )
            return booking

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def fetch_booking(self, booking_id: int) -> Booking | None:
        return await self._fetch_booking_where("id=?", (booking_id,))

    async def fetch_booking_by_reference(self, reference: str) -> Booking | None:
        return await self._fetch_booking_where("booking_reference=?", (reference,))

    async def _fetch_booking_where(self, clause: str, params: Sequence[Any]) -> Booking | None:
        def _op() -> Booking | None:
            conn = self._require_connection()
            row = conn.execute(f"SELECT id, data_json FROM bookings WHERE {clause}", tuple(params)).fetchone()
            if not row:
                return None
            data = json.loads(row[1])
            data["id"] = int(row[0])
            return Booking.from_dict(data)

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # payments

    async def save_payment(self, payment: Payment) -> Payment:
        """Insert or update the payment row keyed by its transaction id."""

        def _op() -> Payment:
            conn = self._require_connection()
            now = utc_now()
            payment.created_at = payment.created_at or now
            payment.updated_at = now
            with conn:
                conn.execute(
                    """
                    INSERT INTO payments(booking_id, transaction_id, status, data_json, created_at, updated_at)
                    VALUES(?, ?, ?, ?, ?, ?)
                    ON CONFLICT(transaction_id) DO UPDATE SET
                        booking_id=excluded.booking_id,
                        status=excluded.status,
                        data_json=excluded.data_json,
                        updated_at=excluded.updated_at
                    """,
                    (
                        payment.booking_id,
                        payment.transaction_id,
                        payment.status.value,
                        _json_dumps(payment.to_dict()),
                        payment.created_at,
                        payment.updated_at,
                    ),
                )
                row = conn.execute(
                    "SELECT id FROM payments WHERE transaction_id=?",
                    (payment.transaction_id,),
                ).fetchone()
            payment.id = int(row[0])
            return payment

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def fetch_payment(self, payment_id: int) -> Payment | None:
        return await self._fetch_payment_where("id=?", (payment_id,))

    async def fetch_payment_by_transaction(self, transaction_id: str) -> Payment | None:
        return await self._fetch_payment_where("transaction_id=?", (str(transaction_id),))

    async def _fetch_payment_where(self, clause: str, params: Sequence[Any]) -> Payment | None:
        def _op() -> Payment | None:
            conn = self._require_connection()
            row = conn.execute(f"SELECT id, data_json FROM payments WHERE {clause}", tuple(params)).fetchone()
            if not row:
                return None
            data = json.loads(row[1])
            data["id"] = int(row[0])
            return Payment.from_dict(data)

        async with self._lock:
            return await asyncio.to_thread(_op)
