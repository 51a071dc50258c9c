"""Booking and payment aggregates with their status tables."""
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from flight_booking.core.errors import ConflictError
from flight_booking.flights.models import FlightEndpoint

_BASE36 = string.digits + string.ascii_uppercase


class BookingStatus(str, Enum):
    INITIATED = "INITIATED"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.REFUNDED)

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target is self or target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.INITIATED: frozenset({BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELLED}),
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}


class BookingPaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    INITIATED = "INITIATED"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_settled(self) -> bool:
        return self in (PaymentStatus.SUCCESS, PaymentStatus.FAILED)


class BookingType(str, Enum):
    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"
    MULTI_CITY = "MULTI_CITY"

    @classmethod
    def for_trip_count(cls, trips: int) -> "BookingType":
        if trips <= 1:
            return cls.ONE_WAY
        if trips == 2:
            return cls.ROUND_TRIP
        return cls.MULTI_CITY


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_booking_reference(*, now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """``FB`` + base36 millisecond timestamp + three random base36 characters."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    chooser = rng or random
    suffix = "".join(chooser.choice(_BASE36) for _ in range(3))
    return f"FB{_to_base36(timestamp)}{suffix}"


@dataclass(slots=True)
class TravelDocument:
    type: str
    number: str
    issuing_country: Optional[str] = None
    expiry_date: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "number": self.number,
            "issuing_country": self.issuing_country,
            "expiry_date": self.expiry_date,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TravelDocument":
        return cls(
            type=data.get("type") or "PASSPORT",
            number=data.get("number") or "",
            issuing_country=data.get("issuing_country"),
            expiry_date=data.get("expiry_date"),
        )


@dataclass(slots=True)
class Passenger:
    type: str
    first_name: str
    last_name: str
    title: Optional[str] = None
    date_of_birth: Optional[str] = None
    nationality: Optional[str] = None
    documents: List[TravelDocument] = field(default_factory=list)

    @classmethod
    def from_traveller(cls, traveller: Mapping[str, Any]) -> "Passenger":
        """Map a supplier ``Travellers`` entry onto a passenger record."""
        documents = []
        if traveller.get("PassportNo"):
            documents.append(
                TravelDocument(
                    type="PASSPORT",
                    number=str(traveller["PassportNo"]),
                    issuing_country=traveller.get("Nationality"),
                    expiry_date=traveller.get("PDOE"),
                )
            )
        title = traveller.get("Title")
        return cls(
            type=str(traveller.get("PTC") or ""),
            title=str(title).upper() if title else None,
            first_name=str(traveller.get("FName") or ""),
            last_name=str(traveller.get("LName") or ""),
            date_of_birth=traveller.get("DOB"),
            nationality=traveller.get("Nationality"),
            documents=documents,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "title": self.title,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "date_of_birth": self.date_of_birth,
            "nationality": self.nationality,
            "documents": [document.to_dict() for document in self.documents],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Passenger":
        return cls(
            type=data.get("type") or "",
            title=data.get("title"),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            date_of_birth=data.get("date_of_birth"),
            nationality=data.get("nationality"),
            documents=[TravelDocument.from_dict(item) for item in data.get("documents") or []],
        )


@dataclass(slots=True)
class ContactDetails:
    email: str
    phone: str
    alternate_phone: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None

    @classmethod
    def from_contact_info(cls, info: Mapping[str, Any]) -> "ContactDetails":
        return cls(
            email=str(info.get("Email") or ""),
            phone=str(info.get("Mobile") or ""),
            alternate_phone=info.get("Phone") or None,
            address_line1=info.get("Address"),
            city=info.get("City"),
            state=info.get("State"),
            country=info.get("CountryCode"),
            postal_code=str(info["PIN"]) if info.get("PIN") else None,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "phone": self.phone,
            "alternate_phone": self.alternate_phone,
            "address_line1": self.address_line1,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postal_code": self.postal_code,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContactDetails":
        return cls(
            email=data.get("email") or "",
            phone=data.get("phone") or "",
            alternate_phone=data.get("alternate_phone"),
            address_line1=data.get("address_line1"),
            city=data.get("city"),
            state=data.get("state"),
            country=data.get("country"),
            postal_code=data.get("postal_code"),
        )


@dataclass(slots=True)
class FlightLeg:
    flight_id: Optional[int]
    flight_number: Optional[str]
    tui: Optional[str]
    departure: FlightEndpoint
    arrival: FlightEndpoint
    provider_code: Optional[str] = None
    pnr: Optional[str] = None
    cabin: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "flight_id": self.flight_id,
            "flight_number": self.flight_number,
            "tui": self.tui,
            "provider_code": self.provider_code,
            "pnr": self.pnr,
            "departure": self.departure.to_dict(),
            "arrival": self.arrival.to_dict(),
            "cabin": self.cabin,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlightLeg":
        return cls(
            flight_id=data.get("flight_id"),
            flight_number=data.get("flight_number"),
            tui=data.get("tui"),
            provider_code=data.get("provider_code"),
            pnr=data.get("pnr"),
            departure=FlightEndpoint.from_dict(data.get("departure") or {}),
            arrival=FlightEndpoint.from_dict(data.get("arrival") or {}),
            cabin=data.get("cabin"),
        )


@dataclass(slots=True)
class BookingPricing:
    currency: str
    total_amount: float
    net_amount: float
    base_fare: Optional[float] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "currency": self.currency,
            "total_amount": self.total_amount,
            "net_amount": self.net_amount,
            "base_fare": self.base_fare,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BookingPricing":
        return cls(
            currency=data.get("currency") or "INR",
            total_amount=float(data.get("total_amount") or 0),
            net_amount=float(data.get("net_amount") or 0),
            base_fare=data.get("base_fare"),
        )


@dataclass(slots=True)
class Booking:
    """Aggregate root for one itinerary and its payment sub-state."""

    booking_reference: str
    transaction_id: str
    type: BookingType
    flights: List[FlightLeg]
    passengers: List[Passenger]
    contact: ContactDetails
    pricing: BookingPricing
    status: BookingStatus = BookingStatus.INITIATED
    payment_status: BookingPaymentStatus = BookingPaymentStatus.PENDING
    payment_method: Optional[str] = None
    user_id: Optional[str] = None
    source: str = "API"
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def tui(self) -> Optional[str]:
        return self.flights[0].tui if self.flights else None

    def transition(self, target: BookingStatus) -> bool:
        """Move to ``target``; returns False when already there."""
        if target is self.status:
            return False
        if not self.status.can_transition_to(target):
            raise ConflictError(
                f"Booking {self.booking_reference} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target
        return True

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "booking_reference": self.booking_reference,
            "transaction_id": self.transaction_id,
            "type": self.type.value,
            "status": self.status.value,
            "flights": [flight.to_dict() for flight in self.flights],
            "passengers": [passenger.to_dict() for passenger in self.passengers],
            "contact": self.contact.to_dict(),
            "pricing": self.pricing.to_dict(),
            "payment": {"status": self.payment_status.value, "method": self.payment_method},
            "user_id": self.user_id,
            "source": self.source,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Booking":
        payment = data.get("payment") or {}
        return cls(
            id=data.get("id"),
            booking_reference=data["booking_reference"],
            transaction_id=data["transaction_id"],
            type=BookingType(data.get("type") or BookingType.ONE_WAY.value),
            status=BookingStatus(data.get("status") or BookingStatus.INITIATED.value),
            flights=[FlightLeg.from_dict(item) for item in data.get("flights") or []],
            passengers=[Passenger.from_dict(item) for item in data.get("passengers") or []],
            contact=ContactDetails.from_dict(data.get("contact") or {}),
            pricing=BookingPricing.from_dict(data.get("pricing") or {}),
            payment_status=BookingPaymentStatus(payment.get("status") or BookingPaymentStatus.PENDING.value),
            payment_method=payment.get("method"),
            user_id=data.get("user_id"),
            source=data.get("source") or "API",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(slots=True)
class PaymentHistoryEntry:
    status: str
    timestamp: str
    remarks: Optional[str] = None
    # False for callbacks that were logged but did not change the payment status.
    applied: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "remarks": self.remarks,
            "applied": self.applied,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentHistoryEntry":
        return cls(
            status=data["status"],
            timestamp=data["timestamp"],
            remarks=data.get("remarks"),
            applied=bool(data.get("applied", True)),
        )


@dataclass(slots=True)
class GatewayDetails:
    code: Optional[str] = None
    payment_id: Optional[str] = None
    redirect_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "payment_id": self.payment_id,
            "redirect_url": self.redirect_url,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GatewayDetails":
        return cls(
            code=data.get("code"),
            payment_id=data.get("payment_id"),
            redirect_url=data.get("redirect_url"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(slots=True)
class PaymentResponse:
    code: Optional[str] = None
    message: Optional[str] = None
    book_status: Optional[str] = None
    crs_pnr: Optional[str] = None
    redirect_mode: Optional[str] = None
    post_data: Any = None

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "message": self.message,
            "book_status": self.book_status,
            "crs_pnr": self.crs_pnr,
            "redirect_mode": self.redirect_mode,
            "post_data": self.post_data,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentResponse":
        return cls(
            code=data.get("code"),
            message=data.get("message"),
            book_status=data.get("book_status"),
            crs_pnr=data.get("crs_pnr"),
            redirect_mode=data.get("redirect_mode"),
            post_data=data.get("post_data"),
        )


@dataclass(slots=True)
class Payment:
    booking_id: int
    transaction_id: str
    tui: Optional[str]
    payment_amount: float
    net_amount: float
    status: PaymentStatus = PaymentStatus.INITIATED
    payment_type: str = "DEPOSIT"
    gateway: GatewayDetails = field(default_factory=GatewayDetails)
    response: PaymentResponse = field(default_factory=PaymentResponse)
    history: List[PaymentHistoryEntry] = field(default_factory=list)
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def record(
        self,
        status: PaymentStatus,
        timestamp: str,
        remarks: Optional[str] = None,
        *,
        applied: bool = True,
    ) -> None:
        """Append to the history log; earlier entries are never rewritten."""
        self.history.append(
            PaymentHistoryEntry(status=status.value, timestamp=timestamp, remarks=remarks, applied=applied)
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "transaction_id": self.transaction_id,
            "tui": self.tui,
            "payment_amount": self.payment_amount,
            "net_amount": self.net_amount,
            "status": self.status.value,
            "payment_type": self.payment_type,
            "gateway": self.gateway.to_dict(),
            "response": self.response.to_dict(),
            "history": [entry.to_dict() for entry in self.history],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Payment":
        return cls(
            id=data.get("id"),
            booking_id=int(data["booking_id"]),
            transaction_id=data["transaction_id"],
            tui=data.get("tui"),
            payment_amount=float(data.get("payment_amount") or 0),
            net_amount=float(data.get("net_amount") or 0),
            status=PaymentStatus(data.get("status") or PaymentStatus.INITIATED.value),
            payment_type=data.get("payment_type") or "DEPOSIT",
            gateway=GatewayDetails.from_dict(data.get("gateway") or {}),
            response=PaymentResponse.from_dict(data.get("response") or {}),
            history=[PaymentHistoryEntry.from_dict(item) for item in data.get("history") or []],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
