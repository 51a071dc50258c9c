"""Dataclasses for normalised flight offers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional


@dataclass(slots=True)
class AirportRef:
    code: Optional[str]
    name: Optional[str] = None
    location: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "name": self.name, "location": self.location}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AirportRef":
        return cls(code=data.get("code"), name=data.get("name"), location=data.get("location"))


@dataclass(slots=True)
class FlightEndpoint:
    """Departure or arrival side of a segment.

    ``scheduled_time`` is kept exactly as the supplier sent it; the supplier's
    local timestamps carry no offset, so parsing them would invent one.
    """

    airport: AirportRef
    scheduled_time: Optional[str]
    terminal: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "airport": self.airport.to_dict(),
            "terminal": self.terminal,
            "scheduled_time": self.scheduled_time,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlightEndpoint":
        return cls(
            airport=AirportRef.from_dict(data.get("airport") or {}),
            terminal=data.get("terminal"),
            scheduled_time=data.get("scheduled_time"),
        )


@dataclass(slots=True)
class Connection:
    airport: AirportRef
    duration: Optional[str] = None
    type: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {"airport": self.airport.to_dict(), "duration": self.duration, "type": self.type}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Connection":
        return cls(
            airport=AirportRef.from_dict(data.get("airport") or {}),
            duration=data.get("duration"),
            type=data.get("type"),
        )


@dataclass(slots=True)
class FlightSegment:
    flight_number: Optional[str]
    airline_code: Optional[str]
    departure: FlightEndpoint
    arrival: FlightEndpoint
    airline_name: Optional[str] = None
    marketing_carrier: Optional[str] = None
    operating_carrier: Optional[str] = None
    duration: Optional[str] = None
    aircraft: Optional[str] = None
    equipment_type: Optional[str] = None
    booking_class: Optional[str] = None
    fare_class: Optional[str] = None
    fare_basis_code: Optional[str] = None
    cabin: Optional[str] = None
    refundable: Optional[bool] = None
    fuid: Optional[str] = None
    stops: Optional[int] = None
    connections: List[Connection] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "flight_number": self.flight_number,
            "airline_code": self.airline_code,
            "airline_name": self.airline_name,
            "marketing_carrier": self.marketing_carrier,
            "operating_carrier": self.operating_carrier,
            "departure": self.departure.to_dict(),
            "arrival": self.arrival.to_dict(),
            "duration": self.duration,
            "aircraft": self.aircraft,
            "equipment_type": self.equipment_type,
            "booking_class": self.booking_class,
            "fare_class": self.fare_class,
            "fare_basis_code": self.fare_basis_code,
            "cabin": self.cabin,
            "refundable": self.refundable,
            "fuid": self.fuid,
            "stops": self.stops,
            "connections": [connection.to_dict() for connection in self.connections],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlightSegment":
        return cls(
            flight_number=data.get("flight_number"),
            airline_code=data.get("airline_code"),
            airline_name=data.get("airline_name"),
            marketing_carrier=data.get("marketing_carrier"),
            operating_carrier=data.get("operating_carrier"),
            departure=FlightEndpoint.from_dict(data.get("departure") or {}),
            arrival=FlightEndpoint.from_dict(data.get("arrival") or {}),
            duration=data.get("duration"),
            aircraft=data.get("aircraft"),
            equipment_type=data.get("equipment_type"),
            booking_class=data.get("booking_class"),
            fare_class=data.get("fare_class"),
            fare_basis_code=data.get("fare_basis_code"),
            cabin=data.get("cabin"),
            refundable=data.get("refundable"),
            fuid=data.get("fuid"),
            stops=data.get("stops"),
            connections=[Connection.from_dict(item) for item in data.get("connections") or []],
        )


@dataclass(slots=True)
class FarePricing:
    currency: Optional[str]
    gross: Optional[float] = None
    net: Optional[float] = None
    base_fare: Optional[float] = None
    taxes: Optional[float] = None
    commission: Optional[float] = None
    transaction_fee: Optional[float] = None
    vat_on_fee: Optional[float] = None
    wp_net: Optional[float] = None
    fare_basis_code: Optional[str] = None
    fare_type: Optional[str] = None
    trend_fare: Any = None
    promo: Any = None

    def to_dict(self) -> dict[str, object]:
        return {
            "currency": self.currency,
            "gross": self.gross,
            "net": self.net,
            "base_fare": self.base_fare,
            "taxes": self.taxes,
            "commission": self.commission,
            "transaction_fee": self.transaction_fee,
            "vat_on_fee": self.vat_on_fee,
            "wp_net": self.wp_net,
            "fare_basis_code": self.fare_basis_code,
            "fare_type": self.fare_type,
            "trend_fare": self.trend_fare,
            "promo": self.promo,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FarePricing":
        return cls(
            currency=data.get("currency"),
            gross=data.get("gross"),
            net=data.get("net"),
            base_fare=data.get("base_fare"),
            taxes=data.get("taxes"),
            commission=data.get("commission"),
            transaction_fee=data.get("transaction_fee"),
            vat_on_fee=data.get("vat_on_fee"),
            wp_net=data.get("wp_net"),
            fare_basis_code=data.get("fare_basis_code"),
            fare_type=data.get("fare_type"),
            trend_fare=data.get("trend_fare"),
            promo=data.get("promo"),
        )


@dataclass(slots=True)
class Availability:
    seats: Optional[int] = None
    refundable: bool = False
    hold: Any = None
    hold_info: Any = None

    def to_dict(self) -> dict[str, object]:
        return {
            "seats": self.seats,
            "refundable": self.refundable,
            "hold": self.hold,
            "hold_info": self.hold_info,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Availability":
        return cls(
            seats=data.get("seats"),
            refundable=bool(data.get("refundable")),
            hold=data.get("hold"),
            hold_info=data.get("hold_info"),
        )


@dataclass(slots=True)
class Inclusions:
    baggage: Optional[str] = None
    meals: Optional[str] = None
    piece_description: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "baggage": self.baggage,
            "meals": self.meals,
            "piece_description": self.piece_description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Inclusions":
        return cls(
            baggage=data.get("baggage"),
            meals=data.get("meals"),
            piece_description=data.get("piece_description"),
        )


@dataclass(slots=True)
class Notice:
    message: Optional[str]
    link: Optional[str] = None
    type: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {"message": self.message, "link": self.link, "type": self.type}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Notice":
        return cls(message=data.get("message"), link=data.get("link"), type=data.get("type"))


@dataclass(slots=True)
class FlightOffer:
    """One bookable option: a journey with its segments, fare and extras."""

    index: Optional[str]
    airline_code: Optional[str]
    segments: List[FlightSegment]
    pricing: FarePricing
    trip_index: int = 0
    provider: Optional[str] = None
    airline_name: Optional[str] = None
    duration: Optional[str] = None
    stops: Optional[int] = None
    availability: Availability = field(default_factory=Availability)
    inclusions: Inclusions = field(default_factory=Inclusions)
    amenities: List[str] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)
    journey_key: Optional[str] = None
    return_identifier: Any = None
    group_count: Any = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def origin(self) -> Optional[str]:
        return self.segments[0].departure.airport.code if self.segments else None

    @property
    def destination(self) -> Optional[str]:
        return self.segments[-1].arrival.airport.code if self.segments else None

    @property
    def departure_time(self) -> Optional[str]:
        return self.segments[0].departure.scheduled_time if self.segments else None

    @property
    def arrival_time(self) -> Optional[str]:
        return self.segments[-1].arrival.scheduled_time if self.segments else None

    @property
    def flight_numbers(self) -> List[str]:
        return [segment.flight_number for segment in self.segments if segment.flight_number]

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.index,
            "trip_index": self.trip_index,
            "provider": self.provider,
            "airline_code": self.airline_code,
            "airline_name": self.airline_name,
            "duration": self.duration,
            "stops": self.stops,
            "segments": [segment.to_dict() for segment in self.segments],
            "pricing": self.pricing.to_dict(),
            "availability": self.availability.to_dict(),
            "inclusions": self.inclusions.to_dict(),
            "amenities": list(self.amenities),
            "notices": [notice.to_dict() for notice in self.notices],
            "journey_key": self.journey_key,
            "return_identifier": self.return_identifier,
            "group_count": self.group_count,
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlightOffer":
        return cls(
            index=data.get("index"),
            trip_index=data.get("trip_index") or 0,
            provider=data.get("provider"),
            airline_code=data.get("airline_code"),
            airline_name=data.get("airline_name"),
            duration=data.get("duration"),
            stops=data.get("stops"),
            segments=[FlightSegment.from_dict(item) for item in data.get("segments") or []],
            pricing=FarePricing.from_dict(data.get("pricing") or {}),
            availability=Availability.from_dict(data.get("availability") or {}),
            inclusions=Inclusions.from_dict(data.get("inclusions") or {}),
            amenities=list(data.get("amenities") or []),
            notices=[Notice.from_dict(item) for item in data.get("notices") or []],
            journey_key=data.get("journey_key"),
            return_identifier=data.get("return_identifier"),
            group_count=data.get("group_count"),
            meta=dict(data.get("meta") or {}),
        )

    @classmethod
    def from_iterable(cls, offers: Iterable["FlightOffer"]) -> List[dict[str, object]]:
        return [offer.to_dict() for offer in offers]
