"""Search request parameters and the ExpressSearch payload builder."""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, List, Mapping, Optional, Tuple

from flight_booking.core.errors import ValidationError

MAX_PASSENGERS = 9

INVALID_DEPARTURE = "Departure date must be a valid date"
INVALID_RETURN = "Return date must be a valid date"

FARE_TYPES = {
    "oneway": "ON",
    "roundtrip": "RT",
    "multicity": "IM",
}

CABIN_CODES = {
    "economy": "E",
    "premium_economy": "PE",
    "business": "B",
    "first": "F",
    "e": "E",
    "pe": "PE",
    "b": "B",
    "f": "F",
}


def _parse_date(value: Any, label: str, errors: List[str]) -> Optional[date]:
    """Parse an ISO date; an unparseable value is recorded in ``errors`` and read as missing."""
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        errors.append(f"{label} must be a valid date")
        return None


def _as_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed


def _as_airlines(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(code).strip().upper() for code in value if str(code).strip())


@dataclass(frozen=True)
class SearchParams:
    origin: str
    destination: str
    departure_date: Optional[date]
    trip_type: str = "oneway"
    return_date: Optional[date] = None
    adults: int = 1
    children: int = 0
    infants: int = 0
    cabin: str = "economy"
    airlines: Tuple[str, ...] = field(default_factory=tuple)
    direct_only: bool = False
    refundable_only: bool = False
    is_student_fare: bool = False
    is_nearby_airport: bool = False
    is_extended_search: bool = False
    is_multiple_carrier: bool = False
    group_type: str = ""
    parse_errors: Tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def from_request(cls, data: Mapping[str, Any]) -> "SearchParams":
        """Build parameters from a request body using the public field names."""
        adults = _as_int(data.get("adults"), 1)
        parse_errors: List[str] = []
        departure_date = _parse_date(
            data.get("departDate") or data.get("departureDate"), "Departure date", parse_errors
        )
        return_date = _parse_date(data.get("returnDate"), "Return date", parse_errors)
        return cls(
            trip_type=str(data.get("tripType") or "oneway").lower(),
            origin=str(data.get("from") or data.get("origin") or "").strip(),
            destination=str(data.get("to") or data.get("destination") or "").strip(),
            departure_date=departure_date,
            return_date=return_date,
            # A missing or zero adult count falls back to one traveller.
            adults=adults or 1,
            children=_as_int(data.get("children"), 0),
            infants=_as_int(data.get("infants"), 0),
            cabin=str(data.get("cabinClass") or data.get("cabin") or "economy"),
            airlines=_as_airlines(data.get("preferredAirlines") or data.get("airlines")),
            direct_only=bool(data.get("directOnly")),
            refundable_only=bool(data.get("refundableOnly")),
            is_student_fare=bool(data.get("isStudentFare")),
            is_nearby_airport=bool(data.get("isNearbyAirport")),
            is_extended_search=bool(data.get("isExtendedSearch")),
            is_multiple_carrier=bool(data.get("isMultipleCarrier")),
            group_type=str(data.get("groupType") or ""),
            parse_errors=tuple(parse_errors),
        )

    @property
    def total_passengers(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def fare_type(self) -> str:
        return FARE_TYPES.get(self.trip_type.lower(), "ON")

    @property
    def cabin_code(self) -> str:
        return CABIN_CODES.get(self.cabin.lower(), "E")

    def validation_errors(self, today: Optional[date] = None) -> List[str]:
        """Return every violated rule, in a stable order."""
        today = today or date.today()
        errors: List[str] = list(self.parse_errors)
        if not self.origin:
            errors.append("Origin city is required")
        if not self.destination:
            errors.append("Destination city is required")
        # An unparseable date is already reported and is not reported again as missing.
        if not self.departure_date:
            if INVALID_DEPARTURE not in self.parse_errors:
                errors.append("Departure date is required")
        elif self.departure_date < today:
            errors.append("Departure date cannot be in the past")
        if (
            self.trip_type.lower() == "roundtrip"
            and not self.return_date
            and INVALID_RETURN not in self.parse_errors
        ):
            errors.append("Return date is required for round trips")
        if self.return_date and self.departure_date and self.return_date < self.departure_date:
            errors.append("Return date must be after departure date")
        if self.adults < 1:
            errors.append("At least one adult passenger is required")
        if self.total_passengers > MAX_PASSENGERS:
            errors.append(f"Maximum {MAX_PASSENGERS} passengers allowed per booking")
        if self.infants > self.adults:
            errors.append("Number of infants cannot exceed number of adults")
        return errors

    def validate(self, today: Optional[date] = None) -> None:
        errors = self.validation_errors(today)
        if errors:
            raise ValidationError(errors)

    def normalized(self) -> dict[str, Any]:
        return {
            "tripType": self.trip_type.lower(),
            "from": self.origin.upper(),
            "to": self.destination.upper(),
            "departDate": self.departure_date.isoformat() if self.departure_date else "",
            "returnDate": self.return_date.isoformat() if self.return_date else "",
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "cabin": self.cabin_code,
            "airlines": ",".join(sorted(self.airlines)),
            "directOnly": self.direct_only,
            "refundableOnly": self.refundable_only,
            "studentFare": self.is_student_fare,
            "nearbyAirport": self.is_nearby_airport,
            "extendedSearch": self.is_extended_search,
            "multipleCarrier": self.is_multiple_carrier,
            "groupType": self.group_type,
        }

    def fingerprint(self) -> str:
        encoded = json.dumps(self.normalized(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha1(encoded.encode("utf-8")).hexdigest()

    def to_payload(self, client_id: str) -> dict[str, Any]:
        return {
            "FareType": self.fare_type,
            "ADT": self.adults,
            "CHD": self.children,
            "INF": self.infants,
            "Cabin": self.cabin_code,
            "Source": "CF",
            "Mode": "AS",
            "ClientID": client_id,
            "IsMultipleCarrier": self.is_multiple_carrier,
            "IsRefundable": self.refundable_only,
            "preferedAirlines": list(self.airlines) or None,
            "TUI": "",
            "SecType": "",
            "Trips": [
                {
                    "From": self.origin.upper(),
                    "To": self.destination.upper(),
                    "ReturnDate": self.return_date.isoformat() if self.return_date else "",
                    "OnwardDate": self.departure_date.isoformat() if self.departure_date else "",
                    "TUI": "",
                }
            ],
            "Parameters": {
                "Airlines": ",".join(self.airlines),
                "GroupType": self.group_type,
                "Refundable": "Y" if self.refundable_only else "N",
                "IsDirect": self.direct_only,
                "IsStudentFare": self.is_student_fare,
                "IsNearbyAirport": self.is_nearby_airport,
                "IsExtendedSearch": self.is_extended_search,
            },
        }


def describe(params: SearchParams) -> str:
    return f"{params.origin.upper()}->{params.destination.upper()} on {params.departure_date}"


