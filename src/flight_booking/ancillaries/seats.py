"""Seat maps for a priced itinerary."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flight_booking.core.errors import NotFoundError, ValidationError
from flight_booking.storage.result_cache import ResultCache
from flight_booking.supplier.client import SupplierClient
from flight_booking.supplier.credentials import CredentialCache
from flight_booking.supplier.schemas import SeatInfo, SeatLayoutResponse

logger = logging.getLogger(__name__)

SEAT_TYPE_DESCRIPTIONS = {
    "PS": "Preferred Seat",
    "PRS": "Premium Seat",
    "FS": "Free Seat",
    "EES": "Emergency Exit Seat",
    "SS": "Standard Seat",
    "SM": "SpiceMax Seat",
    "WINDOW": "Window Seat",
    "AISLE": "Aisle Seat",
    "MIDDLE": "Middle Seat",
    "ALL": "Available for All Passengers",
}

_ROW_LETTERS = re.compile(r"[A-Z]")


def _features(seat: SeatInfo) -> List[str]:
    if not seat.seat_info:
        return []
    return seat.seat_info.split("|")


def _is_available(flag: Any) -> bool:
    if isinstance(flag, str):
        return flag.strip().lower() in {"true", "1", "yes"}
    return bool(flag)


def seat_restrictions(seat: SeatInfo) -> List[Dict[str, str]]:
    restrictions = []
    if "EES" in (seat.seat_info or ""):
        restrictions.append({"type": "AGE", "message": "Must be at least 15 years old"})
    if seat.seat_status == "Restricted":
        restrictions.append({"type": "BOOKING_CLASS", "message": "Only available for specific booking classes"})
    return restrictions


def seat_legend(seats: Iterable[SeatInfo]) -> List[Dict[str, str]]:
    codes: Dict[str, None] = {}
    for seat in seats:
        if seat.seat_type:
            codes[seat.seat_type] = None
        for feature in _features(seat):
            codes[feature] = None
    return [{"code": code, "description": SEAT_TYPE_DESCRIPTIONS.get(code, code)} for code in codes]


def format_seat(seat: SeatInfo) -> Dict[str, Any]:
    return {
        "number": seat.seat_number,
        "status": seat.seat_status,
        "type": seat.seat_type or "STANDARD",
        "features": _features(seat),
        "available": _is_available(seat.available),
        "pricing": {
            "amount": seat.fare,
            "tax": seat.tax,
            "total": seat.net_amount,
            "currency": "INR",
        },
        "position": {"x": seat.x_value, "y": seat.y_value},
        "restrictions": seat_restrictions(seat),
        "ssr_code": seat.ssid,
    }


def _row_number(seat_number: str) -> int:
    digits = _ROW_LETTERS.sub("", seat_number.upper())
    try:
        return int(digits)
    except ValueError:
        return 0


def format_seat_layout(response: SeatLayoutResponse) -> Dict[str, Any]:
    """Group each segment's seats into numbered rows, seats sorted by number within a row."""
    flights = []
    for trip in response.trips:
        for journey in trip.journey:
            for segment in journey.segments:
                rows: Dict[int, List[Dict[str, Any]]] = {}
                for seat in segment.seats:
                    rows.setdefault(_row_number(seat.seat_number), []).append(format_seat(seat))
                flights.append(
                    {
                        "flight_number": segment.flight_no,
                        "aircraft": {"name": segment.airline_name, "unit": segment.airline_unit},
                        "provider": journey.provider,
                        "seat_map": {
                            "rows": [
                                {
                                    "row_number": number,
                                    "seats": sorted(rows[number], key=lambda item: item["number"]),
                                }
                                for number in sorted(rows)
                            ],
                            "legend": seat_legend(segment.seats),
                        },
                    }
                )
    return {"tui": response.tui, "flights": flights}


class SeatLayoutService:
    def __init__(
        self,
        client: SupplierClient,
        credentials: CredentialCache,
        cache: ResultCache,
        *,
        cache_ttl: float = 900,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._cache = cache
        self._cache_ttl = cache_ttl

    async def get_seat_layout(self, tui: str, order_id: Any, amount: Any) -> Dict[str, Any]:
        try:
            trip = {"TUI": tui, "Index": "", "OrderID": int(order_id), "Amount": float(amount)}
        except (TypeError, ValueError) as exc:
            raise ValidationError(["Order ID and amount must be numeric"]) from exc

        credentials = await self._credentials.get_credentials()
        response = await self._client.seat_layout(
            {"ClientID": credentials.client_id, "Source": "LV", "Trips": [trip]},
            token=credentials.token,
        )
        if not response.trips:
            raise NotFoundError("Seat layout not available")

        layout = format_seat_layout(response)
        await self._cache.set(ResultCache.seat_layout_key(tui), layout, self._cache_ttl)
        logger.debug("Seat layout for %s has %s flights", tui, len(layout["flights"]))
        return layout

    async def validate_selected_seats(
        self, tui: str, selections: Iterable[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Check each ``{flight_number, seat_number, amount}`` against the cached layout."""
        layout = await self._cache.get(ResultCache.seat_layout_key(tui))
        if not isinstance(layout, dict):
            raise ValidationError(["Seat layout session expired"])

        seats_by_flight: Dict[Optional[str], Dict[str, Dict[str, Any]]] = {}
        for flight in layout.get("flights") or []:
            seats = seats_by_flight.setdefault(flight.get("flight_number"), {})
            for row in (flight.get("seat_map") or {}).get("rows") or []:
                for seat in row.get("seats") or []:
                    seats[seat["number"]] = seat

        results = []
        for selection in selections:
            number = selection.get("seat_number")
            result: Dict[str, Any] = {"seat_number": number, "valid": False}
            flight_seats = seats_by_flight.get(selection.get("flight_number"))
            seat = flight_seats.get(number) if flight_seats is not None else None
            if flight_seats is None:
                result["error"] = "Flight not found in seat layout"
            elif seat is None:
                result["error"] = "Seat not found"
            elif not seat.get("available"):
                result["error"] = "Seat not available"
            elif not _same_amount(selection.get("amount"), (seat.get("pricing") or {}).get("total")):
                result["error"] = "Invalid seat amount"
            else:
                result["valid"] = True
            results.append(result)
        return results


def _same_amount(selected: Any, expected: Any) -> bool:
    if expected is None:
        return selected in (None, 0, 0.0, "")
    try:
        return abs(float(selected) - float(expected)) < 0.005
    except (TypeError, ValueError):
        return False
