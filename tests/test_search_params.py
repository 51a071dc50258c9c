from __future__ import annotations

from datetime import date

import pytest

from flight_booking.core.errors import ValidationError
from flight_booking.search.params import SearchParams

TODAY = date(2026, 11, 1)


def _params(**overrides) -> SearchParams:
    body = {"from": "del", "to": "bom", "departDate": "2026-11-20", "adults": 1}
    body.update(overrides)
    return SearchParams.from_request(body)


def test_from_request_defaults_missing_or_zero_adults_to_one() -> None:
    assert _params(adults=0).adults == 1
    assert SearchParams.from_request({"from": "DEL", "to": "BOM"}).adults == 1


def test_invalid_date_is_reported_with_every_other_violation() -> None:
    params = SearchParams.from_request({"departDate": "not-a-date", "adults": 1, "infants": 3})

    with pytest.raises(ValidationError) as excinfo:
        params.validate(TODAY)

    assert excinfo.value.errors == [
        "Departure date must be a valid date",
        "Origin city is required",
        "Destination city is required",
        "Number of infants cannot exceed number of adults",
    ]


def test_invalid_return_date_is_not_also_reported_missing() -> None:
    params = _params(tripType="roundtrip", returnDate="2026-13-45")

    assert params.validation_errors(TODAY) == ["Return date must be a valid date"]


def test_validation_collects_every_violation_in_order() -> None:
    params = _params(
        tripType="roundtrip",
        departDate="2026-10-01",
        adults=1,
        children=6,
        infants=3,
    )

    assert params.validation_errors(TODAY) == [
        "Departure date cannot be in the past",
        "Return date is required for round trips",
        "Maximum 9 passengers allowed per booking",
        "Number of infants cannot exceed number of adults",
    ]


def test_missing_route_and_return_before_departure() -> None:
    params = SearchParams.from_request(
        {"departDate": "2026-11-20", "returnDate": "2026-11-18", "adults": 2}
    )

    errors = params.validation_errors(TODAY)

    assert errors[:2] == ["Origin city is required", "Destination city is required"]
    assert "Return date must be after departure date" in errors


def test_same_day_return_is_accepted() -> None:
    params = _params(tripType="roundtrip", returnDate="2026-11-20")
    params.validate(TODAY)


def test_fingerprint_ignores_case_and_airline_order() -> None:
    first = _params(preferredAirlines="AI,6E")
    second = SearchParams.from_request(
        {"from": "DEL", "to": "BOM", "departDate": "2026-11-20", "airlines": ["6e", "ai"]}
    )

    assert first.fingerprint() == second.fingerprint()
    assert first.fingerprint() != _params(children=1).fingerprint()


def test_payload_maps_trip_type_and_cabin() -> None:
    params = _params(tripType="roundtrip", returnDate="2026-11-25", cabinClass="business", children=1)

    payload = params.to_payload("client-1")

    assert payload["FareType"] == "RT"
    assert payload["Cabin"] == "B"
    assert payload["ADT"] == 1
    assert payload["CHD"] == 1
    assert payload["ClientID"] == "client-1"
    assert payload["Trips"][0] == {
        "From": "DEL",
        "To": "BOM",
        "ReturnDate": "2026-11-25",
        "OnwardDate": "2026-11-20",
        "TUI": "",
    }
