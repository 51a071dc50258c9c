from __future__ import annotations

from flight_booking.flights import FlightOffer, build_priced_offers, build_search_offers
from flight_booking.supplier.schemas import PricerResponse, SearchPollResponse


def _segment(flight_no: str, origin: str, destination: str, *, gross: float, tax: float) -> dict:
    return {
        "Flight": {
            "FlightNo": flight_no,
            "Airline": "Air India|AI|AI",
            "DepartureCode": origin,
            "DepAirportName": f"{origin} Airport |{origin} City",
            "DepartureTime": "2026-11-20T06:00:00",
            "ArrivalCode": destination,
            "ArrAirportName": f"{destination} Airport |{destination} City",
            "ArrivalTime": "2026-11-20T09:00:00",
            "Cabin": "E",
            "Refundable": "Y",
            "FUID": flight_no,
        },
        "Fares": {"GrossFare": gross, "NetFare": gross - 50, "TotalBaseFare": gross - tax, "TotalTax": tax},
    }


def test_search_offers_keep_supplier_order_and_trip_index() -> None:
    response = SearchPollResponse.model_validate(
        {
            "Code": "200",
            "Completed": "true",
            "CurrencyCode": "INR",
            "Trips": [
                {
                    "Journey": [
                        {
                            "From": "DEL",
                            "To": "BOM",
                            "DepartureTime": "2026-11-20T06:00:00",
                            "ArrivalTime": "2026-11-20T08:10:00",
                            "VAC": "AI",
                            "FlightNo": " 805 ",
                            "AirlineName": "Air India|AI|AI",
                            "GrossFare": "",
                            "NetFare": 4800,
                            "Refundable": "N",
                            "Stops": "1",
                            "Connections": [{"Airport": "JAI", "ArrAirportName": "Jaipur |Jaipur", "Duration": "1h"}],
                            "Amenities": "Meal, WiFi",
                            "Notice": "Terminal change",
                        }
                    ]
                },
                {
                    "Journey": [
                        {
                            "From": "BOM",
                            "To": "DEL",
                            "DepartureTime": "2026-11-25T10:00:00",
                            "ArrivalTime": "2026-11-25T12:05:00",
                            "VAC": "6E",
                        }
                    ]
                },
            ],
        }
    )

    offers = build_search_offers(response)

    assert response.is_complete
    assert [(offer.trip_index, offer.origin) for offer in offers] == [(0, "DEL"), (1, "BOM")]
    onward = offers[0]
    assert onward.flight_numbers == ["805"]
    assert onward.airline_name == "Air India"
    assert onward.pricing.gross is None
    assert onward.pricing.net == 4800
    assert onward.availability.refundable is False
    assert onward.stops == 1
    assert onward.segments[0].connections[0].airport.location == "Jaipur"
    assert onward.amenities == ["Meal", "WiFi"]
    assert onward.notices[0].message == "Terminal change"
    assert offers[1].pricing.currency == "INR"


def test_priced_offers_keep_every_segment_and_sum_fares() -> None:
    response = PricerResponse.model_validate(
        {
            "Code": "200",
            "TUI": "price-tui",
            "NetAmount": 10950,
            "GrossAmount": 11200,
            "SSR": [{"Code": "BAG", "Description": "15 Kg"}],
            "Trips": [
                {
                    "Journey": [
                        {
                            "Provider": "AI",
                            "Stops": 1,
                            "Segments": [
                                _segment("AI 805", "DEL", "JAI", gross=5000, tax=700),
                                _segment("AI 806", "JAI", "BOM", gross=6200, tax=800),
                            ],
                        }
                    ]
                }
            ],
        }
    )

    offers = build_priced_offers(response.trips, "INR", baggage=response.baggage_description())

    assert len(offers) == 1
    offer = offers[0]
    assert offer.flight_numbers == ["AI 805", "AI 806"]
    assert (offer.origin, offer.destination) == ("DEL", "BOM")
    assert offer.airline_code == "AI"
    assert offer.pricing.gross == 11200
    assert offer.pricing.taxes == 1500
    assert offer.pricing.base_fare == 9700
    assert offer.inclusions.baggage == "15 Kg"
    assert offer.availability.refundable is True


def test_offer_survives_dict_round_trip() -> None:
    response = PricerResponse.model_validate(
        {"Code": "200", "Trips": [{"Journey": [{"Segments": [_segment("AI 1", "DEL", "BOM", gross=100, tax=10)]}]}]}
    )
    offer = build_priced_offers(response.trips, "INR")[0]

    restored = FlightOffer.from_dict(offer.to_dict())

    assert restored == offer
