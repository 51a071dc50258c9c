"""Utilities to transform supplier journey payloads into :class:`FlightOffer` records."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from flight_booking.supplier.schemas import (
    ExpressJourney,
    PricedJourney,
    PricedSegment,
    PricedTrip,
    SearchPollResponse,
    SupplierNotice,
)

from .models import (
    AirportRef,
    Availability,
    Connection,
    FarePricing,
    FlightEndpoint,
    FlightOffer,
    FlightSegment,
    Inclusions,
    Notice,
)


def split_label(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split the supplier's ``"Name|Location"`` labels."""
    if not value:
        return None, None
    name, _, location = value.partition("|")
    return (name.strip() or None), (location.strip() or None)


def _strip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _airport(code: Optional[str], label: Optional[str]) -> AirportRef:
    name, location = split_label(label)
    return AirportRef(code=code, name=name, location=location)


def _is_refundable(flag: Optional[str]) -> Optional[bool]:
    if flag is None:
        return None
    return flag.strip().upper() == "Y"


def _split_amenities(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _sum_amounts(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return round(sum(present), 2)


def build_notices(entries: Iterable[SupplierNotice]) -> List[Notice]:
    return [
        Notice(message=entry.notice, link=entry.link, type=entry.notice_type)
        for entry in entries
        if entry.notice
    ]


def build_search_offer(
    journey: ExpressJourney,
    *,
    currency: Optional[str],
    trip_index: int = 0,
    global_notices: Sequence[Notice] = (),
) -> FlightOffer:
    airline_name, _ = split_label(journey.airline_name)
    segment = FlightSegment(
        flight_number=_strip(journey.flight_no),
        airline_code=journey.validating_carrier,
        airline_name=airline_name,
        marketing_carrier=journey.marketing_carrier,
        operating_carrier=journey.operating_carrier,
        departure=FlightEndpoint(
            airport=_airport(journey.origin, journey.origin_name),
            terminal=journey.departure_terminal,
            scheduled_time=journey.departure_time,
        ),
        arrival=FlightEndpoint(
            airport=_airport(journey.destination, journey.destination_name),
            terminal=journey.arrival_terminal,
            scheduled_time=journey.arrival_time,
        ),
        duration=_strip(journey.duration),
        aircraft=journey.aircraft,
        booking_class=journey.rbd,
        fare_class=journey.fare_class,
        fare_basis_code=journey.fare_basis_code,
        cabin=journey.cabin,
        refundable=_is_refundable(journey.refundable),
        stops=journey.stops,
        connections=[
            Connection(
                airport=_airport(connection.airport, connection.airport_name),
                duration=_strip(connection.duration),
                type=connection.type,
            )
            for connection in journey.connections
        ],
    )

    notices: List[Notice] = []
    if journey.notice:
        notices.append(Notice(message=journey.notice, link=journey.notice_link, type=journey.notice_type))
    notices.extend(global_notices)

    inclusions = journey.inclusions
    return FlightOffer(
        index=journey.index,
        trip_index=trip_index,
        provider=journey.provider,
        airline_code=journey.validating_carrier,
        airline_name=airline_name,
        duration=segment.duration,
        stops=journey.stops,
        segments=[segment],
        pricing=FarePricing(
            currency=currency,
            gross=journey.gross_fare,
            net=journey.net_fare,
            commission=journey.total_commission,
            transaction_fee=journey.total_transaction_fee,
            vat_on_fee=journey.total_vat_on_fee,
            wp_net=journey.wp_net_fare,
            fare_basis_code=journey.fare_basis_code,
            fare_type=journey.fare_type,
            trend_fare=journey.trend_fare,
            promo=journey.promo,
        ),
        availability=Availability(
            seats=journey.seats,
            refundable=bool(_is_refundable(journey.refundable)),
            hold=journey.hold,
            hold_info=journey.hold_info,
        ),
        inclusions=Inclusions(
            baggage=inclusions.baggage if inclusions else None,
            meals=inclusions.meals if inclusions else None,
            piece_description=inclusions.piece_description if inclusions else None,
        ),
        amenities=_split_amenities(journey.amenities),
        notices=notices,
        journey_key=journey.journey_key,
        return_identifier=journey.return_identifier,
        group_count=journey.group_count,
        meta={
            "gfl": journey.gfl,
            "recommended": journey.recommended,
            "gds_priority": journey.gds_priority,
            "is_bus_station": journey.is_bus_station,
            "channel_code": journey.channel_code,
        },
    )


def build_search_offers(response: SearchPollResponse) -> List[FlightOffer]:
    """Flatten a completed poll into offers, keeping the supplier's order."""
    global_notices = build_notices(response.notices)
    offers: List[FlightOffer] = []
    for trip_index, trip in enumerate(response.trips):
        for journey in trip.journey:
            offers.append(
                build_search_offer(
                    journey,
                    currency=response.currency_code,
                    trip_index=trip_index,
                    global_notices=global_notices,
                )
            )
    return offers


def build_priced_segment(segment: PricedSegment) -> FlightSegment:
    flight = segment.flight
    airline_name, _ = split_label(flight.airline)
    return FlightSegment(
        flight_number=_strip(flight.flight_no),
        airline_code=flight.carrier_code,
        airline_name=airline_name,
        marketing_carrier=flight.marketing_carrier,
        operating_carrier=flight.operating_carrier,
        departure=FlightEndpoint(
            airport=_airport(flight.departure_code, flight.departure_name),
            terminal=flight.departure_terminal,
            scheduled_time=flight.departure_time,
        ),
        arrival=FlightEndpoint(
            airport=_airport(flight.arrival_code, flight.arrival_name),
            terminal=flight.arrival_terminal,
            scheduled_time=flight.arrival_time,
        ),
        duration=_strip(flight.duration),
        aircraft=flight.aircraft,
        equipment_type=flight.equipment_type,
        fare_basis_code=flight.fare_basis_code,
        cabin=flight.cabin,
        refundable=_is_refundable(flight.refundable),
        fuid=flight.fuid,
    )


def build_priced_offer(
    journey: PricedJourney,
    *,
    currency: Optional[str],
    trip_index: int = 0,
    baggage: Optional[str] = None,
) -> FlightOffer:
    segments = [build_priced_segment(segment) for segment in journey.segments]
    fares = [segment.fares for segment in journey.segments if segment.fares is not None]
    first = segments[0] if segments else None
    refundable = all(segment.refundable for segment in segments) if segments else False
    return FlightOffer(
        index=None,
        trip_index=trip_index,
        provider=journey.provider,
        airline_code=first.airline_code if first else None,
        airline_name=first.airline_name if first else None,
        duration=_strip(journey.duration),
        stops=journey.stops,
        segments=segments,
        pricing=FarePricing(
            currency=currency,
            gross=_sum_amounts(fare.gross_fare for fare in fares),
            net=_sum_amounts(fare.net_fare for fare in fares),
            base_fare=_sum_amounts(fare.total_base_fare for fare in fares),
            taxes=_sum_amounts(fare.total_tax for fare in fares),
            fare_basis_code=first.fare_basis_code if first else None,
        ),
        availability=Availability(refundable=bool(refundable)),
        inclusions=Inclusions(baggage=baggage),
    )


def build_priced_offers(
    trips: Sequence[PricedTrip],
    currency: Optional[str],
    *,
    baggage: Optional[str] = None,
) -> List[FlightOffer]:
    """Flatten Trip -> Journey -> Segment, keeping every leg of multi-segment journeys."""
    offers: List[FlightOffer] = []
    for trip_index, trip in enumerate(trips):
        for journey in trip.journey:
            offers.append(
                build_priced_offer(journey, currency=currency, trip_index=trip_index, baggage=baggage)
            )
    return offers
