"""Flight offer models and normalization helpers."""

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
from .normalizer import (
    build_priced_offer,
    build_priced_offers,
    build_priced_segment,
    build_search_offer,
    build_search_offers,
)

__all__ = [
    "AirportRef",
    "Availability",
    "Connection",
    "FarePricing",
    "FlightEndpoint",
    "FlightOffer",
    "FlightSegment",
    "Inclusions",
    "Notice",
    "build_priced_offer",
    "build_priced_offers",
    "build_priced_segment",
    "build_search_offer",
    "build_search_offers",
]
