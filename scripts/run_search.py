"""Entry point for manual supplier runs."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

from flight_booking.config.settings import Settings
from flight_booking.core.errors import FlightBookingError
from flight_booking.core.logging import configure_logging
from flight_booking.pricing.reconciler import PricingRequest
from flight_booking.search.params import SearchParams
from flight_booking.services import Services, open_services
from flight_booking.storage.json_writer import JsonStore


async def _search(services: Services, args: argparse.Namespace) -> dict[str, Any]:
    params = SearchParams.from_request(
        {
            "tripType": args.trip_type,
            "from": args.origin,
            "to": args.destination,
            "departDate": args.depart,
            "returnDate": args.return_date,
            "adults": args.adults,
            "children": args.children,
            "infants": args.infants,
            "cabinClass": args.cabin,
            "preferredAirlines": args.airlines,
            "directOnly": args.direct_only,
            "refundableOnly": args.refundable_only,
        }
    )
    outcome = await services.search.initiate_search(params)
    logging.info(
        "Fetched %s offers for %s-%s (cached=%s)",
        len(outcome.offers),
        params.origin,
        params.destination,
        outcome.from_cache,
    )
    return outcome.to_dict()


async def _price(services: Services, args: argparse.Namespace) -> dict[str, Any]:
    request = PricingRequest(
        amount=args.amount,
        offer_index=args.index,
        trip_type=args.trip_type,
        correlation_token=args.tui,
        order_id=args.order_id,
    )
    result = await services.pricing.get_live_price(request)
    if result.has_price_changed:
        logging.warning("Price changed for %s", result.transaction_unique_id)
    return result.to_dict()


async def _retrieve(services: Services, args: argparse.Namespace) -> dict[str, Any]:
    booking = await services.bookings.retrieve_booking(args.reference_type, args.reference_number)
    return booking.to_dict()


async def _seats(services: Services, args: argparse.Namespace) -> dict[str, Any]:
    return await services.seats.get_seat_layout(args.tui, args.order_id, args.amount)


async def _ssr(services: Services, args: argparse.Namespace) -> dict[str, Any]:
    return await services.ssr.get_flight_ssr(args.tui, args.flight_number)


COMMANDS = {
    "search": _search,
    "price": _price,
    "retrieve": _retrieve,
    "seats": _seats,
    "ssr": _ssr,
}


async def run(settings: Settings, args: argparse.Namespace, output: Optional[Path]) -> int:
    async with open_services(settings) as services:
        try:
            result = await COMMANDS[args.command](services, args)
        except FlightBookingError as exc:
            logging.error("%s failed: %s", args.command, exc.message)
            print(json.dumps(exc.to_dict(), indent=2))
            return 1

    if output:
        path = await JsonStore(output).write(result, kind=args.command)
        logging.info("Wrote %s result to %s", args.command, path)
    else:
        print(json.dumps(result, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run flight supplier operations")
    parser.add_argument("--output", type=Path, help="Directory for JSON snapshots instead of stdout")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Run an express search")
    search.add_argument("origin")
    search.add_argument("destination")
    search.add_argument("depart", help="Departure date (YYYY-MM-DD)")
    search.add_argument("--return-date", dest="return_date")
    search.add_argument("--trip-type", default="oneway", choices=["oneway", "roundtrip", "multicity"])
    search.add_argument("--adults", type=int, default=1)
    search.add_argument("--children", type=int, default=0)
    search.add_argument("--infants", type=int, default=0)
    search.add_argument("--cabin", default="economy")
    search.add_argument("--airlines", help="Comma separated carrier codes")
    search.add_argument("--direct-only", action="store_true")
    search.add_argument("--refundable-only", action="store_true")

    price = subparsers.add_parser("price", help="Lock and fetch the live price of an offer")
    price.add_argument("tui")
    price.add_argument("index")
    price.add_argument("amount")
    price.add_argument("--trip-type", default="ON")
    price.add_argument("--order-id", type=int, default=1)

    retrieve = subparsers.add_parser("retrieve", help="Retrieve a supplier booking")
    retrieve.add_argument("reference_number")
    retrieve.add_argument("--reference-type", default="T")

    seats = subparsers.add_parser("seats", help="Fetch the seat layout for a priced itinerary")
    seats.add_argument("tui")
    seats.add_argument("amount")
    seats.add_argument("--order-id", type=int, default=1)

    ssr = subparsers.add_parser("ssr", help="Fetch special service requests for a flight")
    ssr.add_argument("tui")
    ssr.add_argument("flight_number")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    settings = Settings()

    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    raise SystemExit(asyncio.run(run(settings, args, args.output)))


if __name__ == "__main__":
    main()
