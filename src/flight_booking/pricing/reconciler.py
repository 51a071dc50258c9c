"""Two-step live pricing: lock the quote, then fetch the authoritative price."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from flight_booking.core.errors import PricingError, ProtocolError, ValidationError
from flight_booking.flights.models import FlightOffer
from flight_booking.flights.normalizer import build_priced_offers
from flight_booking.storage.result_cache import ResultCache
from flight_booking.supplier.client import SupplierClient, clean_token
from flight_booking.supplier.credentials import CredentialCache
from flight_booking.supplier.schemas import PRICE_CHANGED_CODE, SUCCESS_CODE, PricerResponse, SupplierEnvelope

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "INR"

# The supplier writes "Previous Amt:-100.00 | New Amt:-120.00"; the dash is a separator.
_PREVIOUS_AMOUNT = re.compile(r"Previous\s*Amt\s*:\s*-?\s*([\d,]+(?:\.\d+)?)", re.IGNORECASE)
_NEW_AMOUNT = re.compile(r"New\s*Amt\s*:\s*-?\s*([\d,]+(?:\.\d+)?)", re.IGNORECASE)


@dataclass(frozen=True)
class PriceChange:
    occurred: bool
    previous_amount: Optional[float] = None
    new_amount: Optional[float] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "occurred": self.occurred,
            "previous_amount": self.previous_amount,
            "new_amount": self.new_amount,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PriceChange":
        return cls(
            occurred=bool(data.get("occurred")),
            previous_amount=data.get("previous_amount"),
            new_amount=data.get("new_amount"),
            message=data.get("message"),
        )


def _amount(match: Optional[re.Match[str]]) -> Optional[float]:
    if match is None:
        return None
    return float(match.group(1).replace(",", ""))


def parse_price_change(message: Optional[str]) -> PriceChange:
    """Extract previous/new amounts from a price-change message.

    A message that does not match still reports a change; only the amounts are
    left empty.
    """
    text = message or ""
    previous = _amount(_PREVIOUS_AMOUNT.search(text))
    new = _amount(_NEW_AMOUNT.search(text))
    if previous is None or new is None:
        logger.warning("Unrecognised price change message: %r", message)
    return PriceChange(occurred=True, previous_amount=previous, new_amount=new, message=message)


@dataclass(frozen=True)
class PricingRequest:
    amount: Any
    offer_index: Any
    trip_type: str = "ON"
    correlation_token: Optional[str] = None
    order_id: int = 1

    @classmethod
    def from_request(cls, data: Mapping[str, Any]) -> "PricingRequest":
        return cls(
            amount=data.get("amount"),
            offer_index=data.get("index"),
            trip_type=data.get("tripType") or "ON",
            correlation_token=data.get("tui") or data.get("TUI"),
            order_id=int(data.get("orderId") or 1),
        )

    def validate(self) -> float:
        if not self.amount or not self.offer_index:
            raise ValidationError(["Amount and index are required"])
        try:
            return float(self.amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError(["Amount must be numeric"]) from exc


@dataclass
class PricingResult:
    transaction_unique_id: str
    offers: List[FlightOffer]
    net_amount: Optional[float]
    gross_amount: Optional[float]
    currency: str = DEFAULT_CURRENCY
    price_change: Optional[PriceChange] = None
    insurance_premium: Optional[float] = None
    route: Dict[str, Any] = field(default_factory=dict)
    passengers: Dict[str, Any] = field(default_factory=dict)
    rules: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_price_changed(self) -> bool:
        return bool(self.price_change and self.price_change.occurred)

    def to_dict(self) -> dict[str, object]:
        return {
            "tui": self.transaction_unique_id,
            "offers": FlightOffer.from_iterable(self.offers),
            "net_amount": self.net_amount,
            "gross_amount": self.gross_amount,
            "currency": self.currency,
            "price_change": self.price_change.to_dict() if self.price_change else None,
            "has_price_changed": self.has_price_changed,
            "insurance_premium": self.insurance_premium,
            "route": dict(self.route),
            "passengers": dict(self.passengers),
            "rules": list(self.rules),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricingResult":
        change = data.get("price_change")
        return cls(
            transaction_unique_id=data["tui"],
            offers=[FlightOffer.from_dict(item) for item in data.get("offers") or []],
            net_amount=data.get("net_amount"),
            gross_amount=data.get("gross_amount"),
            currency=data.get("currency") or DEFAULT_CURRENCY,
            price_change=PriceChange.from_dict(change) if change else None,
            insurance_premium=data.get("insurance_premium"),
            route=dict(data.get("route") or {}),
            passengers=dict(data.get("passengers") or {}),
            rules=list(data.get("rules") or []),
        )


def _format_rules(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    formatted = []
    for rule in rules:
        formatted.append(
            {
                "route": rule.get("OrginDestination"),
                "provider": rule.get("Provider"),
                "fees": [
                    {
                        "type": entry.get("Head"),
                        "details": [
                            {
                                "description": info.get("Description"),
                                "adult_amount": info.get("AdultAmount"),
                                "child_amount": info.get("ChildAmount"),
                                "infant_amount": info.get("InfantAmount"),
                            }
                            for info in entry.get("Info") or []
                        ],
                    }
                    for entry in rule.get("Rule") or []
                ],
            }
        )
    return formatted


class PricingReconciler:
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

    async def get_live_price(self, request: PricingRequest) -> PricingResult:
        amount = request.validate()
        credentials = await self._credentials.get_credentials()

        locked = await self._client.smart_pricer(
            {
                "ClientID": credentials.client_id,
                "Trips": [
                    {
                        "Amount": amount,
                        "Index": request.offer_index,
                        "OrderID": request.order_id,
                        "TUI": request.correlation_token,
                    }
                ],
                "Mode": "SS",
                "Options": "A",
                "Source": "CF",
                "TripType": request.trip_type,
            },
            token=credentials.token,
        )
        lock_change = self._check_code(locked, operation="smart_pricer", tui=request.correlation_token)
        tui = clean_token(locked.tui)
        if not tui:
            raise ProtocolError(
                "SmartPricer response missing TUI",
                operation="smart_pricer",
                code=locked.code,
                correlation_token=request.correlation_token,
            )

        priced = await self._client.get_pricer(
            {"TUI": tui, "ClientID": credentials.client_id},
            token=credentials.token,
        )
        fetch_change = self._check_code(priced, operation="get_pricer", tui=tui)

        result = self._build_result(priced, tui, fetch_change or lock_change)
        if result.has_price_changed:
            change = result.price_change
            logger.info(
                "Price changed for %s: %s -> %s",
                tui,
                change.previous_amount if change else None,
                change.new_amount if change else None,
            )
        await self._cache.set(ResultCache.pricing_key(result.transaction_unique_id), result.to_dict(), self._cache_ttl)
        return result

    async def get_cached_pricing(self, tui: str) -> Optional[PricingResult]:
        cached = await self._cache.get(ResultCache.pricing_key(tui))
        if not isinstance(cached, dict):
            return None
        try:
            return PricingResult.from_dict(cached)
        except (KeyError, TypeError, AttributeError):
            logger.debug("Ignoring malformed cached pricing for %s", tui)
            return None

    @staticmethod
    def _check_code(response: SupplierEnvelope, *, operation: str, tui: Optional[str]) -> Optional[PriceChange]:
        if response.code == SUCCESS_CODE:
            return None
        if response.code == PRICE_CHANGED_CODE:
            return parse_price_change(response.message)
        logger.error("Pricing %s failed with code %s: %s (tui=%s)", operation, response.code, response.message, tui)
        raise PricingError(
            response.message or "Pricing request failed",
            operation=operation,
            code=response.code,
            correlation_token=tui,
        )

    @staticmethod
    def _build_result(response: PricerResponse, tui: str, change: Optional[PriceChange]) -> PricingResult:
        currency = response.currency_code or DEFAULT_CURRENCY
        return PricingResult(
            transaction_unique_id=clean_token(response.tui) or tui,
            offers=build_priced_offers(response.trips, currency, baggage=response.baggage_description()),
            net_amount=response.net_amount,
            gross_amount=response.gross_amount,
            currency=currency,
            price_change=change,
            insurance_premium=response.insurance_premium,
            route={
                "from": response.origin,
                "to": response.destination,
                "from_airport": response.origin_name,
                "to_airport": response.destination_name,
                "onward_date": response.onward_date,
                "return_date": response.return_date,
            },
            passengers={
                "adults": response.adults,
                "children": response.children,
                "infants": response.infants,
            },
            rules=_format_rules(response.rules),
        )
