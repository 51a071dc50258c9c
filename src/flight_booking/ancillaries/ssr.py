"""Special service requests (meals, baggage, priority) for a priced itinerary."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping

from flight_booking.core.errors import ValidationError
from flight_booking.storage.result_cache import ResultCache
from flight_booking.supplier.client import SupplierClient
from flight_booking.supplier.credentials import CredentialCache
from flight_booking.supplier.schemas import SSRResponse

logger = logging.getLogger(__name__)

CATEGORIES = ("MEALS", "BAGGAGE", "SPORTS", "PRIORITY", "SEATS", "OTHER")

TYPE_CATEGORIES = {
    "1": "MEALS",
    "2": "BAGGAGE",
    "3": "SPORTS",
    "7": "PRIORITY",
    "8": "PRIORITY",
    "9": "SEATS",
}


def _charge(entry: Mapping[str, Any]) -> float:
    try:
        return float(entry.get("Charge") or 0)
    except (TypeError, ValueError):
        return 0.0


def extract_ssrs(response: SSRResponse) -> List[Dict[str, Any]]:
    """Flatten the first journey's segment SSRs, flagging the ones that carry a charge."""
    if not response.trips or not response.trips[0].journey:
        logger.debug("No segments found in SSR data")
        return []
    items = []
    for segment in response.trips[0].journey[0].segments:
        for entry in segment.ssr:
            items.append({**entry, "isPaid": _charge(entry) > 0})
    return items


def categorize_ssrs(ssrs: Iterable[Mapping[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    categories: Dict[str, List[Dict[str, Any]]] = {name: [] for name in CATEGORIES}
    for ssr in ssrs:
        if ssr.get("Type") is None:
            logger.warning("Skipping SSR without a type: %r", ssr)
            continue
        categories[TYPE_CATEGORIES.get(str(ssr["Type"]), "OTHER")].append(dict(ssr))
    return categories


class SSRService:
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

    async def get_flight_ssr(
        self,
        tui: str,
        flight_number: str,
        *,
        source: str = "LV",
        fare_type: str = "N",
    ) -> Dict[str, Any]:
        credentials = await self._credentials.get_credentials()
        payload = {
            "ClientID": credentials.client_id,
            "Source": source,
            "FareType": fare_type,
            "Trips": [{"Amount": 0, "Index": "", "OrderID": 1, "TUI": tui}],
        }
        free, paid = await asyncio.gather(
            self._client.ssr({**payload, "PaidSSR": False}, token=credentials.token),
            self._client.ssr({**payload, "PaidSSR": True}, token=credentials.token),
        )
        ssrs = extract_ssrs(free) + extract_ssrs(paid)
        logger.debug("Fetched %s SSRs for %s flight %s", len(ssrs), tui, flight_number)

        await self._cache.set(ResultCache.ssr_key(tui, flight_number), ssrs, self._cache_ttl)
        return {"flight_number": flight_number, "ssrs": categorize_ssrs(ssrs)}

    async def validate_selection(
        self,
        tui: str,
        flight_number: str,
        selections: Iterable[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Match each ``{code, id, amount}`` selection against the cached SSR list."""
        available = await self._cache.get(ResultCache.ssr_key(tui, flight_number))
        if not isinstance(available, list):
            raise ValidationError(["SSR session expired"])

        details = []
        for selected in selections:
            code = selected.get("code")
            match = next(
                (
                    ssr
                    for ssr in available
                    if ssr.get("Code") == code and str(ssr.get("ID")) == str(selected.get("id"))
                ),
                None,
            )
            if match is None:
                details.append({"ssr_code": code, "valid": False, "error": "SSR not found"})
                continue
            if match.get("isPaid") and not _amount_matches(selected.get("amount"), _charge(match)):
                details.append({"ssr_code": code, "valid": False, "error": "Invalid SSR amount"})
                continue
            details.append({"ssr_code": code, "valid": True})

        return {"valid": all(item["valid"] for item in details), "details": details}


def _amount_matches(selected: Any, charge: float) -> bool:
    try:
        return abs(float(selected) - charge) < 0.005
    except (TypeError, ValueError):
        return False
