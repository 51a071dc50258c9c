"""Async client for the Benzy flight supplier API."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Type

import httpx

from flight_booking.core.errors import (
    ProtocolError,
    UpstreamRequestError,
    UpstreamTimeoutError,
)
from flight_booking.supplier.schemas import (
    SUCCESS_CODE,
    ItineraryResponse,
    ModelT,
    PricerResponse,
    RetrieveBookingResponse,
    SearchPollResponse,
    SearchSubmitResponse,
    SeatLayoutResponse,
    SignatureResponse,
    SmartPricerResponse,
    SSRResponse,
    StartPayResponse,
    parse_response,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "User-Agent": "flight-booking/0.1.0",
}


def clean_token(value: Optional[str]) -> str:
    """Strip escaped quotes and stray backslashes the supplier leaves on tokens."""
    if not value:
        return ""
    cleaned = str(value).replace('\\"', '"').replace("\\", "")
    if cleaned.startswith('"'):
        cleaned = cleaned[1:]
    if cleaned.endswith('"'):
        cleaned = cleaned[:-1]
    return cleaned.strip()


class SupplierClient:
    """Thin wrapper over one shared ``httpx.AsyncClient``.

    Every call returns the decoded JSON body once the transport succeeded and the
    supplier ``Code`` is acceptable. The named helpers validate the body against
    the matching schema so callers never handle raw dictionaries.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        utils_api_url: str,
        flights_api_url: str,
        request_timeout: float = 30.0,
    ) -> None:
        self._http = http
        self.utils_api_url = utils_api_url.rstrip("/")
        self.flights_api_url = flights_api_url.rstrip("/")
        self.request_timeout = request_timeout

    async def post(
        self,
        operation: str,
        url: str,
        payload: dict[str, Any],
        *,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        accept_codes: Optional[Iterable[str]] = (SUCCESS_CODE,),
        correlation_token: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = dict(DEFAULT_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        effective_timeout = timeout if timeout is not None else self.request_timeout

        logger.debug("Supplier %s -> %s (timeout %.1fs)", operation, url, effective_timeout)
        try:
            response = await self._http.post(url, json=payload, headers=headers, timeout=effective_timeout)
        except httpx.TimeoutException as exc:
            logger.warning("Supplier %s timed out after %.1fs (tui=%s)", operation, effective_timeout, correlation_token)
            raise UpstreamTimeoutError(
                "Supplier request timed out",
                operation=operation,
                correlation_token=correlation_token,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Supplier %s transport failure: %s (tui=%s)", operation, exc, correlation_token)
            raise UpstreamRequestError(
                "Supplier request failed",
                operation=operation,
                correlation_token=correlation_token,
            ) from exc

        if response.status_code >= 400:
            logger.warning(
                "Supplier %s returned HTTP %s: %s (tui=%s)",
                operation,
                response.status_code,
                response.text[:512],
                correlation_token,
            )
            raise UpstreamRequestError(
                f"Supplier request failed with HTTP {response.status_code}",
                operation=operation,
                code=str(response.status_code),
                correlation_token=correlation_token,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(
                "Supplier response is not valid JSON",
                operation=operation,
                correlation_token=correlation_token,
            ) from exc
        if not isinstance(body, dict):
            raise ProtocolError(
                "Supplier response is not a JSON object",
                operation=operation,
                correlation_token=correlation_token,
            )

        if accept_codes is not None:
            code = body.get("Code")
            code = str(code) if code is not None else None
            if code not in set(accept_codes):
                message = _first_message(body) or "API request failed"
                logger.warning("Supplier %s returned code %s: %s (tui=%s)", operation, code, message, correlation_token)
                raise UpstreamRequestError(
                    message,
                    operation=operation,
                    code=code,
                    correlation_token=correlation_token,
                )
        return body

    async def _call(
        self,
        model: Type[ModelT],
        operation: str,
        url: str,
        payload: dict[str, Any],
        **kwargs: Any,
    ) -> ModelT:
        body = await self.post(operation, url, payload, **kwargs)
        return parse_response(
            model,
            body,
            operation=operation,
            correlation_token=kwargs.get("correlation_token"),
        )

    async def signature(self, payload: dict[str, Any], *, timeout: Optional[float] = None) -> SignatureResponse:
        return await self._call(
            SignatureResponse,
            "signature",
            f"{self.utils_api_url}/Utils/Signature",
            payload,
            timeout=timeout,
        )

    async def express_search(
        self, payload: dict[str, Any], *, token: str, timeout: Optional[float] = None
    ) -> SearchSubmitResponse:
        return await self._call(
            SearchSubmitResponse,
            "express_search",
            f"{self.flights_api_url}/flights/ExpressSearch",
            payload,
            token=token,
            timeout=timeout,
        )

    async def get_express_search(
        self, payload: dict[str, Any], *, token: str, timeout: Optional[float] = None
    ) -> SearchPollResponse:
        return await self._call(
            SearchPollResponse,
            "get_express_search",
            f"{self.flights_api_url}/flights/GetExpSearch",
            payload,
            token=token,
            timeout=timeout,
            correlation_token=payload.get("TUI"),
        )

    async def smart_pricer(self, payload: dict[str, Any], *, token: str) -> SmartPricerResponse:
        # Codes are interpreted by the pricing layer; 1500 is not a failure there.
        return await self._call(
            SmartPricerResponse,
            "smart_pricer",
            f"{self.flights_api_url}/Flights/SmartPricer",
            payload,
            token=token,
            accept_codes=None,
            correlation_token=_first_trip_tui(payload),
        )

    async def get_pricer(self, payload: dict[str, Any], *, token: str) -> PricerResponse:
        return await self._call(
            PricerResponse,
            "get_pricer",
            f"{self.flights_api_url}/Flights/GetSPricer",
            payload,
            token=token,
            accept_codes=None,
            correlation_token=payload.get("TUI"),
        )

    async def create_itinerary(self, payload: dict[str, Any], *, token: str) -> ItineraryResponse:
        return await self._call(
            ItineraryResponse,
            "create_itinerary",
            f"{self.flights_api_url}/Flights/CreateItinerary",
            payload,
            token=token,
            correlation_token=payload.get("TUI"),
        )

    async def start_pay(self, payload: dict[str, Any], *, token: str) -> StartPayResponse:
        return await self._call(
            StartPayResponse,
            "start_pay",
            f"{self.flights_api_url}/Payment/StartPay",
            payload,
            token=token,
            correlation_token=payload.get("TUI"),
        )

    async def retrieve_booking(self, payload: dict[str, Any], *, token: str) -> RetrieveBookingResponse:
        return await self._call(
            RetrieveBookingResponse,
            "retrieve_booking",
            f"{self.flights_api_url}/Utils/RetrieveBooking",
            payload,
            token=token,
        )

    async def seat_layout(self, payload: dict[str, Any], *, token: str) -> SeatLayoutResponse:
        return await self._call(
            SeatLayoutResponse,
            "seat_layout",
            f"{self.flights_api_url}/Flights/SeatLayout",
            payload,
            token=token,
            correlation_token=_first_trip_tui(payload),
        )

    async def ssr(self, payload: dict[str, Any], *, token: str) -> SSRResponse:
        return await self._call(
            SSRResponse,
            "ssr",
            f"{self.flights_api_url}/Flights/SSR",
            payload,
            token=token,
            correlation_token=_first_trip_tui(payload),
        )


def _first_message(body: dict[str, Any]) -> Optional[str]:
    messages = body.get("Msg")
    if isinstance(messages, list) and messages:
        return str(messages[0])
    if isinstance(messages, str) and messages:
        return messages
    return None


def _first_trip_tui(payload: dict[str, Any]) -> Optional[str]:
    trips = payload.get("Trips") or []
    if trips and isinstance(trips[0], dict):
        return trips[0].get("TUI")
    return None
