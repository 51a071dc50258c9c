from __future__ import annotations

import inspect
import json
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

from flight_booking.supplier.client import SupplierClient
from flight_booking.supplier.credentials import CredentialCache

UTILS_URL = "https://utils.supplier.test"
FLIGHTS_URL = "https://flights.supplier.test"

SIGNATURE_PATH = "/Utils/Signature"
SEARCH_PATH = "/flights/ExpressSearch"
POLL_PATH = "/flights/GetExpSearch"
SMART_PRICER_PATH = "/Flights/SmartPricer"
PRICER_PATH = "/Flights/GetSPricer"
ITINERARY_PATH = "/Flights/CreateItinerary"
START_PAY_PATH = "/Payment/StartPay"
RETRIEVE_PATH = "/Utils/RetrieveBooking"
SEAT_LAYOUT_PATH = "/Flights/SeatLayout"
SSR_PATH = "/Flights/SSR"

SIGNATURE_OK = {
    "Code": "200",
    "Msg": ["Success"],
    "Token": '"token-abc"',
    "ClientID": "client-1",
    "TUI": "sig-tui",
}


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances ``clock`` instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class SupplierStub:
    """Route table for ``httpx.MockTransport`` keyed by URL path.

    Each route holds a queue of replies; the last reply repeats once the queue
    is drained. A reply may be a JSON body, an ``httpx.Response``, or a
    (possibly async) callable taking the request.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, List[Any]] = {}
        self.calls: List[Tuple[str, Dict[str, Any], httpx.Request]] = []

    def on(self, path: str, *replies: Any) -> "SupplierStub":
        self.routes[path] = list(replies)
        return self

    def count(self, path: str) -> int:
        return sum(1 for call_path, _, _ in self.calls if call_path == path)

    def payloads(self, path: str) -> List[Dict[str, Any]]:
        return [payload for call_path, payload, _ in self.calls if call_path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        payload = json.loads(request.content) if request.content else {}
        self.calls.append((path, payload, request))
        queue = self.routes.get(path)
        if not queue:
            return httpx.Response(404, json={"Code": "404", "Msg": [f"No route for {path}"]})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def build_client(stub: SupplierStub) -> SupplierClient:
    http = httpx.AsyncClient(transport=stub.transport())
    return SupplierClient(http, utils_api_url=UTILS_URL, flights_api_url=FLIGHTS_URL, request_timeout=5)


def build_credentials(client: SupplierClient, clock: Callable[[], float] | None = None) -> CredentialCache:
    kwargs: Dict[str, Any] = {"ttl": 3600}
    if clock is not None:
        kwargs["clock"] = clock
    return CredentialCache(client, lambda: {"ClientID": "client-1", "Password": "secret"}, **kwargs)


@pytest.fixture
def supplier() -> SupplierStub:
    return SupplierStub().on(SIGNATURE_PATH, SIGNATURE_OK)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
