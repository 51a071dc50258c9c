from __future__ import annotations

import asyncio
from datetime import date

import httpx
import pytest

from conftest import (
    POLL_PATH,
    SEARCH_PATH,
    SIGNATURE_PATH,
    FakeClock,
    FakeSleep,
    SupplierStub,
    build_client,
    build_credentials,
)
from flight_booking.core.errors import (
    ProtocolError,
    SearchTimeoutError,
    UpstreamRequestError,
    ValidationError,
)
from flight_booking.search.orchestrator import (
    PollingPolicy,
    PollState,
    SearchOrchestrator,
    SearchSession,
    SessionStatus,
)
from flight_booking.search.params import SearchParams
from flight_booking.storage.result_cache import MemoryCacheBackend, ResultCache

JOURNEY = {
    "From": "DEL",
    "To": "BOM",
    "FromName": "Indira Gandhi Intl |New Delhi",
    "ToName": "Chhatrapati Shivaji |Mumbai",
    "DepartureTime": "2026-11-20T06:00:00",
    "ArrivalTime": "2026-11-20T08:10:00",
    "VAC": "6E",
    "FlightNo": "2001",
    "AirlineName": "IndiGo|6E|6E",
    "Provider": "6E",
    "GrossFare": 5234.0,
    "NetFare": 5100.0,
    "Index": "6E|1|ON",
    "Refundable": "Y",
    "Seats": 9,
    "Stops": 0,
    "Duration": "02h 10m ",
}

INCOMPLETE = {"Code": "200", "Completed": False, "Trips": []}
COMPLETE = {
    "Code": "200",
    "Completed": True,
    "CurrencyCode": "INR",
    "Trips": [{"Journey": [JOURNEY, {**JOURNEY, "FlightNo": "2002", "Index": "6E|2|ON"}]}],
    "Notices": [{"Notice": "Carry a valid photo ID", "NoticeType": "INFO"}],
}

POLICY = PollingPolicy(
    deadline=5.0,
    initial_interval=1.0,
    max_interval=5.0,
    backoff_factor=1.5,
    error_backoff_factor=2.0,
    max_error_attempts=3,
    poll_timeout=8.0,
    submit_timeout=10.0,
)


def _params(**overrides) -> SearchParams:
    body = {"from": "DEL", "to": "BOM", "departDate": "2026-11-20", "adults": 1}
    body.update(overrides)
    return SearchParams.from_request(body)


def _orchestrator(
    stub: SupplierStub,
    clock: FakeClock,
    sleep: FakeSleep,
    cache: ResultCache | None = None,
    policy: PollingPolicy = POLICY,
) -> SearchOrchestrator:
    client = build_client(stub)
    return SearchOrchestrator(
        client,
        build_credentials(client),
        cache or ResultCache(MemoryCacheBackend()),
        policy=policy,
        clock=clock,
        sleep=sleep,
        today=lambda: date(2026, 11, 1),
    )


@pytest.fixture
def search_stub(supplier: SupplierStub) -> SupplierStub:
    return supplier.on(SEARCH_PATH, {"Code": "200", "TUI": '\\"search-tui\\"'})


@pytest.mark.asyncio
async def test_invalid_params_never_reach_the_supplier(search_stub: SupplierStub, clock: FakeClock) -> None:
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock))

    with pytest.raises(ValidationError) as excinfo:
        await orchestrator.initiate_search(_params(adults=1, infants=2))

    assert excinfo.value.errors == ["Number of infants cannot exceed number of adults"]
    assert search_stub.calls == []


@pytest.mark.asyncio
async def test_search_polls_until_complete_and_normalises(search_stub: SupplierStub, clock: FakeClock) -> None:
    search_stub.on(POLL_PATH, INCOMPLETE, COMPLETE)
    sleep = FakeSleep(clock)
    orchestrator = _orchestrator(search_stub, clock, sleep)

    outcome = await orchestrator.initiate_search(_params())

    assert outcome.session_token == "search-tui"
    assert outcome.polls == 2
    assert outcome.from_cache is False
    assert sleep.calls == [1.5]
    assert [offer.flight_numbers for offer in outcome.offers] == [["2001"], ["2002"]]
    first = outcome.offers[0]
    assert first.origin == "DEL"
    assert first.segments[0].departure.airport.location == "New Delhi"
    assert first.pricing.currency == "INR"
    assert first.notices[0].message == "Carry a valid photo ID"
    assert search_stub.payloads(POLL_PATH)[0] == {"ClientID": "client-1", "TUI": "search-tui"}
    request = search_stub.calls[-1][2]
    assert request.headers["Authorization"] == "Bearer token-abc"


@pytest.mark.asyncio
async def test_search_times_out_without_polling_past_deadline(search_stub: SupplierStub, clock: FakeClock) -> None:
    poll_times: list[float] = []

    def _incomplete(_request: httpx.Request) -> dict:
        poll_times.append(clock())
        return INCOMPLETE

    search_stub.on(POLL_PATH, _incomplete)
    sleep = FakeSleep(clock)
    orchestrator = _orchestrator(search_stub, clock, sleep)

    with pytest.raises(SearchTimeoutError) as excinfo:
        await orchestrator.initiate_search(_params())

    assert excinfo.value.message == "Search timeout - exceeded time limit"
    assert excinfo.value.polls == 3
    assert poll_times == [0.0, 1.5, 3.75]
    assert sleep.calls == [1.5, 2.25, 1.25]
    assert clock() == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_poll_errors_back_off_then_exhaust(search_stub: SupplierStub, clock: FakeClock) -> None:
    search_stub.on(POLL_PATH, httpx.Response(503, text="unavailable"))
    sleep = FakeSleep(clock)
    policy = PollingPolicy(deadline=30.0, initial_interval=1.0, max_interval=5.0, max_error_attempts=3)
    orchestrator = _orchestrator(search_stub, clock, sleep, policy=policy)

    with pytest.raises(UpstreamRequestError):
        await orchestrator.initiate_search(_params())

    assert search_stub.count(POLL_PATH) == 3
    assert sleep.calls == [2.0, 4.0]


@pytest.mark.asyncio
async def test_poll_error_then_success_recovers(search_stub: SupplierStub, clock: FakeClock) -> None:
    search_stub.on(POLL_PATH, {"Code": "500", "Msg": ["Try again"]}, COMPLETE)
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock))

    outcome = await orchestrator.initiate_search(_params())

    assert outcome.polls == 2
    assert len(outcome.offers) == 2


@pytest.mark.asyncio
async def test_malformed_poll_is_fatal(search_stub: SupplierStub, clock: FakeClock) -> None:
    search_stub.on(POLL_PATH, {"Code": "200", "Completed": True, "Trips": [{"Journey": [{"From": "DEL"}]}]})
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock))

    with pytest.raises(ProtocolError):
        await orchestrator.initiate_search(_params())

    assert search_stub.count(POLL_PATH) == 1


@pytest.mark.asyncio
async def test_missing_tui_on_submit_is_a_protocol_error(supplier: SupplierStub, clock: FakeClock) -> None:
    supplier.on(SEARCH_PATH, {"Code": "200", "TUI": ""})
    orchestrator = _orchestrator(supplier, clock, FakeSleep(clock))

    with pytest.raises(ProtocolError):
        await orchestrator.initiate_search(_params())

    assert supplier.count(POLL_PATH) == 0


@pytest.mark.asyncio
async def test_repeated_search_is_served_from_cache(search_stub: SupplierStub, clock: FakeClock) -> None:
    search_stub.on(POLL_PATH, COMPLETE)
    cache = ResultCache(MemoryCacheBackend())
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock), cache=cache)

    first = await orchestrator.initiate_search(_params())
    second = await orchestrator.initiate_search(_params(**{"from": "del"}))

    assert second.from_cache is True
    assert second.session_token == "search-tui"
    assert [offer.to_dict() for offer in second.offers] == [offer.to_dict() for offer in first.offers]
    assert search_stub.count(SEARCH_PATH) == 1
    assert search_stub.count(SIGNATURE_PATH) == 1


def test_session_never_leaves_a_final_state() -> None:
    session = SearchSession(transaction_unique_id="tui-1", started_at=0.0, deadline=5.0, poll_interval=1.0)

    session.transition(SessionStatus.COMPLETED)
    session.transition(SessionStatus.COMPLETED)

    assert session.status is SessionStatus.COMPLETED
    for status in (SessionStatus.PENDING, SessionStatus.TIMED_OUT, SessionStatus.FAILED):
        with pytest.raises(RuntimeError):
            session.transition(status)
    assert session.status is SessionStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "replies, expected_error, status, poll_state",
    [
        pytest.param(
            (INCOMPLETE, COMPLETE), None, SessionStatus.COMPLETED, PollState.COMPLETED, id="completed"
        ),
        pytest.param(
            (INCOMPLETE,), SearchTimeoutError, SessionStatus.TIMED_OUT, PollState.TIMED_OUT, id="timed-out"
        ),
        pytest.param(
            (httpx.Response(502, text="bad gateway"),),
            UpstreamRequestError,
            SessionStatus.FAILED,
            PollState.ERROR_EXHAUSTED,
            id="errors-exhausted",
        ),
        pytest.param(
            ({"Code": "200", "Completed": True, "Trips": [{"Journey": [{"From": "DEL"}]}]},),
            ProtocolError,
            SessionStatus.FAILED,
            PollState.ERROR_EXHAUSTED,
            id="malformed",
        ),
    ],
)
async def test_session_final_state_matches_outcome(
    search_stub: SupplierStub,
    clock: FakeClock,
    replies: tuple,
    expected_error: type | None,
    status: SessionStatus,
    poll_state: PollState,
) -> None:
    search_stub.on(POLL_PATH, *replies)
    policy = PollingPolicy(deadline=30.0, max_error_attempts=3)
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock), policy=policy)
    session = orchestrator.open_session("search-tui")

    if expected_error is None:
        response = await orchestrator.poll_until_complete(session)
        assert response.is_complete
    else:
        with pytest.raises(expected_error):
            await orchestrator.poll_until_complete(session)

    assert session.status is status
    assert session.poll_state is poll_state


@pytest.mark.asyncio
async def test_single_poll_waits_for_the_running_loop(search_stub: SupplierStub, clock: FakeClock) -> None:
    orchestrator = _orchestrator(search_stub, clock, FakeSleep(clock))
    session = orchestrator.open_session("search-tui")
    in_flight = 0
    overlaps = 0
    polls = 0
    side_poll: list[asyncio.Task] = []

    async def _reply(_request: httpx.Request) -> dict:
        nonlocal in_flight, overlaps, polls
        polls += 1
        if polls == 1:
            side_poll.append(asyncio.create_task(orchestrator.poll_results("search-tui")))
        in_flight += 1
        if in_flight > 1:
            overlaps += 1
        await asyncio.sleep(0.01)
        in_flight -= 1
        return COMPLETE if polls >= 3 else INCOMPLETE

    search_stub.on(POLL_PATH, _reply)

    response = await orchestrator.poll_until_complete(session)
    assert response.is_complete
    assert session.attempt == 3

    extra = await side_poll[0]

    assert extra.is_complete
    assert overlaps == 0
    assert search_stub.count(POLL_PATH) == 4
