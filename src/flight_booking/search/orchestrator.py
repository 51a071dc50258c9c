"""Express search submission and the adaptive polling loop."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flight_booking.core.errors import (
    ProtocolError,
    SearchTimeoutError,
    UpstreamRequestError,
    UpstreamTimeoutError,
)
from flight_booking.flights.models import FlightOffer
from flight_booking.flights.normalizer import build_search_offers
from flight_booking.search.params import SearchParams, describe
from flight_booking.storage.result_cache import ResultCache
from flight_booking.supplier.client import SupplierClient, clean_token
from flight_booking.supplier.credentials import CredentialCache, Credentials
from flight_booking.supplier.schemas import SearchPollResponse

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class PollState(str, Enum):
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"
    ERROR_EXHAUSTED = "ERROR_EXHAUSTED"


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"

    @property
    def is_final(self) -> bool:
        return self is not SessionStatus.PENDING


@dataclass(frozen=True)
class PollingPolicy:
    deadline: float = 48.0
    initial_interval: float = 1.0
    max_interval: float = 5.0
    backoff_factor: float = 1.5
    error_backoff_factor: float = 2.0
    max_error_attempts: int = 3
    poll_timeout: float = 8.0
    submit_timeout: float = 10.0

    def next_interval(self, current: float, *, after_error: bool = False) -> float:
        factor = self.error_backoff_factor if after_error else self.backoff_factor
        return min(current * factor, self.max_interval)


@dataclass
class SearchSession:
    """Mutable polling state for one supplier correlation token."""

    transaction_unique_id: str
    started_at: float
    deadline: float
    poll_interval: float
    attempt: int = 0
    error_attempts: int = 0
    status: SessionStatus = SessionStatus.PENDING
    poll_state: PollState = PollState.POLLING
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def remaining(self, now: float) -> float:
        return self.deadline - now

    def transition(self, status: SessionStatus) -> None:
        if self.status is status:
            return
        if self.status.is_final:
            raise RuntimeError(
                f"Search session {self.transaction_unique_id} is already {self.status.value}"
            )
        self.status = status


@dataclass
class SearchOutcome:
    offers: List[FlightOffer]
    session_token: Optional[str]
    from_cache: bool = False
    polls: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "session_token": self.session_token,
            "from_cache": self.from_cache,
            "polls": self.polls,
            "offers": FlightOffer.from_iterable(self.offers),
        }


class SearchOrchestrator:
    """Runs an express search end to end: validate, submit, poll, normalise, cache."""

    def __init__(
        self,
        client: SupplierClient,
        credentials: CredentialCache,
        cache: ResultCache,
        *,
        policy: Optional[PollingPolicy] = None,
        cache_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._cache = cache
        self.policy = policy or PollingPolicy()
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._sessions: Dict[str, SearchSession] = {}

    async def initiate_search(self, params: SearchParams) -> SearchOutcome:
        params.validate(self._today())

        cache_key = ResultCache.search_key(params.fingerprint())
        cached = await self._load_cached(cache_key)
        if cached is not None:
            logger.info("Serving search %s from cache", describe(params))
            return cached

        credentials = await self._credentials.get_credentials()
        logger.info("Initiating flight search %s", describe(params))
        submitted = await self._client.express_search(
            params.to_payload(credentials.client_id),
            token=credentials.token,
            timeout=self.policy.submit_timeout,
        )
        tui = clean_token(submitted.tui)
        if not tui:
            raise ProtocolError("Invalid search response - missing TUI", operation="express_search")

        session = self.open_session(tui)
        try:
            response = await self.poll_until_complete(session, credentials)
        finally:
            self._sessions.pop(tui, None)

        offers = build_search_offers(response)
        logger.info("Search %s completed with %s offers after %s polls", tui, len(offers), session.attempt)
        await self._cache.set(
            cache_key,
            {"session_token": tui, "offers": FlightOffer.from_iterable(offers)},
            self._cache_ttl,
        )
        return SearchOutcome(offers=offers, session_token=tui, from_cache=False, polls=session.attempt)

    def open_session(self, tui: str) -> SearchSession:
        now = self._clock()
        session = SearchSession(
            transaction_unique_id=tui,
            started_at=now,
            deadline=now + self.policy.deadline,
            poll_interval=self.policy.initial_interval,
        )
        self._sessions[tui] = session
        return session

    async def poll_results(self, tui: str) -> SearchPollResponse:
        """Issue one poll for ``tui``; waits for any in-flight poll on the same session."""
        credentials = await self._credentials.get_credentials()
        session = self._sessions.get(tui)
        if session is None:
            return await self._poll_once(tui, credentials, self.policy.poll_timeout)
        async with session.lock:
            return await self._poll_once(tui, credentials, self.policy.poll_timeout)

    async def _poll_once(self, tui: str, credentials: Credentials, timeout: float) -> SearchPollResponse:
        return await self._client.get_express_search(
            {"ClientID": credentials.client_id, "TUI": clean_token(tui)},
            token=credentials.token,
            timeout=timeout,
        )

    async def poll_until_complete(
        self, session: SearchSession, credentials: Optional[Credentials] = None
    ) -> SearchPollResponse:
        """Poll ``session`` until the supplier reports completion or the budget runs out.

        The session lock is held for the whole loop, so a concurrent
        :meth:`poll_results` for the same token waits until the loop has finished.
        """
        if credentials is None:
            credentials = await self._credentials.get_credentials()
        policy = self.policy
        tui = session.transaction_unique_id
        async with session.lock:
            while True:
                remaining = session.remaining(self._clock())
                if remaining <= 0:
                    break

                session.attempt += 1
                try:
                    response = await self._poll_once(tui, credentials, min(policy.poll_timeout, remaining))
                except ProtocolError:
                    session.poll_state = PollState.ERROR_EXHAUSTED
                    session.transition(SessionStatus.FAILED)
                    raise
                except (UpstreamTimeoutError, UpstreamRequestError) as exc:
                    session.error_attempts += 1
                    logger.warning(
                        "Polling attempt %s failed for %s (%s/%s errors): %s",
                        session.attempt,
                        tui,
                        session.error_attempts,
                        policy.max_error_attempts,
                        exc,
                    )
                    # Stop on the error that reaches the budget, not the one after it.
                    if session.error_attempts >= policy.max_error_attempts:
                        session.poll_state = PollState.ERROR_EXHAUSTED
                        session.transition(SessionStatus.FAILED)
                        raise
                    session.poll_interval = policy.next_interval(session.poll_interval, after_error=True)
                else:
                    if response.is_complete:
                        session.poll_state = PollState.COMPLETED
                        session.transition(SessionStatus.COMPLETED)
                        return response
                    session.poll_interval = policy.next_interval(session.poll_interval)
                    logger.debug("Search %s incomplete; next poll in %.2fs", tui, session.poll_interval)

                remaining = session.remaining(self._clock())
                if remaining <= 0:
                    break
                await self._sleep(min(session.poll_interval, remaining))

        session.poll_state = PollState.TIMED_OUT
        session.transition(SessionStatus.TIMED_OUT)
        logger.warning("Search %s timed out after %s polls", tui, session.attempt)
        raise SearchTimeoutError(
            "Search timeout - exceeded time limit",
            correlation_token=tui,
            polls=session.attempt,
        )

    async def _load_cached(self, cache_key: str) -> Optional[SearchOutcome]:
        cached = await self._cache.get(cache_key)
        if not isinstance(cached, dict):
            return None
        try:
            offers = [FlightOffer.from_dict(item) for item in cached["offers"]]
        except (KeyError, TypeError, AttributeError):
            logger.debug("Ignoring malformed cached search %s", cache_key)
            return None
        return SearchOutcome(offers=offers, session_token=cached.get("session_token"), from_cache=True)
