"""Builds the long-lived collaborators for one process."""
from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from flight_booking.ancillaries.seats import SeatLayoutService
from flight_booking.ancillaries.ssr import SSRService
from flight_booking.booking.state_machine import BookingStateMachine
from flight_booking.config.settings import Settings
from flight_booking.pricing.reconciler import PricingReconciler
from flight_booking.search.orchestrator import SearchOrchestrator
from flight_booking.storage.cache_store import SqliteCacheBackend
from flight_booking.storage.result_cache import CacheBackend, MemoryCacheBackend, ResultCache
from flight_booking.storage.sqlite_store import SqliteStore
from flight_booking.supplier.client import DEFAULT_HEADERS, SupplierClient
from flight_booking.supplier.credentials import CredentialCache

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    client: SupplierClient
    credentials: CredentialCache
    cache: ResultCache
    store: SqliteStore
    search: SearchOrchestrator
    pricing: PricingReconciler
    bookings: BookingStateMachine
    seats: SeatLayoutService
    ssr: SSRService


async def _open_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "sqlite":
        backend = SqliteCacheBackend(settings.cache_sqlite_path)
        await backend.initialize()
        purged = await backend.purge_expired()
        if purged:
            logger.info("Purged %s expired cache entries from %s", purged, settings.cache_sqlite_path)
        return backend
    return MemoryCacheBackend()


@asynccontextmanager
async def open_services(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[Services]:
    """Yield wired services; the HTTP client, cache and database are closed on exit."""
    async with AsyncExitStack() as stack:
        http = await stack.enter_async_context(
            httpx.AsyncClient(
                headers=DEFAULT_HEADERS,
                timeout=settings.request_timeout_s,
                transport=transport,
            )
        )
        client = SupplierClient(
            http,
            utils_api_url=settings.utils_api_url,
            flights_api_url=settings.flights_api_url,
            request_timeout=settings.request_timeout_s,
        )
        credentials = CredentialCache(
            client,
            settings.signature_payload,
            ttl=settings.credential_ttl_s,
            timeout=settings.signature_timeout_s,
        )

        cache = ResultCache(await _open_cache_backend(settings), default_ttl=settings.default_cache_ttl_s)
        stack.push_async_callback(cache.close)

        store = SqliteStore(settings.sqlite_path)
        await store.initialize()
        stack.push_async_callback(store.close)

        services = Services(
            settings=settings,
            client=client,
            credentials=credentials,
            cache=cache,
            store=store,
            search=SearchOrchestrator(
                client,
                credentials,
                cache,
                policy=settings.polling_policy(),
                cache_ttl=settings.search_cache_ttl_s,
            ),
            pricing=PricingReconciler(client, credentials, cache, cache_ttl=settings.pricing_cache_ttl_s),
            bookings=BookingStateMachine(
                client,
                credentials,
                store,
                cache=cache,
                frontend_url=settings.frontend_url,
            ),
            seats=SeatLayoutService(client, credentials, cache, cache_ttl=settings.seat_layout_cache_ttl_s),
            ssr=SSRService(client, credentials, cache, cache_ttl=settings.ssr_cache_ttl_s),
        )
        logger.debug(
            "Services ready (cache=%s, database=%s)",
            settings.cache_backend,
            settings.sqlite_path,
        )
        yield services
