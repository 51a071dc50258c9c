from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import SIGNATURE_OK, SIGNATURE_PATH, FakeClock, SupplierStub, build_client, build_credentials
from flight_booking.core.errors import UpstreamAuthError
from flight_booking.supplier.client import clean_token


def test_clean_token_strips_escaped_quotes() -> None:
    assert clean_token('\\"abc-123\\"') == "abc-123"
    assert clean_token('"token"') == "token"
    assert clean_token(None) == ""


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_signature_call(supplier: SupplierStub) -> None:
    async def _slow_signature(_request: httpx.Request) -> dict:
        await asyncio.sleep(0.01)
        return SIGNATURE_OK

    supplier.on(SIGNATURE_PATH, _slow_signature)
    credentials = build_credentials(build_client(supplier))

    results = await asyncio.gather(*(credentials.get_credentials() for _ in range(8)))

    assert supplier.count(SIGNATURE_PATH) == 1
    assert all(result is results[0] for result in results)
    assert results[0].token == "token-abc"
    assert results[0].client_id == "client-1"


@pytest.mark.asyncio
async def test_cached_credentials_are_reused_until_expiry(supplier: SupplierStub, clock: FakeClock) -> None:
    credentials = build_credentials(build_client(supplier), clock=clock)

    first = await credentials.get_credentials()
    clock.advance(3599)
    second = await credentials.get_credentials()
    clock.advance(2)
    third = await credentials.get_credentials()

    assert first is second
    assert third is not first
    assert supplier.count(SIGNATURE_PATH) == 2


@pytest.mark.asyncio
async def test_failed_refresh_reaches_every_waiter_and_clears_slot(supplier: SupplierStub) -> None:
    supplier.on(SIGNATURE_PATH, httpx.Response(500, text="boom"), SIGNATURE_OK)
    credentials = build_credentials(build_client(supplier))

    outcomes = await asyncio.gather(
        credentials.get_credentials(),
        credentials.get_credentials(),
        return_exceptions=True,
    )

    assert all(isinstance(outcome, UpstreamAuthError) for outcome in outcomes)
    assert outcomes[0].message == "Failed to generate API signature"
    assert credentials.cached is None

    recovered = await credentials.get_credentials()
    assert recovered.token == "token-abc"
    assert supplier.count(SIGNATURE_PATH) == 2


@pytest.mark.asyncio
async def test_signature_missing_token_is_rejected(supplier: SupplierStub) -> None:
    supplier.on(SIGNATURE_PATH, {"Code": "200", "ClientID": "client-1"})
    credentials = build_credentials(build_client(supplier))

    with pytest.raises(UpstreamAuthError):
        await credentials.get_credentials()


@pytest.mark.asyncio
async def test_invalidate_forces_refresh(supplier: SupplierStub) -> None:
    credentials = build_credentials(build_client(supplier))

    await credentials.get_credentials()
    credentials.invalidate()
    await credentials.get_credentials()

    assert supplier.count(SIGNATURE_PATH) == 2
