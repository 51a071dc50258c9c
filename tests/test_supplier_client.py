from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from conftest import FLIGHTS_URL, RETRIEVE_PATH, SIGNATURE_PATH, SIGNATURE_OK, SupplierStub, build_client
from flight_booking.config.settings import Settings
from flight_booking.core.errors import (
    ProtocolError,
    UpstreamRequestError,
    UpstreamTimeoutError,
)
from flight_booking.services import open_services
from flight_booking.storage.cache_store import SqliteCacheBackend
from flight_booking.storage.json_writer import JsonStore
from flight_booking.storage.result_cache import MemoryCacheBackend


@pytest.mark.asyncio
async def test_bearer_token_and_payload_are_sent(supplier: SupplierStub) -> None:
    supplier.on(RETRIEVE_PATH, {"Code": "200", "TransactionID": 1001})
    client = build_client(supplier)

    body = await client.post("retrieve_booking", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {"ReferenceNumber": "1001"}, token="tok")

    assert body["TransactionID"] == 1001
    _, payload, request = supplier.calls[-1]
    assert payload == {"ReferenceNumber": "1001"}
    assert request.headers["Authorization"] == "Bearer tok"
    assert request.headers["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_http_error_status_maps_to_request_error(supplier: SupplierStub) -> None:
    supplier.on(RETRIEVE_PATH, httpx.Response(503, text="maintenance"))
    client = build_client(supplier)

    with pytest.raises(UpstreamRequestError) as excinfo:
        await client.post("retrieve_booking", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {})

    assert excinfo.value.code == "503"
    assert excinfo.value.operation == "retrieve_booking"


@pytest.mark.asyncio
async def test_non_success_code_carries_supplier_message(supplier: SupplierStub) -> None:
    supplier.on(RETRIEVE_PATH, {"Code": "1200", "Msg": ["Invalid reference"]})
    client = build_client(supplier)

    with pytest.raises(UpstreamRequestError) as excinfo:
        await client.post("retrieve_booking", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {})

    assert excinfo.value.message == "Invalid reference"
    assert excinfo.value.code == "1200"
    assert "code=1200" in str(excinfo.value)


@pytest.mark.asyncio
async def test_accept_codes_none_skips_code_check(supplier: SupplierStub) -> None:
    supplier.on(RETRIEVE_PATH, {"Code": "1500", "Msg": ["Fare changed"]})
    client = build_client(supplier)

    body = await client.post("get_pricer", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {}, accept_codes=None)

    assert body["Code"] == "1500"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
    ],
)
async def test_malformed_bodies_are_protocol_errors(supplier: SupplierStub, reply: httpx.Response) -> None:
    supplier.on(RETRIEVE_PATH, reply)
    client = build_client(supplier)

    with pytest.raises(ProtocolError):
        await client.post("retrieve_booking", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {})


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout_error(supplier: SupplierStub) -> None:
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    supplier.on(RETRIEVE_PATH, _timeout)
    client = build_client(supplier)

    with pytest.raises(UpstreamTimeoutError) as excinfo:
        await client.post("retrieve_booking", f"{FLIGHTS_URL}{RETRIEVE_PATH}", {}, correlation_token="tui-9")

    assert excinfo.value.correlation_token == "tui-9"
    assert excinfo.value.status_code == 504


@pytest.mark.asyncio
async def test_signature_response_missing_token_is_protocol_error(supplier: SupplierStub) -> None:
    supplier.on(SIGNATURE_PATH, {"Code": "200", "ClientID": "client-1"})
    client = build_client(supplier)

    with pytest.raises(ProtocolError):
        await client.signature({"ClientID": "client-1"})


def _settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(
        client_id="client-1",
        password="secret",
        sqlite_path=tmp_path / "store.sqlite3",
        cache_sqlite_path=tmp_path / "cache.sqlite3",
        log_dir=tmp_path / "logs",
        **overrides,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "backend, expected",
    [("memory", MemoryCacheBackend), ("sqlite", SqliteCacheBackend)],
)
async def test_open_services_wires_cache_backend(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, backend: str, expected: type
) -> None:
    monkeypatch.chdir(tmp_path)
    stub = SupplierStub().on(SIGNATURE_PATH, SIGNATURE_OK)

    async with open_services(_settings(tmp_path, cache_backend=backend), transport=stub.transport()) as services:
        assert isinstance(services.cache.backend, expected)
        credentials = await services.credentials.get_credentials()
        assert credentials.token == "token-abc"
        assert await services.store.fetch_booking(1) is None

    assert stub.payloads(SIGNATURE_PATH)[0]["ClientID"] == "client-1"
    assert (tmp_path / "store.sqlite3").exists()


@pytest.mark.asyncio
async def test_json_store_wraps_result(tmp_path: Path) -> None:
    store = JsonStore(tmp_path / "out")

    path = await store.write({"offers": []}, kind="search", filename="latest.json")

    assert path == tmp_path / "out" / "search" / "latest.json"
    document = json.loads(path.read_text())
    assert document["kind"] == "search"
    assert document["result"] == {"offers": []}
    assert document["generated_at"].endswith("Z")
