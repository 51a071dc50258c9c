from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from flight_booking.config.settings import Settings
from flight_booking.core.logging import configure_logging


def test_environment_overrides_use_prefix(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BENZY_CLIENT_ID", "client-9")
    monkeypatch.setenv("BENZY_SEARCH_DEADLINE_S", "30")
    monkeypatch.setenv("BENZY_CACHE_BACKEND", "SQLite")
    monkeypatch.setenv("BENZY_FLIGHTS_API_URL", "https://flights.example.test/")

    settings = Settings()

    assert settings.client_id == "client-9"
    assert settings.cache_backend == "sqlite"
    assert settings.flights_api_url == "https://flights.example.test"
    policy = settings.polling_policy()
    assert policy.deadline == 30
    assert policy.max_error_attempts == 3


def test_signature_payload_shape(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    settings = Settings(merchant_id="m-1", api_key="k-1", client_id="c-1", password="p-1")

    assert settings.signature_payload() == {
        "MerchantID": "m-1",
        "ApiKey": "k-1",
        "ClientID": "c-1",
        "Password": "p-1",
        "AgentCode": "",
        "BrowserKey": "",
        "Key": "",
    }


@pytest.mark.parametrize(
    "field, value",
    [
        ("search_deadline_s", 0),
        ("poll_backoff_factor", 0.5),
        ("poll_max_error_attempts", 0),
        ("cache_backend", "redis"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, field: str, value: object) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(PydanticValidationError):
        Settings(**{field: value})


def test_ensure_directories_creates_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    settings = Settings(
        sqlite_path=tmp_path / "db" / "store.sqlite3",
        log_dir=tmp_path / "logs",
        cache_backend="sqlite",
        cache_sqlite_path=tmp_path / "cache" / "cache.sqlite3",
    )

    settings.ensure_directories()

    assert (tmp_path / "db").is_dir()
    assert (tmp_path / "logs").is_dir()
    assert (tmp_path / "cache").is_dir()


def test_configure_logging_writes_to_log_dir(tmp_path: Path) -> None:
    root = logging.getLogger()
    previous = list(root.handlers)
    for handler in previous:
        root.removeHandler(handler)
    try:
        log_path = configure_logging("info", tmp_path / "logs")
        logging.getLogger("flight_booking.test").info("hello")
        for handler in root.handlers:
            handler.flush()

        assert log_path == tmp_path / "logs" / "flight_booking.log"
        assert "| INFO | flight_booking.test | hello" in log_path.read_text()
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous:
            root.addHandler(handler)
