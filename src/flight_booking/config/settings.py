"""Runtime configuration for the booking core.

Relies on pydantic-settings so that environment variables (prefixed with ``BENZY_``)
can override defaults. See `.env.example` for common values.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from flight_booking.search.orchestrator import PollingPolicy

logger = logging.getLogger(__name__)

VALID_CACHE_BACKENDS = frozenset({"memory", "sqlite"})


class Settings(BaseSettings):
    """Captures runtime configuration for the supplier integration."""

    merchant_id: Optional[str] = Field(default=None, description="Supplier merchant identifier")
    api_key: Optional[str] = Field(default=None, description="Supplier API key")
    client_id: Optional[str] = Field(default=None, description="Supplier client identifier")
    password: Optional[str] = Field(default=None, description="Supplier account password")
    browser_key: Optional[str] = None
    key: Optional[str] = Field(default=None, description="Signing key forwarded to the signature endpoint")
    channel_id: Optional[str] = None

    utils_api_url: str = Field(
        default="https://b2bapiutils.benzyinfotech.com",
        description="Base URL for the signature endpoint",
    )
    flights_api_url: str = Field(
        default="https://b2bapiflights.benzyinfotech.com",
        description="Base URL for every other supplier endpoint",
    )

    signature_timeout_s: float = Field(default=10.0, description="Timeout for signature issuance")
    search_submit_timeout_s: float = Field(default=10.0, description="Timeout for the search submit call")
    search_poll_timeout_s: float = Field(default=8.0, description="Timeout for each search poll")
    request_timeout_s: float = Field(default=30.0, description="Timeout for all other supplier calls")

    search_deadline_s: float = Field(default=48.0, description="Hard wall-clock budget for search polling")
    poll_initial_interval_s: float = Field(default=1.0)
    poll_max_interval_s: float = Field(default=5.0)
    poll_backoff_factor: float = Field(default=1.5, description="Interval multiplier for incomplete polls")
    poll_error_backoff_factor: float = Field(default=2.0, description="Interval multiplier after poll errors")
    poll_max_error_attempts: int = Field(default=3, description="Poll errors tolerated before giving up")

    credential_ttl_s: float = Field(
        default=47 * 60 * 60,
        description="Local credential lifetime; kept below the supplier token lifetime",
    )

    search_cache_ttl_s: int = Field(default=300)
    pricing_cache_ttl_s: int = Field(default=900)
    seat_layout_cache_ttl_s: int = Field(default=900)
    ssr_cache_ttl_s: int = Field(default=900)
    default_cache_ttl_s: int = Field(default=3600)

    sqlite_path: Path = Field(default=Path("data/flight_booking.sqlite3"))
    cache_backend: str = Field(default="memory", description="Result cache backend: memory or sqlite")
    cache_sqlite_path: Path = Field(default=Path("data/result_cache.sqlite3"))

    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for browser payment redirects",
    )
    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("data/logs"))

    model_config = SettingsConfigDict(
        env_prefix="BENZY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    @field_validator("sqlite_path", "cache_sqlite_path", "log_dir", mode="before")
    def _expand_path(cls, value: str | Path) -> Path:  # noqa: D401
        if isinstance(value, Path):
            return value.expanduser()
        return Path(value).expanduser()

    @field_validator(
        "signature_timeout_s",
        "search_submit_timeout_s",
        "search_poll_timeout_s",
        "request_timeout_s",
        "search_deadline_s",
        "poll_initial_interval_s",
        "poll_max_interval_s",
        "credential_ttl_s",
    )
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and intervals must be positive")
        return value

    @field_validator("poll_backoff_factor", "poll_error_backoff_factor")
    def _validate_backoff(cls, value: float) -> float:
        if value < 1:
            raise ValueError("backoff factors must be at least 1")
        return value

    @field_validator("poll_max_error_attempts")
    def _validate_error_attempts(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("poll_max_error_attempts must be positive")
        return value

    @field_validator("cache_backend", mode="before")
    def _normalize_cache_backend(cls, value: object) -> str:
        backend = str(value or "memory").strip().lower()
        if backend not in VALID_CACHE_BACKENDS:
            raise ValueError(
                f"Unsupported cache backend '{value}'. Expected one of: {sorted(VALID_CACHE_BACKENDS)}"
            )
        return backend

    @field_validator("utils_api_url", "flights_api_url", "frontend_url")
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def ensure_directories(self) -> None:
        """Create directories that must exist at runtime."""
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if self.cache_backend == "sqlite":
            self.cache_sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    def signature_payload(self) -> dict[str, str]:
        missing = [
            name
            for name in ("merchant_id", "api_key", "client_id", "password")
            if not getattr(self, name)
        ]
        if missing:
            logger.warning("Supplier credentials incomplete; missing %s", ", ".join(missing))
        return {
            "MerchantID": self.merchant_id or "",
            "ApiKey": self.api_key or "",
            "ClientID": self.client_id or "",
            "Password": self.password or "",
            "AgentCode": "",
            "BrowserKey": self.browser_key or "",
            "Key": self.key or "",
        }

    def polling_policy(self) -> "PollingPolicy":
        from flight_booking.search.orchestrator import PollingPolicy

        return PollingPolicy(
            deadline=self.search_deadline_s,
            initial_interval=self.poll_initial_interval_s,
            max_interval=self.poll_max_interval_s,
            backoff_factor=self.poll_backoff_factor,
            error_backoff_factor=self.poll_error_backoff_factor,
            max_error_attempts=self.poll_max_error_attempts,
            poll_timeout=self.search_poll_timeout_s,
            submit_timeout=self.search_submit_timeout_s,
        )
