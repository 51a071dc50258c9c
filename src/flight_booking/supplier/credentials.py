"""Process-wide supplier credential cache with coalesced refresh."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from flight_booking.core.errors import UpstreamAuthError, UpstreamError
from flight_booking.supplier.client import SupplierClient, clean_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Credentials:
    token: str
    client_id: str
    transaction_unique_id: Optional[str]
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class CredentialCache:
    """Hands out the supplier bearer token, refreshing it at most once at a time.

    While a refresh is running every caller awaits the same task, so a burst of
    requests after expiry produces exactly one signature call and every caller
    receives the same :class:`Credentials` object (or the same error).
    """

    def __init__(
        self,
        client: SupplierClient,
        signature_payload: Callable[[], dict[str, Any]],
        *,
        ttl: float = 47 * 60 * 60,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._signature_payload = signature_payload
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._credentials: Optional[Credentials] = None
        self._pending: Optional[asyncio.Task[Credentials]] = None

    @property
    def cached(self) -> Optional[Credentials]:
        return self._credentials

    async def get_credentials(self) -> Credentials:
        current = self._credentials
        if current is not None and current.is_valid(self._clock()):
            return current

        if self._pending is None:
            logger.debug("Credentials missing or expired; starting refresh")
            self._pending = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._pending)

    def invalidate(self) -> None:
        self._credentials = None

    async def _refresh(self) -> Credentials:
        try:
            try:
                response = await self._client.signature(self._signature_payload(), timeout=self._timeout)
            except UpstreamError as exc:
                logger.error("Signature request failed: %s", exc)
                raise UpstreamAuthError(
                    "Failed to generate API signature",
                    operation="signature",
                    code=exc.code,
                ) from exc

            token = clean_token(response.token)
            client_id = clean_token(response.client_id)
            if not token or not client_id:
                raise UpstreamAuthError(
                    "Signature response missing token or client id",
                    operation="signature",
                    code=response.code,
                )
            credentials = Credentials(
                token=token,
                client_id=client_id,
                transaction_unique_id=clean_token(response.tui) or None,
                expires_at=self._clock() + self._ttl,
            )
            self._credentials = credentials
            logger.info("Supplier credentials refreshed for client %s", client_id)
            return credentials
        finally:
            self._pending = None
