"""Error taxonomy shared by the booking core."""
from __future__ import annotations

from typing import Any, Iterable, Optional


class FlightBookingError(RuntimeError):
    """Base class for every error surfaced by the booking core."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "status": self.status_code,
        }


class ValidationError(FlightBookingError):
    """Raised when caller input is malformed; lists every violated rule."""

    status_code = 400

    def __init__(self, errors: Iterable[str], message: str = "Validation failed") -> None:
        self.errors = list(errors)
        detail = f"{message}: {', '.join(self.errors)}" if self.errors else message
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["errors"] = list(self.errors)
        return body


class NotFoundError(FlightBookingError):
    status_code = 404


class ConflictError(FlightBookingError):
    status_code = 409


class PersistenceError(FlightBookingError):
    """Raised when a record required by the booking flow could not be stored."""


class SearchTimeoutError(FlightBookingError):
    """Raised when a search does not complete before its deadline."""

    status_code = 408

    def __init__(self, message: str, *, correlation_token: Optional[str] = None, polls: int = 0) -> None:
        super().__init__(message)
        self.correlation_token = correlation_token
        self.polls = polls


class UpstreamError(FlightBookingError):
    """Base class for supplier call failures."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        code: Optional[str] = None,
        correlation_token: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.code = code
        self.correlation_token = correlation_token

    def __str__(self) -> str:
        parts = [f"{self.operation}: {self.message}"]
        if self.code:
            parts.append(f"code={self.code}")
        if self.correlation_token:
            parts.append(f"tui={self.correlation_token}")
        return " ".join(parts)


class UpstreamAuthError(UpstreamError):
    """Raised when credential issuance fails."""


class UpstreamTimeoutError(UpstreamError):
    status_code = 504


class UpstreamRequestError(UpstreamError):
    """Raised for HTTP failures and non-success supplier codes."""


class ProtocolError(UpstreamError):
    """Raised when a supplier response is missing fields the contract requires."""


class PricingError(UpstreamError):
    """Raised when a pricing call fails with anything other than a price change."""
