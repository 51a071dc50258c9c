"""Itinerary, payment and callback handling for bookings.

Every status change for one booking runs under that booking's ``asyncio.Lock``
so initiations and callbacks are applied in arrival order. Payment history is
append-only; a callback that disagrees with an already settled payment is kept
in history for audit but does not move any status.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

from flight_booking.booking.models import (
    Booking,
    BookingPaymentStatus,
    BookingPricing,
    BookingStatus,
    BookingType,
    ContactDetails,
    FlightLeg,
    GatewayDetails,
    Passenger,
    Payment,
    PaymentResponse,
    PaymentStatus,
    generate_booking_reference,
)
from flight_booking.core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from flight_booking.flights.models import FlightOffer, FlightSegment
from flight_booking.flights.normalizer import build_priced_offers, build_priced_segment
from flight_booking.pricing.reconciler import DEFAULT_CURRENCY
from flight_booking.storage.result_cache import ResultCache
from flight_booking.storage.sqlite_store import SqliteStore, utc_now
from flight_booking.supplier.client import SupplierClient, clean_token
from flight_booking.supplier.credentials import CredentialCache
from flight_booking.supplier.schemas import ItineraryResponse, PaymentCallbackPayload, parse_response

logger = logging.getLogger(__name__)

SUCCESS_CODES = frozenset({"200", "6033"})
# 6033 is reported as a success by the supplier without documented meaning.
UNVERIFIED_SUCCESS_CODES = frozenset({"6033"})

CONTACT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("FName", "Contact first name is required"),
    ("LName", "Contact last name is required"),
    ("Mobile", "Contact mobile number is required"),
    ("Email", "Contact email is required"),
    ("Address", "Contact address is required"),
    ("CountryCode", "Country code is required"),
    ("State", "State is required"),
    ("City", "City is required"),
    ("PIN", "PIN code is required"),
)

TRAVELLER_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("ID", "Traveller ID"),
    ("Title", "Title"),
    ("FName", "First name"),
    ("LName", "Last name"),
    ("Gender", "Gender"),
    ("PTC", "Passenger type"),
)


def validate_itinerary_request(body: Mapping[str, Any]) -> List[str]:
    """Return every missing field in an itinerary request."""
    errors: List[str] = []
    if not body.get("TUI"):
        errors.append("Transaction Unique Identifier is required")
    contact = body.get("ContactInfo") or {}
    for key, message in CONTACT_FIELDS:
        if not contact.get(key):
            errors.append(message)
    if not body.get("NetAmount"):
        errors.append("Net amount is required")
    travellers = body.get("Travellers")
    if not travellers:
        errors.append("Traveller information is required")
    if isinstance(travellers, list):
        for position, traveller in enumerate(travellers, start=1):
            for key, label in TRAVELLER_FIELDS:
                if not (traveller or {}).get(key):
                    errors.append(f"{label} is required for traveller {position}")
    return errors


def build_start_pay_payload(booking: Booking, *, client_id: str, browser_key: str = "") -> Dict[str, Any]:
    try:
        transaction_id: Any = int(booking.transaction_id)
    except (TypeError, ValueError):
        transaction_id = booking.transaction_id
    return {
        "TransactionID": transaction_id,
        "PaymentAmount": 0,
        "NetAmount": booking.pricing.net_amount,
        "BrowserKey": browser_key,
        "ClientID": client_id,
        "TUI": booking.tui,
        "Hold": False,
        "Promo": None,
        "PaymentType": "",
        "BankCode": "",
        "GateWayCode": "",
        "MerchantID": "",
        "PaymentCharge": 0,
        "ReleaseDate": "",
        "OnlinePayment": False,
        "DepositPayment": True,
        "Card": {
            "Number": "",
            "Expiry": "",
            "CVV": "",
            "CHName": "",
            "Address": "",
            "City": "",
            "State": "",
            "Country": "",
            "PIN": "",
            "International": False,
            "SaveCard": False,
            "FName": "",
            "LName": "",
            "EMIMonths": "0",
        },
        "VPA": "",
        "CardAlias": "",
        "QuickPay": None,
        "RMSSignature": "",
        "TargetCurrency": "",
        "TargetAmount": 0,
        "ServiceType": "ITI",
    }


@dataclass
class ItineraryResult:
    booking: Booking
    transaction_id: str
    tui: Optional[str]
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "booking_id": self.booking.id,
            "booking_reference": self.booking.booking_reference,
            "transaction_id": self.transaction_id,
            "tui": self.tui,
            "status": "SUCCESS",
            "message": self.message,
        }


@dataclass
class PaymentInitiation:
    payment: Payment
    redirect_url: Optional[str]
    redirect_mode: Optional[str]
    status: str

    def to_dict(self) -> dict[str, object]:
        return {
            "payment_id": self.payment.id,
            "redirect_url": self.redirect_url,
            "redirect_mode": self.redirect_mode,
            "status": self.status,
        }


@dataclass
class CallbackResult:
    payment: Payment
    booking: Booking
    status: PaymentStatus
    applied: bool
    is_json: bool
    redirect_url: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "payment_id": self.payment.id,
            "status": self.status.value,
            "message": self.message,
        }


@dataclass
class RetrievedBooking:
    transaction_id: Optional[str]
    booking_status: Optional[str]
    payment_status: Optional[str]
    flights: List[FlightSegment] = field(default_factory=list)
    passengers: List[Dict[str, Any]] = field(default_factory=list)
    currency: str = DEFAULT_CURRENCY
    base_amount: Optional[float] = None
    taxes: float = 0.0
    total_amount: Optional[float] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "transaction_id": self.transaction_id,
            "booking_status": self.booking_status,
            "payment_status": self.payment_status,
            "flights": [segment.to_dict() for segment in self.flights],
            "passengers": list(self.passengers),
            "pricing": {
                "currency": self.currency,
                "base_amount": self.base_amount,
                "taxes": self.taxes,
                "total_amount": self.total_amount,
            },
        }


def _is_json_request(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == "application/json"


@dataclass(slots=True)
class _LockSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class BookingStateMachine:
    def __init__(
        self,
        client: SupplierClient,
        credentials: CredentialCache,
        store: SqliteStore,
        *,
        cache: Optional[ResultCache] = None,
        frontend_url: str = "http://localhost:3000",
        reference_factory: Callable[[], str] = generate_booking_reference,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._store = store
        self._cache = cache
        self._frontend_url = frontend_url.rstrip("/")
        self._reference_factory = reference_factory
        self._clock = clock
        self._locks: Dict[str, _LockSlot] = {}

    @asynccontextmanager
    async def _transaction_lock(self, transaction_id: str) -> AsyncIterator[None]:
        """Serialise work on one transaction; the entry is dropped once nobody holds or awaits it."""
        slot = self._locks.get(transaction_id)
        if slot is None:
            slot = self._locks[transaction_id] = _LockSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._locks.pop(transaction_id, None)

    # ------------------------------------------------------------------
    # itinerary

    async def create_itinerary(
        self,
        request: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
        source: str = "API",
    ) -> ItineraryResult:
        errors = validate_itinerary_request(request)
        if errors:
            raise ValidationError(errors)

        tui = clean_token(str(request["TUI"]))
        credentials = await self._credentials.get_credentials()
        payload = {
            **request,
            "ClientID": credentials.client_id,
            "SSR": request.get("SSR") or [],
            "CrossSell": request.get("CrossSell") or [],
            "PLP": request.get("PLP") or [],
            "SSRAmount": request.get("SSRAmount") or 0,
            "CrossSellAmount": request.get("CrossSellAmount") or 0,
            "DeviceID": request.get("DeviceID") or "",
            "AppVersion": request.get("AppVersion") or "",
        }
        response = await self._client.create_itinerary(payload, token=credentials.token)

        saved = await self._save_flight_details(response, tui)
        if not saved:
            raise PersistenceError("Failed to save flight details")

        net_amount = float(request["NetAmount"])
        quote = await self._locked_quote(tui, net_amount)

        legs: List[FlightLeg] = []
        for flight_id, offer in saved:
            for segment in offer.segments:
                legs.append(
                    FlightLeg(
                        flight_id=flight_id,
                        flight_number=segment.flight_number,
                        tui=tui,
                        provider_code=offer.provider,
                        departure=segment.departure,
                        arrival=segment.arrival,
                        cabin=segment.cabin,
                    )
                )

        first_offer = saved[0][1]
        booking = Booking(
            booking_reference=self._reference_factory(),
            transaction_id=str(response.transaction_id),
            type=BookingType.for_trip_count(len(response.trips)),
            flights=legs,
            passengers=[Passenger.from_traveller(traveller) for traveller in request["Travellers"]],
            contact=ContactDetails.from_contact_info(request["ContactInfo"]),
            pricing=BookingPricing(
                currency=(quote or {}).get("currency") or first_offer.pricing.currency or DEFAULT_CURRENCY,
                total_amount=response.gross_amount if response.gross_amount is not None else net_amount,
                net_amount=net_amount,
                base_fare=response.net_amount,
            ),
            user_id=user_id,
            source=source,
        )
        booking = await self._store.create_booking(booking)
        logger.info(
            "Booking created with reference %s for transaction %s",
            booking.booking_reference,
            booking.transaction_id,
        )
        return ItineraryResult(
            booking=booking,
            transaction_id=booking.transaction_id,
            tui=clean_token(response.tui) or tui,
            message=response.message or "Itinerary created successfully",
        )

    async def _save_flight_details(
        self, response: ItineraryResponse, tui: str
    ) -> Optional[List[Tuple[int, FlightOffer]]]:
        """Persist the itinerary's offers; failures are logged and reported as ``None``."""
        try:
            offers = build_priced_offers(
                response.trips,
                DEFAULT_CURRENCY,
                baggage=response.baggage_description(),
            )
            if not offers:
                logger.warning("Itinerary %s returned no flight segments", response.transaction_id)
                return None
            saved = []
            for offer in offers:
                flight_id = await self._store.save_flight(
                    offer, tui=tui, transaction_id=str(response.transaction_id)
                )
                saved.append((flight_id, offer))
            return saved
        except Exception:
            logger.exception("Error saving flight details for transaction %s", response.transaction_id)
            return None

    async def _locked_quote(self, tui: str, net_amount: float) -> Optional[Dict[str, Any]]:
        """Return the cached pricing for ``tui`` and warn when the booked amount drifted from it."""
        if self._cache is None:
            return None
        quote = await self._cache.get(ResultCache.pricing_key(tui))
        if not isinstance(quote, dict):
            logger.debug("No cached pricing for %s", tui)
            return None
        quoted = quote.get("net_amount")
        if quoted is not None and abs(float(quoted) - net_amount) > 0.005:
            logger.warning("Itinerary net amount %.2f differs from locked quote %.2f (tui=%s)", net_amount, quoted, tui)
        return quote

    # ------------------------------------------------------------------
    # payment

    async def initiate_payment(self, booking_id: int, *, browser_key: str = "") -> PaymentInitiation:
        booking = await self._store.fetch_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        async with self._transaction_lock(booking.transaction_id):
            booking = await self._store.fetch_booking(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.payment_status is BookingPaymentStatus.COMPLETED:
                raise ConflictError("Payment already completed for this booking")
            if not booking.status.can_transition_to(BookingStatus.PENDING_PAYMENT):
                raise ConflictError(f"Cannot initiate payment for a {booking.status.value} booking")

            credentials = await self._credentials.get_credentials()
            response = await self._client.start_pay(
                build_start_pay_payload(booking, client_id=credentials.client_id, browser_key=browser_key),
                token=credentials.token,
            )

            now = self._clock()
            payment = await self._store.fetch_payment_by_transaction(booking.transaction_id)
            if payment is None:
                payment = Payment(
                    booking_id=booking.id,
                    transaction_id=booking.transaction_id,
                    tui=booking.tui,
                    payment_amount=booking.pricing.net_amount,
                    net_amount=booking.pricing.net_amount,
                )
                payment.record(PaymentStatus.INITIATED, now, "Payment initiated")
            else:
                payment.record(PaymentStatus.INITIATED, now, "Payment re-initiated")

            payment.gateway = GatewayDetails(
                code=response.gateway_code,
                payment_id=response.payment_id,
                redirect_url=response.redirect_url,
                metadata=response.model_dump(mode="json", by_alias=True),
            )
            payment.response = PaymentResponse(
                code=response.code,
                message=response.message,
                book_status=response.book_status,
                crs_pnr=response.crs_pnr,
                redirect_mode=response.redirect_mode,
                post_data=response.post_data,
            )
            payment.status = PaymentStatus.PROCESSING
            payment.record(PaymentStatus.PROCESSING, now, response.message or "Awaiting gateway callback")
            payment = await self._store.save_payment(payment)

            booking.transition(BookingStatus.PENDING_PAYMENT)
            booking.payment_status = BookingPaymentStatus.PROCESSING
            await self._store.update_booking(booking)

        logger.info("Payment initiated for booking %s (transaction %s)", booking.booking_reference, booking.transaction_id)
        return PaymentInitiation(
            payment=payment,
            redirect_url=response.redirect_url,
            redirect_mode=response.redirect_mode,
            status="SUCCESS" if response.code == "200" else "PENDING",
        )

    async def handle_payment_callback(
        self,
        transaction_id: str,
        payload: Mapping[str, Any],
        *,
        content_type: Optional[str] = None,
    ) -> CallbackResult:
        callback = parse_response(PaymentCallbackPayload, dict(payload), operation="payment_callback")
        transaction_id = str(transaction_id)
        if await self._store.fetch_payment_by_transaction(transaction_id) is None:
            raise NotFoundError("Payment not found")

        async with self._transaction_lock(transaction_id):
            payment = await self._store.fetch_payment_by_transaction(transaction_id)
            if payment is None:
                raise NotFoundError("Payment not found")
            booking = await self._store.fetch_booking(payment.booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")

            is_success = callback.code in SUCCESS_CODES
            if callback.code in UNVERIFIED_SUCCESS_CODES:
                logger.warning("Treating supplier code %s as payment success for %s", callback.code, transaction_id)
            new_status = PaymentStatus.SUCCESS if is_success else PaymentStatus.FAILED
            target = BookingStatus.CONFIRMED if is_success else BookingStatus.CANCELLED

            contradicts = (
                payment.status.is_settled and payment.status is not new_status
            ) or not booking.status.can_transition_to(target)

            if contradicts:
                payment.record(
                    new_status,
                    self._clock(),
                    f"Ignored: {callback.message}" if callback.message else "Ignored",
                    applied=False,
                )
                logger.warning(
                    "Ignoring %s callback for transaction %s; payment is %s and booking is %s",
                    new_status.value,
                    transaction_id,
                    payment.status.value,
                    booking.status.value,
                )
                payment = await self._store.save_payment(payment)
            else:
                payment.record(new_status, self._clock(), callback.message)
                payment.status = new_status
                payment.response = PaymentResponse(
                    code=callback.code,
                    message=callback.message,
                    book_status=callback.book_status,
                    crs_pnr=callback.crs_pnr,
                    redirect_mode=callback.redirect_mode,
                    post_data=callback.post_data,
                )
                payment = await self._store.save_payment(payment)

                booking.transition(target)
                booking.payment_status = (
                    BookingPaymentStatus.COMPLETED if is_success else BookingPaymentStatus.FAILED
                )
                if callback.crs_pnr and booking.flights:
                    booking.flights[0].pnr = callback.crs_pnr
                booking = await self._store.update_booking(booking)
                logger.info(
                    "Payment %s for booking %s; booking is %s",
                    new_status.value,
                    booking.booking_reference,
                    booking.status.value,
                )

        is_json = _is_json_request(content_type)
        return CallbackResult(
            payment=payment,
            booking=booking,
            status=payment.status,
            applied=not contradicts,
            is_json=is_json,
            redirect_url=None if is_json else f"{self._frontend_url}/booking/{booking.booking_reference}",
            message=callback.message,
        )

    # ------------------------------------------------------------------
    # retrieval

    async def retrieve_booking(
        self,
        reference_type: Optional[str],
        reference_number: Optional[str],
        *,
        service_type: str = "FLT",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> RetrievedBooking:
        errors = []
        if not reference_type:
            errors.append("Reference type is required")
        if not reference_number:
            errors.append("Reference number is required")
        if errors:
            raise ValidationError(errors)

        credentials = await self._credentials.get_credentials()
        payload = {
            **(extra or {}),
            "ReferenceType": reference_type,
            "ReferenceNumber": reference_number,
            "ClientID": credentials.client_id,
            "ServiceType": service_type,
        }
        response = await self._client.retrieve_booking(payload, token=credentials.token)

        segments = []
        taxes = 0.0
        if response.trips and response.trips[0].journey:
            priced_segments = response.trips[0].journey[0].segments
            segments = [build_priced_segment(segment) for segment in priced_segments]
            if priced_segments and priced_segments[0].fares and priced_segments[0].fares.total_tax:
                taxes = priced_segments[0].fares.total_tax

        return RetrievedBooking(
            transaction_id=response.transaction_id,
            booking_status=response.status,
            payment_status=response.payment_status,
            flights=segments,
            passengers=[
                {
                    "title": pax.get("Title"),
                    "first_name": pax.get("FName"),
                    "last_name": pax.get("LName"),
                    "pax_type": pax.get("PTC"),
                }
                for pax in response.pax
            ],
            base_amount=response.airline_net_fare,
            taxes=taxes,
            total_amount=response.gross_amount,
        )
