"""Typed views over the supplier's JSON payloads.

Required fields are declared without defaults so a payload that drifts from the
contract fails loudly (as :class:`ProtocolError`) instead of leaking ``None``
through the normaliser. Unknown keys are kept in ``model_extra``.
"""
from __future__ import annotations

from typing import Annotated, Any, Optional, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from flight_booking.core.errors import ProtocolError

SUCCESS_CODE = "200"
PRICE_CHANGED_CODE = "1500"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


def _to_messages(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value if item is not None]


Amount = Annotated[Optional[float], BeforeValidator(_blank_to_none)]
Count = Annotated[Optional[int], BeforeValidator(_blank_to_none)]
Text = Annotated[Optional[str], BeforeValidator(_to_text)]
RequiredText = Annotated[str, BeforeValidator(_to_text), Field(min_length=1)]
Messages = Annotated[list[str], BeforeValidator(_to_messages)]


class SupplierModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SupplierEnvelope(SupplierModel):
    """Fields present on every supplier response."""

    code: RequiredText = Field(alias="Code")
    msg: Messages = Field(default_factory=list, alias="Msg")

    @property
    def message(self) -> Optional[str]:
        return self.msg[0] if self.msg else None


class SignatureResponse(SupplierEnvelope):
    token: RequiredText = Field(alias="Token")
    client_id: RequiredText = Field(alias="ClientID")
    tui: Text = Field(default=None, alias="TUI")


class SearchSubmitResponse(SupplierEnvelope):
    tui: RequiredText = Field(alias="TUI")


class SearchConnection(SupplierModel):
    airport: Text = Field(default=None, alias="Airport")
    airport_name: Text = Field(default=None, alias="ArrAirportName")
    duration: Text = Field(default=None, alias="Duration")
    type: Text = Field(default=None, alias="Type")


class JourneyInclusions(SupplierModel):
    baggage: Text = Field(default=None, alias="Baggage")
    meals: Text = Field(default=None, alias="Meals")
    piece_description: Text = Field(default=None, alias="PieceDescription")


class SupplierNotice(SupplierModel):
    notice: Text = Field(default=None, alias="Notice")
    link: Text = Field(default=None, alias="Link")
    notice_type: Text = Field(default=None, alias="NoticeType")


class ExpressJourney(SupplierModel):
    """One flight option as returned by the express search poll."""

    origin: RequiredText = Field(alias="From")
    destination: RequiredText = Field(alias="To")
    departure_time: RequiredText = Field(alias="DepartureTime")
    arrival_time: RequiredText = Field(alias="ArrivalTime")
    validating_carrier: RequiredText = Field(alias="VAC")

    flight_no: Text = Field(default=None, alias="FlightNo")
    provider: Text = Field(default=None, alias="Provider")
    airline_name: Text = Field(default=None, alias="AirlineName")
    marketing_carrier: Text = Field(default=None, alias="MAC")
    operating_carrier: Text = Field(default=None, alias="OAC")
    origin_name: Text = Field(default=None, alias="FromName")
    destination_name: Text = Field(default=None, alias="ToName")
    departure_terminal: Text = Field(default=None, alias="DepartureTerminal")
    arrival_terminal: Text = Field(default=None, alias="ArrivalTerminal")
    duration: Text = Field(default=None, alias="Duration")
    stops: Count = Field(default=None, alias="Stops")
    connections: list[SearchConnection] = Field(default_factory=list, alias="Connections")
    aircraft: Text = Field(default=None, alias="AirCraft")
    rbd: Text = Field(default=None, alias="RBD")
    fare_class: Text = Field(default=None, alias="FareClass")
    cabin: Text = Field(default=None, alias="Cabin")
    gross_fare: Amount = Field(default=None, alias="GrossFare")
    net_fare: Amount = Field(default=None, alias="NetFare")
    total_commission: Amount = Field(default=None, alias="TotalCommission")
    total_transaction_fee: Amount = Field(default=None, alias="TotalTransactionFee")
    total_vat_on_fee: Amount = Field(default=None, alias="TotalVatOnTFee")
    wp_net_fare: Amount = Field(default=None, alias="WPNetFare")
    fare_basis_code: Text = Field(default=None, alias="FBC")
    fare_type: Text = Field(default=None, alias="FareType")
    trend_fare: Any = Field(default=None, alias="TrendFare")
    promo: Any = Field(default=None, alias="Promo")
    seats: Count = Field(default=None, alias="Seats")
    refundable: Text = Field(default=None, alias="Refundable")
    hold: Any = Field(default=None, alias="Hold")
    hold_info: Any = Field(default=None, alias="HoldInfo")
    amenities: Text = Field(default=None, alias="Amenities")
    inclusions: Optional[JourneyInclusions] = Field(default=None, alias="Inclusions")
    notice: Text = Field(default=None, alias="Notice")
    notice_link: Text = Field(default=None, alias="NoticeLink")
    notice_type: Text = Field(default=None, alias="NoticeType")
    return_identifier: Any = Field(default=None, alias="ReturnIdentifier")
    group_count: Any = Field(default=None, alias="GroupCount")
    journey_key: Text = Field(default=None, alias="JourneyKey")
    index: Text = Field(default=None, alias="Index")
    gfl: Any = Field(default=None, alias="GFL")
    recommended: Any = Field(default=None, alias="Recommended")
    gds_priority: Any = Field(default=None, alias="GDSPriority")
    is_bus_station: Any = Field(default=None, alias="IsBusStation")
    channel_code: Text = Field(default=None, alias="ChannelCode")

    @field_validator("connections", mode="before")
    @classmethod
    def _connections_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SearchTrip(SupplierModel):
    journey: list[ExpressJourney] = Field(default_factory=list, alias="Journey")

    @field_validator("journey", mode="before")
    @classmethod
    def _journey_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SearchPollResponse(SupplierEnvelope):
    completed: Any = Field(default=None, alias="Completed")
    currency_code: Text = Field(default=None, alias="CurrencyCode")
    trips: list[SearchTrip] = Field(default_factory=list, alias="Trips")
    notices: list[SupplierNotice] = Field(default_factory=list, alias="Notices")

    @field_validator("trips", "notices", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return _none_to_list(value)

    @property
    def is_complete(self) -> bool:
        if self.completed is True or str(self.completed).lower() == "true":
            return True
        extra = self.model_extra or {}
        return extra.get("completed") is True


class SegmentFlight(SupplierModel):
    departure_code: RequiredText = Field(alias="DepartureCode")
    departure_time: RequiredText = Field(alias="DepartureTime")
    arrival_code: RequiredText = Field(alias="ArrivalCode")
    arrival_time: RequiredText = Field(alias="ArrivalTime")

    flight_no: Text = Field(default=None, alias="FlightNo")
    airline: Text = Field(default=None, alias="Airline")
    validating_carrier: Text = Field(default=None, alias="VAC")
    marketing_carrier: Text = Field(default=None, alias="MAC")
    operating_carrier: Text = Field(default=None, alias="OAC")
    aircraft: Text = Field(default=None, alias="AirCraft")
    equipment_type: Text = Field(default=None, alias="EquipmentType")
    departure_name: Text = Field(default=None, alias="DepAirportName")
    departure_terminal: Text = Field(default=None, alias="DepartureTerminal")
    arrival_name: Text = Field(default=None, alias="ArrAirportName")
    arrival_terminal: Text = Field(default=None, alias="ArrivalTerminal")
    duration: Text = Field(default=None, alias="Duration")
    fare_basis_code: Text = Field(default=None, alias="FBC")
    cabin: Text = Field(default=None, alias="Cabin")
    refundable: Text = Field(default=None, alias="Refundable")
    fuid: Text = Field(default=None, alias="FUID")

    @property
    def carrier_code(self) -> Optional[str]:
        if self.validating_carrier:
            return self.validating_carrier
        if self.airline and "|" in self.airline:
            # "IndiGo|6E|6E" style labels carry the carrier code second.
            parts = [part.strip() for part in self.airline.split("|")]
            if len(parts) > 1 and parts[1]:
                return parts[1]
        return self.marketing_carrier


class SegmentFares(SupplierModel):
    total_base_fare: Amount = Field(default=None, alias="TotalBaseFare")
    total_tax: Amount = Field(default=None, alias="TotalTax")
    gross_fare: Amount = Field(default=None, alias="GrossFare")
    net_fare: Amount = Field(default=None, alias="NetFare")


class PricedSegment(SupplierModel):
    flight: SegmentFlight = Field(alias="Flight")
    fares: Optional[SegmentFares] = Field(default=None, alias="Fares")


class PricedJourney(SupplierModel):
    provider: Text = Field(default=None, alias="Provider")
    duration: Text = Field(default=None, alias="Duration")
    stops: Count = Field(default=None, alias="Stops")
    segments: list[PricedSegment] = Field(default_factory=list, alias="Segments")

    @field_validator("segments", mode="before")
    @classmethod
    def _segments_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class PricedTrip(SupplierModel):
    journey: list[PricedJourney] = Field(default_factory=list, alias="Journey")

    @field_validator("journey", mode="before")
    @classmethod
    def _journey_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class _PricedPayload(SupplierEnvelope):
    trips: list[PricedTrip] = Field(default_factory=list, alias="Trips")
    ssr: list[dict[str, Any]] = Field(default_factory=list, alias="SSR")
    net_amount: Amount = Field(default=None, alias="NetAmount")
    gross_amount: Amount = Field(default=None, alias="GrossAmount")
    currency_code: Text = Field(default=None, alias="CurrencyCode")

    @field_validator("trips", "ssr", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return _none_to_list(value)

    def baggage_description(self) -> Optional[str]:
        for entry in self.ssr:
            if entry.get("Code") == "BAG":
                return entry.get("Description")
        return None


class SmartPricerResponse(SupplierEnvelope):
    # TUI is only present on success codes; the pricing layer checks it after the code.
    tui: Text = Field(default=None, alias="TUI")


class PricerResponse(_PricedPayload):
    tui: Text = Field(default=None, alias="TUI")
    origin: Text = Field(default=None, alias="From")
    destination: Text = Field(default=None, alias="To")
    origin_name: Text = Field(default=None, alias="FromName")
    destination_name: Text = Field(default=None, alias="ToName")
    onward_date: Text = Field(default=None, alias="OnwardDate")
    return_date: Text = Field(default=None, alias="ReturnDate")
    adults: Count = Field(default=None, alias="ADT")
    children: Count = Field(default=None, alias="CHD")
    infants: Count = Field(default=None, alias="INF")
    insurance_premium: Amount = Field(default=None, alias="InsPremium")
    rules: list[dict[str, Any]] = Field(default_factory=list, alias="Rules")

    @field_validator("rules", mode="before")
    @classmethod
    def _rules_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class ItineraryResponse(_PricedPayload):
    transaction_id: RequiredText = Field(alias="TransactionID")
    tui: Text = Field(default=None, alias="TUI")
    hold: Any = Field(default=None, alias="Hold")


class StartPayResponse(SupplierEnvelope):
    gateway_code: Text = Field(default=None, alias="GatewayCode")
    payment_id: Text = Field(default=None, alias="PaymentID")
    redirect_url: Text = Field(default=None, alias="RedirectUrl")
    redirect_mode: Text = Field(default=None, alias="RedirectMode")
    book_status: Text = Field(default=None, alias="BookStatus")
    crs_pnr: Text = Field(default=None, alias="CRSPNR")
    post_data: Any = Field(default=None, alias="PostData")


class PaymentCallbackPayload(SupplierModel):
    """Gateway callback body; every field is optional because the browser leg sends a query string."""

    code: Text = Field(default=None, alias="Code")
    msg: Messages = Field(default_factory=list, alias="Msg")
    book_status: Text = Field(default=None, alias="BookStatus")
    crs_pnr: Text = Field(default=None, alias="CRSPNR")
    redirect_mode: Text = Field(default=None, alias="RedirectMode")
    post_data: Any = Field(default=None, alias="PostData")

    @property
    def message(self) -> Optional[str]:
        return self.msg[0] if self.msg else None


class RetrieveBookingResponse(_PricedPayload):
    transaction_id: Text = Field(default=None, alias="TransactionID")
    status: Text = Field(default=None, alias="Status")
    payment_status: Text = Field(default=None, alias="PaymentStatus")
    pax: list[dict[str, Any]] = Field(default_factory=list, alias="Pax")
    airline_net_fare: Amount = Field(default=None, alias="AirlineNetFare")

    @field_validator("pax", mode="before")
    @classmethod
    def _pax_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SeatInfo(SupplierModel):
    seat_number: RequiredText = Field(alias="SeatNumber")
    seat_status: Text = Field(default=None, alias="SeatStatus")
    seat_type: Text = Field(default=None, alias="SeatType")
    seat_info: Text = Field(default=None, alias="SeatInfo")
    available: Any = Field(default=None, alias="AvailStatus")
    fare: Amount = Field(default=None, alias="Fare")
    tax: Amount = Field(default=None, alias="Tax")
    net_amount: Amount = Field(default=None, alias="SSRNetAmount")
    x_value: Count = Field(default=None, alias="XValue")
    y_value: Count = Field(default=None, alias="YValue")
    ssid: Text = Field(default=None, alias="SSID")


class SeatSegment(SupplierModel):
    flight_no: Text = Field(default=None, alias="FlightNo")
    airline_name: Text = Field(default=None, alias="AirlineName")
    airline_unit: Text = Field(default=None, alias="AirlineUnit")
    seats: list[SeatInfo] = Field(default_factory=list, alias="Seats")

    @field_validator("seats", mode="before")
    @classmethod
    def _seats_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SeatJourney(SupplierModel):
    provider: Text = Field(default=None, alias="Provider")
    segments: list[SeatSegment] = Field(default_factory=list, alias="Segments")

    @field_validator("segments", mode="before")
    @classmethod
    def _segments_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SeatTrip(SupplierModel):
    journey: list[SeatJourney] = Field(default_factory=list, alias="Journey")

    @field_validator("journey", mode="before")
    @classmethod
    def _journey_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SeatLayoutResponse(SupplierEnvelope):
    tui: Text = Field(default=None, alias="TUI")
    trips: list[SeatTrip] = Field(alias="Trips")


class SSRSegment(SupplierModel):
    fuid: Text = Field(default=None, alias="FUID")
    ssr: list[dict[str, Any]] = Field(default_factory=list, alias="SSR")

    @field_validator("ssr", mode="before")
    @classmethod
    def _ssr_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SSRJourney(SupplierModel):
    segments: list[SSRSegment] = Field(default_factory=list, alias="Segments")

    @field_validator("segments", mode="before")
    @classmethod
    def _segments_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SSRTrip(SupplierModel):
    journey: list[SSRJourney] = Field(default_factory=list, alias="Journey")

    @field_validator("journey", mode="before")
    @classmethod
    def _journey_list(cls, value: Any) -> Any:
        return _none_to_list(value)


class SSRResponse(SupplierEnvelope):
    trips: list[SSRTrip] = Field(default_factory=list, alias="Trips")

    @field_validator("trips", mode="before")
    @classmethod
    def _trips_list(cls, value: Any) -> Any:
        return _none_to_list(value)


ModelT = TypeVar("ModelT", bound=SupplierModel)


def parse_response(
    model: Type[ModelT],
    payload: Any,
    *,
    operation: str,
    correlation_token: Optional[str] = None,
) -> ModelT:
    """Validate ``payload`` against ``model`` or raise :class:`ProtocolError`."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        locations = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise ProtocolError(
            f"{model.__name__} failed validation ({', '.join(locations) or 'payload'})",
            operation=operation,
            code=payload.get("Code") if isinstance(payload, dict) else None,
            correlation_token=correlation_token,
        ) from exc
