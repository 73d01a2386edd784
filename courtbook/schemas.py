from __future__ import annotations

import datetime as dt
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from courtbook import errors
from courtbook.models import (
    PaymentMethod,
    PaymentStatus,
    ReservationStatus,
    SportType,
)
from courtbook.timeslots import normalize_time, validate_range


def _time_field(value: str) -> str:
    try:
        return normalize_time(value)
    except errors.ValidationError as exc:
        raise ValueError(exc.message) from None


class SlotShape(BaseModel):
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def check_format(cls, v: str) -> str:
        return _time_field(v)

    @model_validator(mode="after")
    def check_order(self) -> SlotShape:
        try:
            validate_range(self.start_time, self.end_time)
        except errors.ValidationError as exc:
            raise ValueError(exc.message) from None
        return self


# ---------------------------------------------------------------------------
# Single reservations
# ---------------------------------------------------------------------------


class AddOnIn(BaseModel):
    kind: str = Field(min_length=1, max_length=60)
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)


class ReservationCreate(BaseModel):
    resource_id: UUID
    slot_template_id: UUID
    date: dt.date
    add_ons: list[AddOnIn] = Field(default_factory=list)


class ReservationStatusUpdate(BaseModel):
    status: ReservationStatus


class AddOnResponse(BaseModel):
    kind: str
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class PricingBreakdown(BaseModel):
    hourly_rate: Decimal
    duration_hours: Decimal
    holiday_multiplier: Decimal
    base_amount: Decimal
    holiday_surcharge: Decimal
    add_ons_amount: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class ReservationResponse(BaseModel):
    id: UUID
    resource_id: UUID
    slot_template_id: UUID
    user_id: UUID
    created_by: UUID
    date: dt.date
    start_time: str
    end_time: str
    status: ReservationStatus
    hourly_rate: Decimal
    holiday_multiplier: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    payment_status: PaymentStatus
    currency: str
    created_at: dt.datetime
    updated_at: dt.datetime
    add_ons: list[AddOnResponse] = Field(default_factory=list)
    pricing: PricingBreakdown | None = None

    model_config = ConfigDict(from_attributes=True)


class ReservationFilters(BaseModel):
    """Bind to a FastAPI route via Depends(ReservationFilters)."""

    resource_id: UUID | None = None
    status: ReservationStatus | None = None
    date: dt.date | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class SlotAvailability(BaseModel):
    slot_template_id: UUID
    start_time: str
    end_time: str
    available: bool
    reason: str | None = None
    price: Decimal


class DayAvailability(BaseModel):
    resource_id: UUID
    date: dt.date
    day_of_week: int
    slots: list[SlotAvailability]


class BulkQuery(BaseModel):
    sport_type: SportType
    venue_id: UUID | None = None
    resource_ids: list[UUID] | None = None
    from_date: dt.date
    to_date: dt.date
    weekdays: list[int] = Field(min_length=1)
    slot_shapes: list[SlotShape] = Field(min_length=1)

    @field_validator("weekdays")
    @classmethod
    def check_weekdays(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("Days must be integers between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def check_dates(self) -> BulkQuery:
        if self.to_date < self.from_date:
            raise ValueError("To date must be after or equal to from date")
        return self


class BulkBookingRequest(BulkQuery):
    ignore_unavailable: bool = False
    strict: bool = False
    user_id: UUID | None = None  # book on behalf of another user


class CellAvailability(BaseModel):
    resource_id: UUID
    resource_name: str
    date: dt.date
    start_time: str
    end_time: str
    slot_template_id: UUID | None = None
    available: bool
    reason: str | None = None
    price: Decimal


class AvailabilitySummary(BaseModel):
    total: int
    available: int
    unavailable: int


class BulkAvailabilityResponse(BaseModel):
    cells: list[CellAvailability]
    summary: AvailabilitySummary


class CellFailure(BaseModel):
    resource_id: UUID
    resource_name: str
    date: dt.date
    start_time: str
    end_time: str
    reason: errors.FailureReason
    message: str


class BulkSummary(BaseModel):
    requested: int
    attempted: int
    successful: int
    failed: int
    skipped: int


class BulkBookingResponse(BaseModel):
    successful: list[UUID]
    failed: list[CellFailure]
    summary: BulkSummary
    aborted: bool = False
    interrupted: bool = False
    error: str | None = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentCreate(BaseModel):
    amount: Decimal = Field(ge=0)
    method: PaymentMethod
    transaction_id: str | None = Field(default=None, max_length=120)


class PaymentTransactionResponse(BaseModel):
    amount: Decimal
    method: PaymentMethod
    transaction_id: str | None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: UUID
    reservation_id: UUID
    amount: Decimal
    method: PaymentMethod
    transaction_id: str | None
    status: PaymentStatus

    model_config = ConfigDict(from_attributes=True)


class PaymentResult(BaseModel):
    reservation: ReservationResponse
    payment: PaymentResponse
    transactions: list[PaymentTransactionResponse]


# ---------------------------------------------------------------------------
# Admin: holidays, courts, slot templates
# ---------------------------------------------------------------------------


class HolidayCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    date: dt.date
    resource_id: UUID | None = None
    multiplier: Decimal | None = Field(default=None, ge=1)
    description: str | None = None


class HolidayUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    date: dt.date | None = None
    multiplier: Decimal | None = Field(default=None, ge=1)
    description: str | None = None
    is_active: bool | None = None


class HolidayResponse(BaseModel):
    id: UUID
    name: str
    date: dt.date
    resource_id: UUID | None
    multiplier: Decimal
    description: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class HolidayCheck(BaseModel):
    is_holiday: bool
    multiplier: Decimal
    name: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ResourceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    venue_id: UUID
    sport_type: SportType = SportType.OTHER
    hourly_rate: Decimal = Field(ge=0)
    is_restricted: bool = False


class ResourceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    is_restricted: bool | None = None
    is_active: bool | None = None


class ResourceResponse(BaseModel):
    id: UUID
    name: str
    venue_id: UUID
    sport_type: SportType
    hourly_rate: Decimal
    is_active: bool
    is_restricted: bool

    model_config = ConfigDict(from_attributes=True)


class SlotTemplateCreate(SlotShape):
    day_of_week: int = Field(ge=0, le=6)


class SlotTemplateBulkCreate(BaseModel):
    slots: list[SlotTemplateCreate] = Field(min_length=1, max_length=100)


class SlotTemplateUpdate(BaseModel):
    is_active: bool


class SlotTemplateResponse(BaseModel):
    id: UUID
    resource_id: UUID
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
