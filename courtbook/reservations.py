"""
The single-reservation path and the reservation state machine.

    create: resolve court + template -> access gate -> holiday lookup
            -> pricing -> conflict-guarded insert
    PENDING -> CONFIRMED -> COMPLETED
    PENDING | CONFIRMED -> CANCELLED
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from courtbook import settings
from courtbook.access import AccessGate
from courtbook.catalog import Catalog
from courtbook.crud import ReservationCRUD
from courtbook.errors import (
    AuthorizationError,
    NotFound,
    SlotNotConfigured,
    StateError,
    TimedOut,
)
from courtbook.holidays import HolidayCalendar
from courtbook.models import (
    AddOnLine,
    Payment,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    Resource,
    SlotTemplate,
)
from courtbook.pricing import AddOnCharge, PriceBreakdown, compute_price
from courtbook.schemas import (
    AddOnResponse,
    PricingBreakdown,
    ReservationResponse,
)
from courtbook.timeslots import day_of_week

_VALID_TRANSITIONS: dict[ReservationStatus, set[ReservationStatus]] = {
    ReservationStatus.PENDING: {
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
    },
    ReservationStatus.CONFIRMED: {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
    },
    ReservationStatus.COMPLETED: set(),
    ReservationStatus.CANCELLED: set(),
}


def assert_transition(old: ReservationStatus, new: ReservationStatus) -> None:
    if new in _VALID_TRANSITIONS[old]:
        return
    if old == ReservationStatus.CANCELLED and new == ReservationStatus.CANCELLED:
        raise StateError("Booking is already cancelled", code="ALREADY_CANCELLED")
    if old == ReservationStatus.COMPLETED and new == ReservationStatus.CANCELLED:
        raise StateError("Cannot cancel a completed booking", code="ALREADY_COMPLETED")
    raise StateError(
        f"Cannot transition from '{old}' to '{new}'",
        code="INVALID_TRANSITION",
        details={"allowed": sorted(s.value for s in _VALID_TRANSITIONS[old])},
    )


def _utc_today() -> date:
    return datetime.now(UTC).date()


@dataclass
class BookedReservation:
    reservation: Reservation
    price: PriceBreakdown
    add_ons: list[AddOnCharge] = field(default_factory=list)


def reservation_response(
    inst: Reservation,
    add_ons: Iterable[AddOnLine | AddOnCharge] = (),
    price: PriceBreakdown | None = None,
) -> ReservationResponse:
    # add_ons on the model is an unfetched reverse relation; read scalars only
    scalars = ReservationResponse.model_fields.keys() - {"add_ons", "pricing"}
    return ReservationResponse(
        **{name: getattr(inst, name) for name in scalars},
        add_ons=[AddOnResponse.model_validate(a, from_attributes=True) for a in add_ons],
        pricing=(
            PricingBreakdown.model_validate(price, from_attributes=True)
            if price is not None
            else None
        ),
    )


class ReservationService:
    def __init__(
        self,
        catalog: Catalog,
        reservations: ReservationCRUD,
        holidays: HolidayCalendar,
        access: AccessGate,
        timeout: float = settings.DB_TIMEOUT_SECONDS,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.catalog = catalog
        self.reservations = reservations
        self.holidays = holidays
        self.access = access
        self.timeout = timeout
        self.today = today

    @property
    def connection_name(self) -> str:
        return self.reservations.connection_name

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_reservation(
        self,
        *,
        user_id: UUID,
        resource_id: UUID,
        slot_template_id: UUID,
        day: date,
        add_ons: Iterable[AddOnCharge] = (),
        created_by: UUID | None = None,
        status: ReservationStatus = ReservationStatus.PENDING,
    ) -> BookedReservation:
        resource = await self.catalog.get_active_resource(resource_id)
        await self.access.ensure(user_id, resource)

        template = await self.catalog.get_slot_template(slot_template_id)
        if template.resource_id != resource.id or not template.is_active:
            raise NotFound("Time slot not found or inactive", code="SLOT_NOT_FOUND")
        if template.day_of_week != day_of_week(day):
            raise SlotNotConfigured(
                resource.id, day, template.start_time, template.end_time
            )

        holiday = await self.holidays.is_holiday(day, resource.id)
        return await self.book(
            resource,
            template,
            day,
            holiday.multiplier,
            user_id=user_id,
            created_by=created_by or user_id,
            add_ons=add_ons,
            status=status,
        )

    async def book(
        self,
        resource: Resource,
        template: SlotTemplate,
        day: date,
        holiday_multiplier: Decimal,
        *,
        user_id: UUID,
        created_by: UUID,
        add_ons: Iterable[AddOnCharge] = (),
        status: ReservationStatus = ReservationStatus.PENDING,
    ) -> BookedReservation:
        """Price and insert one reservation for an already-resolved cell."""
        add_ons = list(add_ons)
        price = compute_price(
            resource.hourly_rate,
            template.start_time,
            template.end_time,
            holiday_multiplier,
            add_ons,
        )
        try:
            async with asyncio.timeout(self.timeout):
                inst = await self.reservations.try_reserve(
                    resource=resource,
                    template=template,
                    day=day,
                    user_id=user_id,
                    created_by=created_by,
                    price=price,
                    add_ons=add_ons,
                    status=status,
                )
        except TimeoutError:
            raise TimedOut(
                "Timed out while reserving the slot",
                code="TIMED_OUT",
                details={"resource_id": str(resource.id), "date": day.isoformat()},
            ) from None
        return BookedReservation(reservation=inst, price=price, add_ons=add_ons)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def cancel(
        self, reservation_id: UUID, requested_by: UUID | None = None
    ) -> Reservation:
        """
        Cancel a PENDING or CONFIRMED reservation and free its slot.

        `requested_by` restricts the cancellation to the reservation owner;
        admins pass None. A PAID payment is flipped to REFUNDED, the audit
        trail is left untouched.
        """
        async with in_transaction(self.connection_name) as conn:
            inst = (
                await Reservation.filter(id=reservation_id)
                .select_for_update()
                .using_db(conn)
                .first()
            )
            if inst is None:
                raise NotFound("Booking not found", code="BOOKING_NOT_FOUND")
            if requested_by is not None and inst.user_id != requested_by:
                raise AuthorizationError(
                    "You are not authorized to cancel this booking",
                    code="NOT_BOOKING_OWNER",
                )
            assert_transition(inst.status, ReservationStatus.CANCELLED)

            inst.status = ReservationStatus.CANCELLED
            inst.active_slot_key = None
            update_fields = ["status", "active_slot_key", "updated_at"]

            payment = await Payment.get_or_none(reservation_id=inst.id, using_db=conn)
            if payment is not None and payment.status == PaymentStatus.PAID:
                payment.status = PaymentStatus.REFUNDED
                await payment.save(using_db=conn, update_fields=["status", "updated_at"])
                inst.payment_status = PaymentStatus.REFUNDED
                update_fields.append("payment_status")

            await inst.save(using_db=conn, update_fields=update_fields)

        logger.info(
            "Reservation {} cancelled (payment_status={})",
            reservation_id,
            inst.payment_status,
        )
        return inst

    async def transition(
        self, reservation_id: UUID, new_status: ReservationStatus
    ) -> Reservation:
        match new_status:
            case ReservationStatus.CANCELLED:
                return await self.cancel(reservation_id)
            case ReservationStatus.CONFIRMED | ReservationStatus.COMPLETED:
                return await self._advance(reservation_id, new_status)
            case ReservationStatus.PENDING:
                inst = await self.reservations.get_reservation(reservation_id)
                assert_transition(inst.status, new_status)
                return inst

    async def _advance(
        self, reservation_id: UUID, new_status: ReservationStatus
    ) -> Reservation:
        async with in_transaction(self.connection_name) as conn:
            inst = (
                await Reservation.filter(id=reservation_id)
                .select_for_update()
                .using_db(conn)
                .first()
            )
            if inst is None:
                raise NotFound("Booking not found", code="BOOKING_NOT_FOUND")
            assert_transition(inst.status, new_status)

            update_fields = ["status", "updated_at"]
            if new_status == ReservationStatus.COMPLETED:
                if inst.date > self.today():
                    raise StateError(
                        "Cannot complete a booking before its date",
                        code="NOT_YET_PLAYED",
                    )
                inst.active_slot_key = None
                update_fields.append("active_slot_key")
            inst.status = new_status
            await inst.save(using_db=conn, update_fields=update_fields)

        logger.info("Reservation {} -> {}", reservation_id, new_status)
        return inst
