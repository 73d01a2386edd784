from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from courtbook import settings
from courtbook.errors import NotFound, ReservationConflict
from courtbook.models import (
    ACTIVE_STATUSES,
    AddOnLine,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    Resource,
    SlotTemplate,
)
from courtbook.payments import derive_payment_status
from courtbook.pricing import AddOnCharge, PriceBreakdown
from courtbook.schemas import ReservationFilters

CellKey = tuple[UUID, UUID, date]


def slot_key(resource_id: UUID, slot_template_id: UUID, day: date) -> str:
    return f"{resource_id}:{slot_template_id}:{day.isoformat()}"


class ReservationCRUD:
    """
    Reservation persistence, including the conflict guard.

    Constructed with an explicit connection name so callers (routers, tests,
    the bulk orchestrator) decide which database the writes go to.
    """

    def __init__(self, connection_name: str = "default") -> None:
        self.connection_name = connection_name

    @property
    def _db(self) -> BaseDBAsyncClient:
        return connections.get(self.connection_name)

    async def try_reserve(
        self,
        *,
        resource: Resource,
        template: SlotTemplate,
        day: date,
        user_id: UUID,
        created_by: UUID,
        price: PriceBreakdown,
        add_ons: Iterable[AddOnCharge] = (),
        status: ReservationStatus = ReservationStatus.PENDING,
        currency: str = settings.DEFAULT_CURRENCY,
    ) -> Reservation:
        """
        Atomically claim (resource, template, day) and insert the reservation.

        The locked existence check gives a clean conflict on databases that
        support SELECT ... FOR UPDATE; the unique active_slot_key catches the
        race everywhere else.
        """
        key = slot_key(resource.id, template.id, day)
        payment_status = derive_payment_status(Decimal(0), price.total)
        if payment_status == PaymentStatus.PAID and status == ReservationStatus.PENDING:
            # nothing to pay: a free slot is settled on creation
            status = ReservationStatus.CONFIRMED
        try:
            async with in_transaction(self.connection_name) as conn:
                taken = (
                    await Reservation.filter(
                        resource_id=resource.id,
                        slot_template_id=template.id,
                        date=day,
                        status__in=ACTIVE_STATUSES,
                    )
                    .select_for_update()
                    .using_db(conn)
                    .exists()
                )
                if taken:
                    raise ReservationConflict(resource.id, template.id, day)

                inst = await Reservation.create(
                    using_db=conn,
                    resource_id=resource.id,
                    slot_template_id=template.id,
                    user_id=user_id,
                    created_by=created_by,
                    date=day,
                    start_time=template.start_time,
                    end_time=template.end_time,
                    status=status,
                    active_slot_key=key,
                    hourly_rate=price.hourly_rate,
                    holiday_multiplier=price.holiday_multiplier,
                    total_amount=price.total,
                    paid_amount=0,
                    balance_amount=price.total,
                    payment_status=payment_status,
                    currency=currency,
                )
                for add_on in add_ons:
                    await AddOnLine.create(
                        using_db=conn,
                        reservation_id=inst.id,
                        kind=add_on.kind,
                        quantity=add_on.quantity,
                        unit_price=add_on.unit_price,
                    )
        except IntegrityError:
            logger.info("Lost insert race for slot {}", key)
            raise ReservationConflict(resource.id, template.id, day) from None

        logger.info(
            "Reservation {} created: slot={} status={} total={}",
            inst.id,
            key,
            status,
            price.total,
        )
        return inst

    async def get_reservation(
        self, reservation_id: UUID, user_id: UUID | None = None
    ) -> Reservation:
        filters: dict = {"id": reservation_id}
        if user_id is not None:
            filters["user_id"] = user_id
        inst = await Reservation.get_or_none(using_db=self._db, **filters)
        if inst is None:
            raise NotFound("Booking not found", code="BOOKING_NOT_FOUND")
        return inst

    async def add_ons_of(self, reservation_id: UUID) -> list[AddOnLine]:
        return await AddOnLine.filter(reservation_id=reservation_id).using_db(self._db)

    async def list_reservations(
        self, filters: ReservationFilters, user_id: UUID | None = None
    ) -> list[Reservation]:
        qs = Reservation.all().using_db(self._db)

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if filters.resource_id is not None:
            qs = qs.filter(resource_id=filters.resource_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)
        if filters.date is not None:
            qs = qs.filter(date=filters.date)

        offset = (filters.page - 1) * filters.page_size
        return await qs.offset(offset).limit(filters.page_size)

    async def active_cells(
        self, resource_ids: list[UUID], from_date: date, to_date: date
    ) -> set[CellKey]:
        """Occupied (resource, template, date) cells across a whole range, one query."""
        rows = (
            await Reservation.filter(
                resource_id__in=resource_ids,
                date__gte=from_date,
                date__lte=to_date,
                status__in=ACTIVE_STATUSES,
            )
            .using_db(self._db)
            .only("id", "resource_id", "slot_template_id", "date")
        )
        return {(r.resource_id, r.slot_template_id, r.date) for r in rows}
