"""
Availability resolution.

Merges the weekly slot templates of one or more courts with their active
reservations and the holiday calendar. Range queries issue a fixed number of
database reads (templates, reservations, holidays) however many dates the
range spans.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from courtbook.catalog import Catalog
from courtbook.crud import CellKey, ReservationCRUD
from courtbook.errors import FailureReason
from courtbook.holidays import HolidayCalendar
from courtbook.models import Resource, SlotTemplate
from courtbook.pricing import PriceBreakdown, compute_price
from courtbook.schemas import (
    AvailabilitySummary,
    CellAvailability,
    DayAvailability,
    SlotAvailability,
    SlotShape,
)
from courtbook.timeslots import day_of_week, iter_dates

TemplateKey = tuple[UUID, int, str, str]


@dataclass
class Cell:
    """One (court, date, slot shape) combination of a range request."""

    resource: Resource
    day: date
    start_time: str
    end_time: str
    template: SlotTemplate | None = None
    reason: FailureReason | None = None
    price: PriceBreakdown | None = None

    @property
    def available(self) -> bool:
        return self.reason is None

    def to_schema(self) -> CellAvailability:
        return CellAvailability(
            resource_id=self.resource.id,
            resource_name=self.resource.name,
            date=self.day,
            start_time=self.start_time,
            end_time=self.end_time,
            slot_template_id=self.template.id if self.template else None,
            available=self.available,
            reason=self.reason.value if self.reason else None,
            price=self.price.total if self.price else Decimal("0.00"),
        )


def summarize(cells: Sequence[Cell]) -> AvailabilitySummary:
    available = sum(1 for c in cells if c.available)
    return AvailabilitySummary(
        total=len(cells), available=available, unavailable=len(cells) - available
    )


class AvailabilityResolver:
    def __init__(
        self,
        catalog: Catalog,
        reservations: ReservationCRUD,
        holidays: HolidayCalendar,
    ) -> None:
        self.catalog = catalog
        self.reservations = reservations
        self.holidays = holidays

    async def for_date(self, resource_id: UUID, day: date) -> DayAvailability:
        """Every active template of the court for `day`, flagged free or booked."""
        resource = await self.catalog.get_active_resource(resource_id)
        weekday = day_of_week(day)
        templates = [
            t
            for t in await self.catalog.templates_for([resource.id])
            if t.day_of_week == weekday
        ]
        occupied = await self.reservations.active_cells([resource.id], day, day)
        holiday = await self.holidays.is_holiday(day, resource.id)

        slots = []
        for template in sorted(templates, key=lambda t: t.start_time):
            booked = (resource.id, template.id, day) in occupied
            price = compute_price(
                resource.hourly_rate,
                template.start_time,
                template.end_time,
                holiday.multiplier,
            )
            slots.append(
                SlotAvailability(
                    slot_template_id=template.id,
                    start_time=template.start_time,
                    end_time=template.end_time,
                    available=not booked,
                    reason=FailureReason.ALREADY_BOOKED.value if booked else None,
                    price=price.total,
                )
            )
        return DayAvailability(
            resource_id=resource.id, date=day, day_of_week=weekday, slots=slots
        )

    async def resolve(
        self,
        resources: Sequence[Resource],
        from_date: date,
        to_date: date,
        weekdays: Iterable[int] | None,
        shapes: Sequence[SlotShape],
    ) -> list[Cell]:
        """
        Expand courts x dates x shapes into cells, in that nesting order.

        A cell is unavailable when no active template of that weekday has
        exactly the requested start/end, or when that template is already
        reserved on the date.
        """
        if not resources:
            return []
        resource_ids = [r.id for r in resources]
        dates = list(iter_dates(from_date, to_date, set(weekdays) if weekdays else None))

        templates: dict[TemplateKey, SlotTemplate] = {
            (t.resource_id, t.day_of_week, t.start_time, t.end_time): t
            for t in await self.catalog.templates_for(resource_ids)
        }
        occupied: set[CellKey] = await self.reservations.active_cells(
            resource_ids, from_date, to_date
        )
        holidays = await self.holidays.multipliers_for_range(
            from_date, to_date, resource_ids
        )

        cells: list[Cell] = []
        for resource in resources:
            for day in dates:
                weekday = day_of_week(day)
                for shape in shapes:
                    cell = Cell(resource, day, shape.start_time, shape.end_time)
                    cell.template = templates.get(
                        (resource.id, weekday, shape.start_time, shape.end_time)
                    )
                    if cell.template is None:
                        cell.reason = FailureReason.NOT_CONFIGURED
                    else:
                        cell.price = compute_price(
                            resource.hourly_rate,
                            shape.start_time,
                            shape.end_time,
                            holidays.multiplier(resource.id, day),
                        )
                        if (resource.id, cell.template.id, day) in occupied:
                            cell.reason = FailureReason.ALREADY_BOOKED
                    cells.append(cell)
        return cells
