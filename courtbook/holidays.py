from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.exceptions import IntegrityError
from tortoise.expressions import Q

from courtbook.errors import Conflict, NotFound, ValidationError
from courtbook.models import GLOBAL_SCOPE, HolidayEntry, Resource
from courtbook.pricing import ONE, to_amount

DEFAULT_MULTIPLIER = Decimal("1.5")


@dataclass(frozen=True)
class HolidayMatch:
    is_holiday: bool
    multiplier: Decimal
    name: str | None = None


NO_HOLIDAY = HolidayMatch(is_holiday=False, multiplier=ONE)


def _check_multiplier(value: object) -> Decimal:
    multiplier = to_amount(value, "multiplier")
    if multiplier < ONE:
        raise ValidationError(
            "Holiday multiplier must be at least 1", code="INVALID_MULTIPLIER"
        )
    return multiplier


def _scope_key(resource_id: UUID | None) -> str:
    return GLOBAL_SCOPE if resource_id is None else str(resource_id)


def _duplicate(day: date) -> Conflict:
    return Conflict(
        "Holiday already exists for this date and court",
        code="DUPLICATE_HOLIDAY",
        details={"date": day.isoformat()},
    )


def _scope_filter(resource_id: UUID | None) -> Q:
    if resource_id is None:
        return Q(resource_id__isnull=True)
    return Q(resource_id=resource_id) | Q(resource_id__isnull=True)


class HolidayCalendar:
    """Holiday entries and the date -> multiplier lookup used by pricing."""

    def __init__(self, connection_name: str = "default") -> None:
        self.connection_name = connection_name

    @property
    def _db(self) -> BaseDBAsyncClient:
        return connections.get(self.connection_name)

    async def _assert_unique(
        self, day: date, resource_id: UUID | None, exclude_id: UUID | None = None
    ) -> None:
        qs = HolidayEntry.filter(date=day, scope_key=_scope_key(resource_id))
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        if await qs.using_db(self._db).exists():
            raise _duplicate(day)

    async def create_holiday(
        self,
        name: str,
        day: date,
        resource_id: UUID | None = None,
        multiplier: object = None,
        description: str | None = None,
    ) -> HolidayEntry:
        value = (
            DEFAULT_MULTIPLIER if multiplier is None else _check_multiplier(multiplier)
        )
        await self._assert_unique(day, resource_id)
        if resource_id is not None:
            exists = await Resource.filter(id=resource_id).using_db(self._db).exists()
            if not exists:
                raise NotFound("Court not found", code="RESOURCE_NOT_FOUND")

        try:
            holiday = await HolidayEntry.create(
                using_db=self._db,
                name=name,
                date=day,
                resource_id=resource_id,
                scope_key=_scope_key(resource_id),
                multiplier=value,
                description=description,
            )
        except IntegrityError:
            logger.info("Lost insert race for holiday {} {}", day, resource_id)
            raise _duplicate(day) from None
        logger.info(
            "Holiday created: date={} resource_id={} multiplier={}",
            day,
            resource_id,
            value,
        )
        return holiday

    async def get_holiday(self, holiday_id: UUID) -> HolidayEntry:
        holiday = await HolidayEntry.get_or_none(id=holiday_id, using_db=self._db)
        if holiday is None:
            raise NotFound("Holiday not found", code="HOLIDAY_NOT_FOUND")
        return holiday

    async def update_holiday(self, holiday_id: UUID, **changes) -> HolidayEntry:
        holiday = await self.get_holiday(holiday_id)
        if "multiplier" in changes and changes["multiplier"] is not None:
            changes["multiplier"] = _check_multiplier(changes["multiplier"])
        if changes.get("date") is not None and changes["date"] != holiday.date:
            await self._assert_unique(
                changes["date"], holiday.resource_id, exclude_id=holiday.id
            )

        updated = [k for k, v in changes.items() if v is not None]
        for key in updated:
            setattr(holiday, key, changes[key])
        if updated:
            try:
                await holiday.save(using_db=self._db, update_fields=updated)
            except IntegrityError:
                raise _duplicate(holiday.date) from None
        return holiday

    async def delete_holiday(self, holiday_id: UUID) -> HolidayEntry:
        holiday = await self.get_holiday(holiday_id)
        await holiday.delete(using_db=self._db)
        return holiday

    async def list_holidays(
        self,
        resource_id: UUID | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        include_inactive: bool = False,
    ) -> list[HolidayEntry]:
        qs = HolidayEntry.all().using_db(self._db)
        if resource_id is not None:
            qs = qs.filter(_scope_filter(resource_id))
        if not include_inactive:
            qs = qs.filter(is_active=True)
        if from_date is not None:
            qs = qs.filter(date__gte=from_date)
        if to_date is not None:
            qs = qs.filter(date__lte=to_date)
        return await qs.order_by("date")

    async def upcoming_holidays(
        self,
        days: int = 30,
        resource_id: UUID | None = None,
        today: date | None = None,
    ) -> list[HolidayEntry]:
        """Active holidays from today through `days` days ahead."""
        start = today or datetime.now(UTC).date()
        return await self.list_holidays(
            resource_id=resource_id,
            from_date=start,
            to_date=start + timedelta(days=days),
        )

    async def is_holiday(
        self, day: date, resource_id: UUID | None = None
    ) -> HolidayMatch:
        """Court-specific entries shadow a global entry on the same date."""
        entries = await HolidayEntry.filter(
            _scope_filter(resource_id), date=day, is_active=True
        ).using_db(self._db)
        if not entries:
            return NO_HOLIDAY
        entry = next((e for e in entries if e.resource_id is not None), entries[0])
        return HolidayMatch(
            is_holiday=True, multiplier=Decimal(entry.multiplier), name=entry.name
        )

    async def multipliers_for_range(
        self, from_date: date, to_date: date, resource_ids: list[UUID]
    ) -> "HolidayTable":
        """One query covering every court and date of a bulk request."""
        entries = await HolidayEntry.filter(
            Q(resource_id__in=resource_ids) | Q(resource_id__isnull=True),
            date__gte=from_date,
            date__lte=to_date,
            is_active=True,
        ).using_db(self._db)
        return HolidayTable(entries)


class HolidayTable:
    """In-memory view of the holidays inside one request's date range."""

    def __init__(self, entries: list[HolidayEntry]) -> None:
        self._global: dict[date, Decimal] = {}
        self._scoped: dict[tuple[UUID, date], Decimal] = {}
        for entry in entries:
            if entry.resource_id is None:
                self._global[entry.date] = Decimal(entry.multiplier)
            else:
                self._scoped[(entry.resource_id, entry.date)] = Decimal(entry.multiplier)

    def multiplier(self, resource_id: UUID, day: date) -> Decimal:
        scoped = self._scoped.get((resource_id, day))
        if scoped is not None:
            return scoped
        return self._global.get(day, ONE)
