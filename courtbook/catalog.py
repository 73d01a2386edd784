"""
Courts and their weekly slot templates.

Court CRUD belongs to venues-ms; this module keeps the local copy the booking
engine reads, plus the template rules the engine depends on.
"""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from courtbook.errors import Conflict, NotFound, ResourceInactive, ValidationError
from courtbook.models import Reservation, Resource, SlotTemplate, SportType
from courtbook.pricing import to_amount
from courtbook.timeslots import overlaps, validate_range


class Catalog:
    def __init__(self, connection_name: str = "default") -> None:
        self.connection_name = connection_name

    @property
    def _db(self) -> BaseDBAsyncClient:
        return connections.get(self.connection_name)

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    async def create_resource(
        self,
        name: str,
        venue_id: UUID,
        hourly_rate: object,
        sport_type: SportType = SportType.OTHER,
        is_restricted: bool = False,
    ) -> Resource:
        return await Resource.create(
            using_db=self._db,
            name=name,
            venue_id=venue_id,
            hourly_rate=to_amount(hourly_rate, "hourly_rate"),
            sport_type=sport_type,
            is_restricted=is_restricted,
        )

    async def get_resource(self, resource_id: UUID) -> Resource:
        resource = await Resource.get_or_none(id=resource_id, using_db=self._db)
        if resource is None:
            raise NotFound("Court not found", code="RESOURCE_NOT_FOUND")
        return resource

    async def get_active_resource(self, resource_id: UUID) -> Resource:
        resource = await self.get_resource(resource_id)
        if not resource.is_active:
            raise ResourceInactive(resource_id)
        return resource

    async def find_resources(
        self,
        sport_type: SportType,
        venue_id: UUID | None = None,
        resource_ids: list[UUID] | None = None,
    ) -> list[Resource]:
        """Active courts of a sport, optionally narrowed to a venue or id list."""
        qs = Resource.filter(sport_type=sport_type, is_active=True).using_db(self._db)
        if venue_id is not None:
            qs = qs.filter(venue_id=venue_id)
        if resource_ids:
            qs = qs.filter(id__in=resource_ids)
        return await qs.order_by("name")

    async def remove_resource(self, resource_id: UUID) -> bool:
        """Delete a court, or deactivate it once it has reservation history.

        Returns True when the row was deleted, False when it was deactivated.
        """
        resource = await self.get_resource(resource_id)
        has_history = (
            await Reservation.filter(resource_id=resource_id).using_db(self._db).exists()
        )
        if has_history:
            resource.is_active = False
            await resource.save(using_db=self._db, update_fields=["is_active"])
            logger.info("Court {} deactivated (has reservations)", resource_id)
            return False
        await resource.delete(using_db=self._db)
        return True

    async def update_resource(self, resource_id: UUID, **changes) -> Resource:
        """Apply the non-None fields of `changes` (name, rate, flags)."""
        resource = await self.get_resource(resource_id)
        if changes.get("hourly_rate") is not None:
            changes["hourly_rate"] = to_amount(changes["hourly_rate"], "hourly_rate")
        updated = [k for k, v in changes.items() if v is not None]
        for key in updated:
            setattr(resource, key, changes[key])
        if updated:
            await resource.save(
                using_db=self._db, update_fields=[*updated, "updated_at"]
            )
            logger.info("Court {} updated: {}", resource_id, ", ".join(updated))
        return resource

    # ------------------------------------------------------------------
    # Slot templates
    # ------------------------------------------------------------------

    async def _assert_no_overlap(
        self,
        resource_id: UUID,
        day_of_week: int,
        start: str,
        end: str,
        exclude_id: UUID | None = None,
    ) -> None:
        qs = SlotTemplate.filter(
            resource_id=resource_id, day_of_week=day_of_week, is_active=True
        ).using_db(self._db)
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        for other in await qs:
            if overlaps(start, end, other.start_time, other.end_time):
                raise Conflict(
                    f"Slot {start}-{end} overlaps {other.start_time}-{other.end_time}",
                    code="SLOT_OVERLAP",
                    details={
                        "day_of_week": day_of_week,
                        "conflicting_slot_id": str(other.id),
                    },
                )

    async def add_slot_template(
        self, resource_id: UUID, day_of_week: int, start_time: str, end_time: str
    ) -> SlotTemplate:
        if not 0 <= day_of_week <= 6:
            raise ValidationError(
                "Day of week must be between 0 (Sunday) and 6 (Saturday)",
                code="INVALID_WEEKDAY",
            )
        start, end = validate_range(start_time, end_time)
        await self.get_resource(resource_id)
        await self._assert_no_overlap(resource_id, day_of_week, start, end)
        return await SlotTemplate.create(
            using_db=self._db,
            resource_id=resource_id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
        )

    async def add_slot_templates(
        self, resource_id: UUID, slots: list[tuple[int, str, str]]
    ) -> list[SlotTemplate]:
        """
        Create several templates at once, all or nothing.

        Each (day_of_week, start, end) is checked against the court's active
        templates and against the other entries of the same request.
        """
        await self.get_resource(resource_id)
        accepted: list[tuple[int, str, str]] = []
        for day_of_week, start_time, end_time in slots:
            if not 0 <= day_of_week <= 6:
                raise ValidationError(
                    "Day of week must be between 0 (Sunday) and 6 (Saturday)",
                    code="INVALID_WEEKDAY",
                )
            start, end = validate_range(start_time, end_time)
            await self._assert_no_overlap(resource_id, day_of_week, start, end)
            for day, other_start, other_end in accepted:
                if day == day_of_week and overlaps(start, end, other_start, other_end):
                    raise Conflict(
                        f"Slot {start}-{end} overlaps {other_start}-{other_end}",
                        code="SLOT_OVERLAP",
                        details={"day_of_week": day_of_week},
                    )
            accepted.append((day_of_week, start, end))

        async with in_transaction(self.connection_name) as conn:
            templates = [
                await SlotTemplate.create(
                    using_db=conn,
                    resource_id=resource_id,
                    day_of_week=day,
                    start_time=start,
                    end_time=end,
                )
                for day, start, end in accepted
            ]
        logger.info("Created {} slots for court {}", len(templates), resource_id)
        return templates

    async def list_slot_templates(
        self, resource_id: UUID, include_inactive: bool = False
    ) -> list[SlotTemplate]:
        await self.get_resource(resource_id)
        qs = SlotTemplate.filter(resource_id=resource_id).using_db(self._db)
        if not include_inactive:
            qs = qs.filter(is_active=True)
        return await qs.order_by("day_of_week", "start_time")

    async def get_slot_template(self, slot_template_id: UUID) -> SlotTemplate:
        template = await SlotTemplate.get_or_none(id=slot_template_id, using_db=self._db)
        if template is None:
            raise NotFound("Time slot not found", code="SLOT_NOT_FOUND")
        return template

    async def set_slot_active(
        self, slot_template_id: UUID, active: bool
    ) -> SlotTemplate:
        template = await self.get_slot_template(slot_template_id)
        if active and not template.is_active:
            await self._assert_no_overlap(
                template.resource_id,
                template.day_of_week,
                template.start_time,
                template.end_time,
                exclude_id=template.id,
            )
        template.is_active = active
        await template.save(using_db=self._db, update_fields=["is_active"])
        return template

    async def remove_slot_template(self, slot_template_id: UUID) -> bool:
        """Delete a template, or deactivate it once it has reservation history."""
        template = await self.get_slot_template(slot_template_id)
        has_history = (
            await Reservation.filter(slot_template_id=slot_template_id)
            .using_db(self._db)
            .exists()
        )
        if has_history:
            await self.set_slot_active(slot_template_id, False)
            return False
        await template.delete(using_db=self._db)
        return True

    async def templates_for(self, resource_ids: list[UUID]) -> list[SlotTemplate]:
        """Every active template of the given courts, in one query."""
        return await SlotTemplate.filter(
            resource_id__in=resource_ids, is_active=True
        ).using_db(self._db)
