import datetime as dt
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger

from courtbook.cache import invalidate_availability_matching
from courtbook.catalog import Catalog
from courtbook.deps import (
    CurrentUser,
    can_admin_catalog,
    can_admin_holidays,
    get_catalog,
    get_holiday_calendar,
)
from courtbook.holidays import HolidayCalendar
from courtbook.schemas import (
    HolidayCheck,
    HolidayCreate,
    HolidayResponse,
    HolidayUpdate,
    ResourceCreate,
    ResourceResponse,
    ResourceUpdate,
    SlotTemplateBulkCreate,
    SlotTemplateCreate,
    SlotTemplateResponse,
    SlotTemplateUpdate,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Holidays
# ---------------------------------------------------------------------------


@router.get("/holidays", response_model=list[HolidayResponse])
async def list_holidays(
    resource_id: UUID | None = None,
    from_date: dt.date | None = None,
    to_date: dt.date | None = None,
    include_inactive: bool = False,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> list[HolidayResponse]:
    holidays = await calendar.list_holidays(
        resource_id=resource_id,
        from_date=from_date,
        to_date=to_date,
        include_inactive=include_inactive,
    )
    return [HolidayResponse.model_validate(h) for h in holidays]


@router.post(
    "/holidays", response_model=HolidayResponse, status_code=status.HTTP_201_CREATED
)
async def create_holiday(
    payload: HolidayCreate,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> HolidayResponse:
    holiday = await calendar.create_holiday(
        payload.name,
        payload.date,
        resource_id=payload.resource_id,
        multiplier=payload.multiplier,
        description=payload.description,
    )
    # a global entry reprices every court on that date
    await invalidate_availability_matching(holiday.resource_id, holiday.date)
    return HolidayResponse.model_validate(holiday)


@router.get("/holidays/check", response_model=HolidayCheck)
async def check_holiday(
    date: dt.date,
    resource_id: UUID | None = None,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> HolidayCheck:
    return HolidayCheck.model_validate(await calendar.is_holiday(date, resource_id))


@router.get("/holidays/upcoming", response_model=list[HolidayResponse])
async def upcoming_holidays(
    days: int = Query(default=30, ge=1, le=366),
    resource_id: UUID | None = None,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> list[HolidayResponse]:
    holidays = await calendar.upcoming_holidays(days=days, resource_id=resource_id)
    return [HolidayResponse.model_validate(h) for h in holidays]


@router.get("/holidays/{holiday_id}", response_model=HolidayResponse)
async def get_holiday(
    holiday_id: UUID,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> HolidayResponse:
    return HolidayResponse.model_validate(await calendar.get_holiday(holiday_id))


@router.patch("/holidays/{holiday_id}", response_model=HolidayResponse)
async def update_holiday(
    holiday_id: UUID,
    payload: HolidayUpdate,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> HolidayResponse:
    previous_date = (await calendar.get_holiday(holiday_id)).date
    holiday = await calendar.update_holiday(
        holiday_id, **payload.model_dump(exclude_unset=True)
    )
    await invalidate_availability_matching(holiday.resource_id, holiday.date)
    if previous_date != holiday.date:
        await invalidate_availability_matching(holiday.resource_id, previous_date)
    return HolidayResponse.model_validate(holiday)


@router.delete("/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_holiday(
    holiday_id: UUID,
    _: CurrentUser = Depends(can_admin_holidays),
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> None:
    holiday = await calendar.delete_holiday(holiday_id)
    await invalidate_availability_matching(holiday.resource_id, holiday.date)


# ---------------------------------------------------------------------------
# Courts and slot templates
# ---------------------------------------------------------------------------


@router.post(
    "/resources", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED
)
async def create_resource(
    payload: ResourceCreate,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> ResourceResponse:
    resource = await catalog.create_resource(
        payload.name,
        payload.venue_id,
        payload.hourly_rate,
        sport_type=payload.sport_type,
        is_restricted=payload.is_restricted,
    )
    logger.info("Court created: id={} name={}", resource.id, resource.name)
    return ResourceResponse.model_validate(resource)


@router.patch("/resources/{resource_id}", response_model=ResourceResponse)
async def update_resource(
    resource_id: UUID,
    payload: ResourceUpdate,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> ResourceResponse:
    resource = await catalog.update_resource(
        resource_id, **payload.model_dump(exclude_unset=True)
    )
    await invalidate_availability_matching(resource_id=resource_id)
    return ResourceResponse.model_validate(resource)


@router.delete("/resources/{resource_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_resource(
    resource_id: UUID,
    response: Response,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> None:
    """Deletes the court, or deactivates it once it has bookings."""
    deleted = await catalog.remove_resource(resource_id)
    await invalidate_availability_matching(resource_id=resource_id)
    response.headers["X-Court-Removal"] = "deleted" if deleted else "deactivated"


@router.get("/resources/{resource_id}/slots", response_model=list[SlotTemplateResponse])
async def list_slots(
    resource_id: UUID,
    include_inactive: bool = False,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> list[SlotTemplateResponse]:
    templates = await catalog.list_slot_templates(
        resource_id, include_inactive=include_inactive
    )
    return [SlotTemplateResponse.model_validate(t) for t in templates]


@router.post(
    "/resources/{resource_id}/slots",
    response_model=SlotTemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_slot(
    resource_id: UUID,
    payload: SlotTemplateCreate,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> SlotTemplateResponse:
    template = await catalog.add_slot_template(
        resource_id, payload.day_of_week, payload.start_time, payload.end_time
    )
    await invalidate_availability_matching(resource_id=resource_id)
    return SlotTemplateResponse.model_validate(template)


@router.post(
    "/resources/{resource_id}/slots/bulk",
    response_model=list[SlotTemplateResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_slots(
    resource_id: UUID,
    payload: SlotTemplateBulkCreate,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> list[SlotTemplateResponse]:
    """All or nothing: one overlapping entry rejects the whole batch."""
    templates = await catalog.add_slot_templates(
        resource_id,
        [(s.day_of_week, s.start_time, s.end_time) for s in payload.slots],
    )
    await invalidate_availability_matching(resource_id=resource_id)
    return [SlotTemplateResponse.model_validate(t) for t in templates]


@router.patch("/slots/{slot_template_id}", response_model=SlotTemplateResponse)
async def update_slot(
    slot_template_id: UUID,
    payload: SlotTemplateUpdate,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> SlotTemplateResponse:
    template = await catalog.set_slot_active(slot_template_id, payload.is_active)
    await invalidate_availability_matching(resource_id=template.resource_id)
    return SlotTemplateResponse.model_validate(template)


@router.delete("/slots/{slot_template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_template_id: UUID,
    response: Response,
    _: CurrentUser = Depends(can_admin_catalog),
    catalog: Catalog = Depends(get_catalog),
) -> None:
    """Deletes the slot, or deactivates it once it has bookings."""
    template = await catalog.get_slot_template(slot_template_id)
    deleted = await catalog.remove_slot_template(slot_template_id)
    await invalidate_availability_matching(resource_id=template.resource_id)
    response.headers["X-Slot-Removal"] = "deleted" if deleted else "deactivated"
