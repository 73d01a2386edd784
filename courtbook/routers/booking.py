import datetime as dt
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from courtbook.availability import AvailabilityResolver
from courtbook.bulk import BulkAllocator
from courtbook.cache import (
    get_availability_cache,
    invalidate_availability_cache,
    set_availability_cache,
)
from courtbook.crud import ReservationCRUD
from courtbook.deps import (
    CurrentUser,
    can_bulk_book,
    can_cancel_booking,
    can_manage_booking,
    can_pay_booking,
    can_read_booking,
    can_write_booking,
    get_availability_resolver,
    get_bulk_allocator,
    get_current_user,
    get_payment_reconciler,
    get_reservation_crud,
    get_reservation_service,
)
from courtbook.payments import PaymentReconciler
from courtbook.pricing import AddOnCharge
from courtbook.reservations import ReservationService, reservation_response
from courtbook.schemas import (
    BulkAvailabilityResponse,
    BulkBookingRequest,
    BulkBookingResponse,
    BulkQuery,
    DayAvailability,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
    PaymentTransactionResponse,
    ReservationCreate,
    ReservationFilters,
    ReservationResponse,
    ReservationStatusUpdate,
)
from courtbook.scopes import BookingScope

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _sees_all(user: CurrentUser) -> bool:
    return user.has_any(BookingScope.ADMIN, BookingScope.ADMIN_READ)


def _acts_for_anyone(user: CurrentUser) -> bool:
    return user.has_any(BookingScope.ADMIN, BookingScope.ADMIN_WRITE)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@router.get("/availability", response_model=DayAvailability)
async def get_availability(
    resource_id: UUID,
    date: dt.date,
    _: CurrentUser = Depends(get_current_user),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
) -> DayAvailability:
    """
    Every configured slot of a court on one date, flagged free or booked.
    Any authenticated user can call this; the response contains NO user identity.
    """
    cached = await get_availability_cache(resource_id, date)
    if cached is not None:
        logger.debug("Cache hit for availability: {} {}", resource_id, date)
        return DayAvailability(**cached)

    logger.debug("Cache miss for availability: {} {}", resource_id, date)
    availability = await resolver.for_date(resource_id, date)
    await set_availability_cache(
        resource_id, date, availability.model_dump(mode="json")
    )
    return availability


@router.post("/bulk-availability", response_model=BulkAvailabilityResponse)
async def check_bulk_availability(
    payload: BulkQuery,
    _: CurrentUser = Depends(can_bulk_book),
    allocator: BulkAllocator = Depends(get_bulk_allocator),
) -> BulkAvailabilityResponse:
    return await allocator.check(payload)


@router.post(
    "/bulk",
    response_model=BulkBookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": BulkBookingResponse}},
)
async def create_bulk_bookings(
    payload: BulkBookingRequest,
    request: Request,
    current_user: CurrentUser = Depends(can_bulk_book),
    allocator: BulkAllocator = Depends(get_bulk_allocator),
):
    """
    Book every courts x dates x slots cell the request expands to.

    Cells that could not be booked are listed in `failed`. When the batch is
    aborted the response is a 409 that still carries every committed id.
    """
    run = await allocator.allocate(
        payload,
        created_by=current_user.id,
        is_disconnected=request.is_disconnected,
    )
    await invalidate_availability_cache(run.touched)
    if run.response.aborted:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=run.response.model_dump(mode="json"),
        )
    return run.response


# ---------------------------------------------------------------------------
# Single reservations
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[ReservationResponse])
async def list_bookings(
    filters: ReservationFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_booking),
    crud: ReservationCRUD = Depends(get_reservation_crud),
) -> list[ReservationResponse]:
    if _sees_all(current_user):
        reservations = await crud.list_reservations(filters=filters)
    else:
        reservations = await crud.list_reservations(
            filters=filters, user_id=current_user.id
        )
    return [reservation_response(r) for r in reservations]


@router.post(
    "/", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED
)
async def create_booking(
    payload: ReservationCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    booked = await service.create_reservation(
        user_id=current_user.id,
        resource_id=payload.resource_id,
        slot_template_id=payload.slot_template_id,
        day=payload.date,
        add_ons=[
            AddOnCharge(kind=a.kind, quantity=a.quantity, unit_price=a.unit_price)
            for a in payload.add_ons
        ],
    )
    await invalidate_availability_cache([(payload.resource_id, payload.date)])
    return reservation_response(booked.reservation, booked.add_ons, booked.price)


@router.get("/{booking_id}", response_model=ReservationResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_booking),
    crud: ReservationCRUD = Depends(get_reservation_crud),
) -> ReservationResponse:
    if _sees_all(current_user):
        reservation = await crud.get_reservation(booking_id)
    else:
        reservation = await crud.get_reservation(booking_id, user_id=current_user.id)
    return reservation_response(reservation, await crud.add_ons_of(booking_id))


@router.post("/{booking_id}/cancel", response_model=ReservationResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_cancel_booking),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    # Admins cancel anyone's booking; customers only their own
    requested_by = None if _acts_for_anyone(current_user) else current_user.id
    reservation = await service.cancel(booking_id, requested_by=requested_by)
    await invalidate_availability_cache([(reservation.resource_id, reservation.date)])
    return reservation_response(reservation)


@router.patch("/{booking_id}/status", response_model=ReservationResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: ReservationStatusUpdate,
    _: CurrentUser = Depends(can_manage_booking),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    reservation = await service.transition(booking_id, payload.status)
    await invalidate_availability_cache([(reservation.resource_id, reservation.date)])
    return reservation_response(reservation)


@router.post("/{booking_id}/payments", response_model=PaymentResult)
async def record_payment(
    booking_id: UUID,
    payload: PaymentCreate,
    _: CurrentUser = Depends(can_pay_booking),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentResult:
    outcome = await reconciler.apply_payment(
        booking_id, payload.amount, payload.method, payload.transaction_id
    )
    return PaymentResult(
        reservation=reservation_response(outcome.reservation),
        payment=PaymentResponse.model_validate(outcome.payment),
        transactions=[
            PaymentTransactionResponse.model_validate(t) for t in outcome.transactions
        ],
    )
