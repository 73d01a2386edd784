from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger

from courtbook import settings
from courtbook.access import AccessChecker, AccessGate
from courtbook.availability import AvailabilityResolver
from courtbook.bulk import BulkAllocator
from courtbook.catalog import Catalog
from courtbook.crud import ReservationCRUD
from courtbook.holidays import HolidayCalendar
from courtbook.models import Resource
from courtbook.payments import PaymentReconciler
from courtbook.reservations import ReservationService
from courtbook.scopes import BOOKING_SCOPE_DESCRIPTIONS, BookingScope

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.users_ms_url}/auth/token",
    scopes=BOOKING_SCOPE_DESCRIPTIONS,
)


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return BookingScope.ADMIN in self.scopes

    def has_any(self, *scopes: str) -> bool:
        return any(s in self.scopes for s in scopes)


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified — we just trust these headers.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.
    Holders of the admin super-scope pass every check.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.is_admin:
            return current_user
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_cancel_booking = require_scopes(BookingScope.CANCEL)
can_manage_booking = require_scopes(BookingScope.MANAGE)
can_bulk_book = require_scopes(BookingScope.BULK)
can_pay_booking = require_scopes(BookingScope.PAY)
can_admin_holidays = require_scopes(BookingScope.ADMIN_HOLIDAYS)
can_admin_catalog = require_scopes(BookingScope.ADMIN_CATALOG)


async def can_read_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read their own bookings or any booking.
    - bookings:read        → customer sees own bookings
    - admin:bookings:read  → admin sees all
    """
    if not current_user.has_any(
        BookingScope.READ, BookingScope.ADMIN, BookingScope.ADMIN_READ
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (customers) "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# VenueAccessClient: asks venues-ms whether a user may book a private court
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_venues_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.venues_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class VenueAccessClient:
    """
    AccessChecker backed by the venues-ms internal API.
    Any upstream failure denies access; a private court is never opened up
    because venues-ms is down.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_venues_http_client()

    async def can_access(self, user_id: UUID, resource: Resource) -> bool:
        try:
            resp = await self._client.get(
                f"/venues/{resource.venue_id}/access/{user_id}",
                params={"court_id": str(resource.id)},
            )
        except httpx.RequestError:
            logger.warning(
                "venues-ms unreachable, denying access: user_id={} court_id={}",
                user_id,
                resource.id,
            )
            return False
        if resp.status_code >= 400 or not resp.content:
            logger.warning(
                "venues-ms returned {} for access check, denying", resp.status_code
            )
            return False
        try:
            return bool(resp.json().get("allowed", False))
        except ValueError:
            return False


_venue_access_client = VenueAccessClient()


def get_access_checker() -> AccessChecker:
    return _venue_access_client


# ---------------------------------------------------------------------------
# Engine providers: one set of handles per request, bound to a connection
# ---------------------------------------------------------------------------


def get_catalog() -> Catalog:
    return Catalog(settings.DB_CONNECTION)


def get_reservation_crud() -> ReservationCRUD:
    return ReservationCRUD(settings.DB_CONNECTION)


def get_holiday_calendar() -> HolidayCalendar:
    return HolidayCalendar(settings.DB_CONNECTION)


def get_payment_reconciler() -> PaymentReconciler:
    return PaymentReconciler(settings.DB_CONNECTION)


def get_access_gate(
    checker: AccessChecker = Depends(get_access_checker),
) -> AccessGate:
    return AccessGate(checker)


def get_reservation_service(
    catalog: Catalog = Depends(get_catalog),
    reservations: ReservationCRUD = Depends(get_reservation_crud),
    holidays: HolidayCalendar = Depends(get_holiday_calendar),
    access: AccessGate = Depends(get_access_gate),
) -> ReservationService:
    return ReservationService(catalog, reservations, holidays, access)


def get_availability_resolver(
    catalog: Catalog = Depends(get_catalog),
    reservations: ReservationCRUD = Depends(get_reservation_crud),
    holidays: HolidayCalendar = Depends(get_holiday_calendar),
) -> AvailabilityResolver:
    return AvailabilityResolver(catalog, reservations, holidays)


def get_bulk_allocator(
    catalog: Catalog = Depends(get_catalog),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
    service: ReservationService = Depends(get_reservation_service),
) -> BulkAllocator:
    return BulkAllocator(catalog, resolver, service)
