"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files — pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise, connections

from courtbook.access import AccessGate
from courtbook.availability import AvailabilityResolver
from courtbook.bulk import BulkAllocator
from courtbook.catalog import Catalog
from courtbook.crud import ReservationCRUD
from courtbook.deps import (
    can_admin_catalog,
    can_admin_holidays,
    can_bulk_book,
    can_cancel_booking,
    can_manage_booking,
    can_pay_booking,
    can_read_booking,
    can_write_booking,
    get_availability_resolver,
    get_bulk_allocator,
    get_catalog,
    get_current_user,
    get_holiday_calendar,
    get_payment_reconciler,
    get_reservation_crud,
    get_reservation_service,
)
from courtbook.errors import install_error_handlers
from courtbook.holidays import HolidayCalendar
from courtbook.payments import PaymentReconciler
from courtbook.reservations import ReservationService
from courtbook.routers import admin, booking

from .factories import FakeAccessChecker, make_admin, make_customer, make_manager

_SCOPE_DEPS = (
    can_read_booking,
    can_write_booking,
    can_cancel_booking,
    can_manage_booking,
    can_bulk_book,
    can_pay_booking,
    can_admin_holidays,
    can_admin_catalog,
    get_current_user,
)

# ---------------------------------------------------------------------------
# Redis is never reached from tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_redis():
    with (
        patch(
            "courtbook.routers.booking.get_availability_cache",
            AsyncMock(return_value=None),
        ) as get_cache,
        patch("courtbook.routers.booking.set_availability_cache", AsyncMock()),
        patch(
            "courtbook.routers.booking.invalidate_availability_cache", AsyncMock()
        ) as invalidate,
        patch(
            "courtbook.routers.admin.invalidate_availability_matching", AsyncMock()
        ) as matching,
    ):
        yield MagicMock(get=get_cache, invalidate=invalidate, matching=matching)


# ---------------------------------------------------------------------------
# App builder — used by all client fixtures
# ---------------------------------------------------------------------------


def _bare_app() -> FastAPI:
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(booking.router)
    app.include_router(admin.router)
    return app


def _returning(value):
    return lambda: value


def build_app(current_user, **engines) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Engine handles (service, crud, resolver, allocator, reconciler, catalog,
    calendar) default to bare MagicMocks; pass your own to set return values.
    """
    app = _bare_app()

    async def _user():
        return current_user

    for dep in _SCOPE_DEPS:
        app.dependency_overrides[dep] = _user

    providers = {
        "service": get_reservation_service,
        "crud": get_reservation_crud,
        "resolver": get_availability_resolver,
        "allocator": get_bulk_allocator,
        "reconciler": get_payment_reconciler,
        "catalog": get_catalog,
        "calendar": get_holiday_calendar,
    }
    for name, provider in providers.items():
        mock = engines.get(name)
        if mock is None:
            mock = MagicMock()
        app.dependency_overrides[provider] = _returning(mock)

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def manager_client():
    return TestClient(build_app(make_manager()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO auth overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    Engine providers are still mocked so nothing reaches a database.
    """
    app = _bare_app()
    for provider in (
        get_reservation_service,
        get_reservation_crud,
        get_availability_resolver,
        get_bulk_allocator,
        get_payment_reconciler,
        get_catalog,
        get_holiday_calendar,
    ):
        app.dependency_overrides[provider] = lambda: MagicMock()
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, **engines) -> TestClient:
        return TestClient(
            build_app(current_user, **engines), raise_server_exceptions=True
        )

    return _make


# ---------------------------------------------------------------------------
# Engine fixtures: in-memory SQLite through Tortoise
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:", modules={"models": ["courtbook.models"]}
    )
    await Tortoise.generate_schemas()
    yield
    await connections.close_all()


@pytest.fixture()
def access_checker() -> FakeAccessChecker:
    return FakeAccessChecker()


@pytest.fixture()
def catalog(db) -> Catalog:
    return Catalog()


@pytest.fixture()
def holidays(db) -> HolidayCalendar:
    return HolidayCalendar()


@pytest.fixture()
def reservations(db) -> ReservationCRUD:
    return ReservationCRUD()


@pytest.fixture()
def reconciler(db) -> PaymentReconciler:
    return PaymentReconciler()


@pytest.fixture()
def service(catalog, reservations, holidays, access_checker) -> ReservationService:
    return ReservationService(
        catalog, reservations, holidays, AccessGate(access_checker)
    )


@pytest.fixture()
def resolver(catalog, reservations, holidays) -> AvailabilityResolver:
    return AvailabilityResolver(catalog, reservations, holidays)


@pytest.fixture()
def allocator(catalog, resolver, service) -> BulkAllocator:
    return BulkAllocator(catalog, resolver, service)
