"""
Full endpoint test suite for /bookings.

Testing strategy:
  - Auth/scope deps are overridden via conftest.build_app()
  - Engine handles are injected as mocks via client_factory(..., service=mock)
  - Engine errors are raised from the mocks to check the HTTP mapping
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from courtbook.bulk import BulkRun
from courtbook.deps import get_current_user
from courtbook.errors import (
    NotFound,
    ReservationConflict,
    SlotNotConfigured,
    StateError,
)
from courtbook.payments import PaymentOutcome
from courtbook.pricing import compute_price
from courtbook.reservations import BookedReservation
from courtbook.schemas import (
    AvailabilitySummary,
    BulkAvailabilityResponse,
    BulkBookingResponse,
    BulkSummary,
    DayAvailability,
    SlotAvailability,
)
from courtbook.scopes import BookingScope

from .factories import (
    ADMIN_ID,
    BOOKING_ID,
    CUSTOMER_ID,
    MANAGER_ID,
    MONDAY,
    RESOURCE_ID,
    SLOT_ID,
    booking_create_payload,
    bulk_payload,
    make_admin,
    make_customer,
    make_manager,
    payment_obj,
    reservation_obj,
)


def _crud(**methods) -> MagicMock:
    mock = MagicMock()
    mock.list_reservations = AsyncMock(return_value=[])
    mock.get_reservation = AsyncMock(return_value=reservation_obj())
    mock.add_ons_of = AsyncMock(return_value=[])
    for name, value in methods.items():
        setattr(mock, name, value)
    return mock


def _bulk_response(**overrides) -> BulkBookingResponse:
    base = dict(
        successful=[BOOKING_ID],
        failed=[],
        summary=BulkSummary(requested=1, attempted=1, successful=1, failed=0, skipped=0),
    )
    return BulkBookingResponse(**{**base, **overrides})


# ---------------------------------------------------------------------------
# GET /bookings
# ---------------------------------------------------------------------------


class TestListBookings:
    def test_customer_sees_own_bookings(self, client_factory):
        crud = _crud(list_reservations=AsyncMock(return_value=[reservation_obj()]))
        resp = client_factory(make_customer(), crud=crud).get("/bookings/")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 1
        assert data[0]["id"] == str(BOOKING_ID)
        _, kwargs = crud.list_reservations.call_args
        assert kwargs.get("user_id") == CUSTOMER_ID

    def test_admin_sees_all_bookings(self, client_factory):
        crud = _crud()
        resp = client_factory(make_admin(), crud=crud).get("/bookings/")
        assert resp.status_code == 200
        _, kwargs = crud.list_reservations.call_args
        assert kwargs.get("user_id") is None

    def test_filters_forwarded(self, client_factory):
        crud = _crud()
        resp = client_factory(make_customer(), crud=crud).get(
            "/bookings/", params={"status": "confirmed", "date": MONDAY.isoformat()}
        )
        assert resp.status_code == 200
        _, kwargs = crud.list_reservations.call_args
        assert kwargs["filters"].status == "confirmed"
        assert kwargs["filters"].date == MONDAY

    def test_missing_auth_headers_returns_422(self, anon_app):
        with TestClient(anon_app) as c:
            resp = c.get("/bookings/")
        assert resp.status_code == 422

    def test_no_relevant_scope_returns_403(self, anon_app):
        async def _no_scope_user():
            return make_customer(scopes=["venues:read"])

        anon_app.dependency_overrides[get_current_user] = _no_scope_user
        with TestClient(anon_app) as c:
            resp = c.get("/bookings/")
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# GET /bookings/{id}
# ---------------------------------------------------------------------------


class TestGetBooking:
    def test_customer_gets_own_booking(self, client_factory):
        crud = _crud()
        resp = client_factory(make_customer(), crud=crud).get(f"/bookings/{BOOKING_ID}")
        assert resp.status_code == 200
        assert resp.json()["id"] == str(BOOKING_ID)
        _, kwargs = crud.get_reservation.call_args
        assert kwargs.get("user_id") == CUSTOMER_ID

    def test_admin_can_see_any_booking(self, client_factory):
        crud = _crud()
        resp = client_factory(make_admin(), crud=crud).get(f"/bookings/{BOOKING_ID}")
        assert resp.status_code == 200
        assert crud.get_reservation.call_args.kwargs.get("user_id") is None

    def test_add_ons_included(self, client_factory):
        line = MagicMock(kind="racket", quantity=2, unit_price=Decimal("3.50"))
        crud = _crud(add_ons_of=AsyncMock(return_value=[line]))
        resp = client_factory(make_customer(), crud=crud).get(f"/bookings/{BOOKING_ID}")
        assert resp.json()["add_ons"] == [
            {"kind": "racket", "quantity": 2, "unit_price": "3.50"}
        ]

    def test_not_found_returns_404(self, client_factory):
        crud = _crud(
            get_reservation=AsyncMock(side_effect=NotFound("Booking not found"))
        )
        resp = client_factory(make_customer(), crud=crud).get(f"/bookings/{BOOKING_ID}")
        assert resp.status_code == 404
        assert resp.json()["detail"]["message"] == "Booking not found"


# ---------------------------------------------------------------------------
# POST /bookings
# ---------------------------------------------------------------------------


class TestCreateBooking:
    def _service(self) -> MagicMock:
        price = compute_price("500", "18:00", "19:00")
        service = MagicMock()
        service.create_reservation = AsyncMock(
            return_value=BookedReservation(reservation=reservation_obj(), price=price)
        )
        return service

    def test_success_returns_201_with_pricing(self, client_factory, no_redis):
        service = self._service()
        resp = client_factory(make_customer(), service=service).post(
            "/bookings/", json=booking_create_payload()
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == str(BOOKING_ID)
        assert body["pricing"]["total"] == "500.00"
        no_redis.invalidate.assert_awaited_once_with([(RESOURCE_ID, MONDAY)])

    def test_payload_forwarded_to_service(self, client_factory):
        service = self._service()
        client_factory(make_customer(), service=service).post(
            "/bookings/",
            json=booking_create_payload(
                add_ons=[{"kind": "racket", "quantity": 1, "unit_price": "4"}]
            ),
        )
        kwargs = service.create_reservation.call_args.kwargs
        assert kwargs["user_id"] == CUSTOMER_ID
        assert kwargs["resource_id"] == RESOURCE_ID
        assert kwargs["slot_template_id"] == SLOT_ID
        assert kwargs["day"] == MONDAY
        assert kwargs["add_ons"][0].kind == "racket"

    def test_conflict_returns_409(self, client_factory):
        service = MagicMock()
        service.create_reservation = AsyncMock(
            side_effect=ReservationConflict(RESOURCE_ID, SLOT_ID, MONDAY)
        )
        resp = client_factory(make_customer(), service=service).post(
            "/bookings/", json=booking_create_payload()
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_BOOKED"

    def test_not_configured_returns_409(self, client_factory):
        service = MagicMock()
        service.create_reservation = AsyncMock(
            side_effect=SlotNotConfigured(RESOURCE_ID, MONDAY, "18:00", "19:00")
        )
        resp = client_factory(make_customer(), service=service).post(
            "/bookings/", json=booking_create_payload()
        )
        assert resp.status_code == 409
        assert "not configured for this day" in resp.json()["detail"]["message"]

    def test_invalid_payload_returns_422(self, client_factory):
        resp = client_factory(make_customer()).post(
            "/bookings/", json={"resource_id": str(RESOURCE_ID)}
        )
        assert resp.status_code == 422

    def test_zero_quantity_add_on_returns_422(self, client_factory):
        resp = client_factory(make_customer()).post(
            "/bookings/",
            json=booking_create_payload(
                add_ons=[{"kind": "racket", "quantity": 0, "unit_price": "4"}]
            ),
        )
        assert resp.status_code == 422

    def test_missing_write_scope_returns_403(self, anon_app):
        async def _read_only():
            return make_customer(scopes=[BookingScope.READ])

        anon_app.dependency_overrides[get_current_user] = _read_only
        with TestClient(anon_app) as c:
            resp = c.post("/bookings/", json=booking_create_payload())
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Cancel / status / payments
# ---------------------------------------------------------------------------


class TestCancelBooking:
    def test_customer_cancels_own(self, client_factory, no_redis):
        service = MagicMock()
        service.cancel = AsyncMock(return_value=reservation_obj(status="cancelled"))
        resp = client_factory(make_customer(), service=service).post(
            f"/bookings/{BOOKING_ID}/cancel"
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert service.cancel.call_args.kwargs["requested_by"] == CUSTOMER_ID
        no_redis.invalidate.assert_awaited_once()

    def test_admin_cancels_anyone(self, client_factory):
        service = MagicMock()
        service.cancel = AsyncMock(return_value=reservation_obj(status="cancelled"))
        client_factory(make_admin(), service=service).post(
            f"/bookings/{BOOKING_ID}/cancel"
        )
        assert service.cancel.call_args.kwargs["requested_by"] is None

    def test_recancel_returns_409(self, client_factory):
        service = MagicMock()
        service.cancel = AsyncMock(
            side_effect=StateError(
                "Booking is already cancelled", code="ALREADY_CANCELLED"
            )
        )
        resp = client_factory(make_customer(), service=service).post(
            f"/bookings/{BOOKING_ID}/cancel"
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["message"] == "Booking is already cancelled"


class TestUpdateBookingStatus:
    def test_manager_confirms(self, client_factory):
        service = MagicMock()
        service.transition = AsyncMock(return_value=reservation_obj(status="confirmed"))
        resp = client_factory(make_manager(), service=service).patch(
            f"/bookings/{BOOKING_ID}/status", json={"status": "confirmed"}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"
        assert service.transition.call_args.args == (BOOKING_ID, "confirmed")

    def test_unknown_status_returns_422(self, client_factory):
        resp = client_factory(make_manager()).patch(
            f"/bookings/{BOOKING_ID}/status", json={"status": "no_show"}
        )
        assert resp.status_code == 422

    def test_customer_cannot_change_status(self, anon_app):
        async def _customer():
            return make_customer()

        anon_app.dependency_overrides[get_current_user] = _customer
        with TestClient(anon_app) as c:
            resp = c.patch(f"/bookings/{BOOKING_ID}/status", json={"status": "confirmed"})
        assert resp.status_code == 403


class TestRecordPayment:
    def _reconciler(self) -> MagicMock:
        reconciler = MagicMock()
        reconciler.apply_payment = AsyncMock(
            return_value=PaymentOutcome(
                reservation=reservation_obj(
                    paid_amount=Decimal("200.00"),
                    balance_amount=Decimal("300.00"),
                    payment_status="partial",
                ),
                payment=payment_obj(),
                transactions=[
                    MagicMock(
                        amount=Decimal("200.00"),
                        method="online",
                        transaction_id="txn_1",
                        created_at=reservation_obj().created_at,
                    )
                ],
            )
        )
        return reconciler

    def test_partial_payment(self, client_factory):
        reconciler = self._reconciler()
        user = make_customer(scopes=[BookingScope.PAY])
        resp = client_factory(user, reconciler=reconciler).post(
            f"/bookings/{BOOKING_ID}/payments",
            json={"amount": "200", "method": "online", "transaction_id": "txn_1"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["reservation"]["balance_amount"] == "300.00"
        assert body["payment"]["status"] == "partial"
        assert len(body["transactions"]) == 1
        assert reconciler.apply_payment.call_args.args[1] == Decimal("200")

    def test_negative_amount_returns_422(self, client_factory):
        resp = client_factory(make_customer()).post(
            f"/bookings/{BOOKING_ID}/payments", json={"amount": "-1", "method": "cash"}
        )
        assert resp.status_code == 422

    def test_overpayment_returns_409(self, client_factory):
        reconciler = MagicMock()
        reconciler.apply_payment = AsyncMock(
            side_effect=StateError("Payment exceeds the balance due", code="OVERPAYMENT")
        )
        resp = client_factory(make_admin(), reconciler=reconciler).post(
            f"/bookings/{BOOKING_ID}/payments", json={"amount": "900", "method": "cash"}
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "OVERPAYMENT"


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TestAvailability:
    def _day(self) -> DayAvailability:
        return DayAvailability(
            resource_id=RESOURCE_ID,
            date=MONDAY,
            day_of_week=1,
            slots=[
                SlotAvailability(
                    slot_template_id=SLOT_ID,
                    start_time="18:00",
                    end_time="19:00",
                    available=True,
                    price=Decimal("500.00"),
                )
            ],
        )

    def test_cache_miss_resolves(self, client_factory):
        resolver = MagicMock()
        resolver.for_date = AsyncMock(return_value=self._day())
        resp = client_factory(make_customer(), resolver=resolver).get(
            "/bookings/availability",
            params={"resource_id": str(RESOURCE_ID), "date": MONDAY.isoformat()},
        )
        assert resp.status_code == 200
        assert resp.json()["slots"][0]["available"] is True
        resolver.for_date.assert_awaited_once_with(RESOURCE_ID, MONDAY)

    def test_cache_hit_skips_resolver(self, client_factory, no_redis):
        no_redis.get.return_value = self._day().model_dump(mode="json")
        resolver = MagicMock()
        resolver.for_date = AsyncMock()
        resp = client_factory(make_customer(), resolver=resolver).get(
            "/bookings/availability",
            params={"resource_id": str(RESOURCE_ID), "date": MONDAY.isoformat()},
        )
        assert resp.status_code == 200
        resolver.for_date.assert_not_awaited()


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


class TestBulk:
    def test_bulk_availability(self, client_factory):
        allocator = MagicMock()
        allocator.check = AsyncMock(
            return_value=BulkAvailabilityResponse(
                cells=[], summary=AvailabilitySummary(total=0, available=0, unavailable=0)
            )
        )
        resp = client_factory(make_manager(), allocator=allocator).post(
            "/bookings/bulk-availability", json=bulk_payload()
        )
        assert resp.status_code == 200
        assert resp.json()["summary"]["total"] == 0

    def test_bulk_booking_created(self, client_factory, no_redis):
        allocator = MagicMock()
        allocator.allocate = AsyncMock(
            return_value=BulkRun(
                response=_bulk_response(), touched={(RESOURCE_ID, MONDAY)}
            )
        )
        resp = client_factory(make_manager(), allocator=allocator).post(
            "/bookings/bulk", json=bulk_payload()
        )
        assert resp.status_code == 201
        assert resp.json()["successful"] == [str(BOOKING_ID)]
        assert allocator.allocate.call_args.kwargs["created_by"] == MANAGER_ID
        no_redis.invalidate.assert_awaited_once_with({(RESOURCE_ID, MONDAY)})

    def test_aborted_batch_is_409_with_full_result(self, client_factory):
        allocator = MagicMock()
        allocator.allocate = AsyncMock(
            return_value=BulkRun(
                response=_bulk_response(
                    aborted=True, error="Too many booking failures. Stopping."
                )
            )
        )
        resp = client_factory(make_admin(), allocator=allocator).post(
            "/bookings/bulk", json=bulk_payload()
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["aborted"] is True
        assert body["successful"] == [str(BOOKING_ID)]
        assert body["error"].startswith("Too many booking failures")
        assert allocator.allocate.call_args.kwargs["created_by"] == ADMIN_ID

    def test_bad_time_format_returns_422(self, client_factory):
        resp = client_factory(make_manager()).post(
            "/bookings/bulk",
            json=bulk_payload(slot_shapes=[{"start_time": "25:00", "end_time": "26:00"}]),
        )
        assert resp.status_code == 422

    def test_reversed_shape_returns_422(self, client_factory):
        resp = client_factory(make_manager()).post(
            "/bookings/bulk",
            json=bulk_payload(slot_shapes=[{"start_time": "10:00", "end_time": "09:00"}]),
        )
        assert resp.status_code == 422

    def test_bad_weekday_returns_422(self, client_factory):
        resp = client_factory(make_manager()).post(
            "/bookings/bulk", json=bulk_payload(weekdays=[7])
        )
        assert resp.status_code == 422

    def test_customer_cannot_bulk_book(self, anon_app):
        async def _customer():
            return make_customer()

        anon_app.dependency_overrides[get_current_user] = _customer
        with TestClient(anon_app) as c:
            resp = c.post("/bookings/bulk", json=bulk_payload())
        assert resp.status_code == 403
