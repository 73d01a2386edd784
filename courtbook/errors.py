"""
Booking error taxonomy.

Engine code raises these instead of HTTPException so the bulk orchestrator
can catch and itemize per-cell failures. The HTTP layer renders any
BookingError through `install_error_handlers`.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class FailureReason(StrEnum):
    ALREADY_BOOKED = "already booked"
    NOT_CONFIGURED = "not configured for this day"
    RESOURCE_INACTIVE = "resource inactive"
    ACCESS_DENIED = "access denied"
    TIMED_OUT = "timed out"
    INVALID = "invalid"
    ERROR = "error"


class BookingError(Exception):
    """Base class for every error the booking engine raises."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    reason: FailureReason = FailureReason.ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class ResourceInactive(NotFound):
    reason = FailureReason.RESOURCE_INACTIVE

    def __init__(self, resource_id: Any) -> None:
        super().__init__(
            "Court not found or inactive",
            code="RESOURCE_INACTIVE",
            details={"resource_id": str(resource_id)},
        )


class Conflict(BookingError):
    status_code = status.HTTP_409_CONFLICT


class ReservationConflict(Conflict):
    reason = FailureReason.ALREADY_BOOKED

    def __init__(self, resource_id: Any, slot_template_id: Any, date: Any) -> None:
        super().__init__(
            "This time slot is already booked for the selected date",
            code="ALREADY_BOOKED",
            details={
                "resource_id": str(resource_id),
                "slot_template_id": str(slot_template_id),
                "date": str(date),
            },
        )


class SlotNotConfigured(Conflict):
    reason = FailureReason.NOT_CONFIGURED

    def __init__(self, resource_id: Any, date: Any, start: str, end: str) -> None:
        super().__init__(
            f"Time slot {start}-{end} not configured for this day",
            code="SLOT_NOT_CONFIGURED",
            details={"resource_id": str(resource_id), "date": str(date)},
        )


class ValidationError(BookingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    reason = FailureReason.INVALID


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = FailureReason.ACCESS_DENIED


class StateError(BookingError):
    status_code = status.HTTP_409_CONFLICT


class TimedOut(BookingError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    reason = FailureReason.TIMED_OUT


class BulkAborted(BookingError):
    """Batch-level failure: the orchestrator stopped issuing cells."""

    status_code = status.HTTP_409_CONFLICT


async def _booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)
