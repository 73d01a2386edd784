"""
Bulk allocation across a courts x dates x slot-shapes cross product.

Every cell goes through the same conflict-guarded insert as a single
booking, in its own transaction. A failed cell is itemized and the batch
moves on; committed cells are never rolled back, even when the batch is
aborted or the caller disconnects.

Abort rules:
  strict=True                -> stop at the first failed cell
  ignore_unavailable=False   -> stop once more than `failure_threshold`
                                cells in a row have failed
  ignore_unavailable=True    -> never stop early (strict still applies)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from loguru import logger
from tortoise.exceptions import BaseORMException

from courtbook import settings
from courtbook.availability import AvailabilityResolver, Cell, summarize
from courtbook.catalog import Catalog
from courtbook.errors import (
    BookingError,
    BulkAborted,
    FailureReason,
    NotFound,
    ValidationError,
)
from courtbook.models import Reservation, ReservationStatus, Resource
from courtbook.reservations import ReservationService
from courtbook.schemas import (
    BulkAvailabilityResponse,
    BulkBookingRequest,
    BulkBookingResponse,
    BulkQuery,
    BulkSummary,
    CellFailure,
)
from courtbook.timeslots import iter_dates

DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass
class BulkRun:
    response: BulkBookingResponse
    touched: set[tuple[UUID, date]] = field(default_factory=set)


def _failure(cell: Cell, reason: FailureReason, message: str) -> CellFailure:
    return CellFailure(
        resource_id=cell.resource.id,
        resource_name=cell.resource.name,
        date=cell.day,
        start_time=cell.start_time,
        end_time=cell.end_time,
        reason=reason,
        message=message,
    )


def _describe(cell: Cell) -> str:
    slot = f"{cell.start_time}-{cell.end_time}"
    return f"{cell.resource.name} on {cell.day.isoformat()} at {slot}"


class BulkAllocator:
    def __init__(
        self,
        catalog: Catalog,
        resolver: AvailabilityResolver,
        service: ReservationService,
        *,
        max_cells: int = settings.MAX_BULK_CELLS,
        max_span_days: int = settings.MAX_BULK_SPAN_DAYS,
        max_shapes: int = settings.MAX_BULK_SLOT_SHAPES,
        failure_threshold: int = settings.BULK_FAILURE_THRESHOLD,
        concurrency: int = settings.BULK_CONCURRENCY,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.service = service
        self.max_cells = max_cells
        self.max_span_days = max_span_days
        self.max_shapes = max_shapes
        self.failure_threshold = failure_threshold
        self.concurrency = max(1, concurrency)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _validate_window(self, query: BulkQuery) -> None:
        span = (query.to_date - query.from_date).days
        if span > self.max_span_days:
            raise ValidationError(
                f"Date range cannot exceed {self.max_span_days} days",
                code="RANGE_TOO_LONG",
                details={"span_days": span},
            )
        if len(query.slot_shapes) > self.max_shapes:
            raise ValidationError(
                f"At most {self.max_shapes} time slots per request",
                code="TOO_MANY_SLOTS",
            )

    async def _plan(self, query: BulkQuery) -> tuple[list[Resource], list[Cell]]:
        self._validate_window(query)
        resources = await self.catalog.find_resources(
            query.sport_type, query.venue_id, query.resource_ids
        )
        if not resources:
            raise NotFound("No courts found matching the criteria", code="NO_COURTS")

        dates = iter_dates(query.from_date, query.to_date, set(query.weekdays))
        n_dates = sum(1 for _ in dates)
        estimated = len(resources) * n_dates * len(query.slot_shapes)
        if estimated > self.max_cells:
            raise ValidationError(
                f"Request expands to {estimated} cells, the limit is {self.max_cells}",
                code="TOO_MANY_CELLS",
                details={"cells": estimated, "limit": self.max_cells},
            )

        cells = await self.resolver.resolve(
            resources,
            query.from_date,
            query.to_date,
            query.weekdays,
            query.slot_shapes,
        )
        logger.info(
            "Bulk plan: {} courts x {} dates x {} slots = {} cells",
            len(resources),
            n_dates,
            len(query.slot_shapes),
            len(cells),
        )
        return resources, cells

    async def check(self, query: BulkQuery) -> BulkAvailabilityResponse:
        """Dry run: the availability grid without writing anything."""
        _, cells = await self._plan(query)
        summary = summarize(cells)
        logger.info("Bulk availability check completed: {}", summary.model_dump())
        return BulkAvailabilityResponse(
            cells=[c.to_schema() for c in cells], summary=summary
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def _attempt(
        self, cell: Cell, user_id: UUID, created_by: UUID
    ) -> Reservation | CellFailure:
        if cell.reason is not None:
            return _failure(cell, cell.reason, f"{_describe(cell)}: {cell.reason.value}")
        if cell.template is None or cell.price is None:
            reason = FailureReason.NOT_CONFIGURED
            return _failure(cell, reason, f"{_describe(cell)}: {reason.value}")
        try:
            await self.service.access.ensure(user_id, cell.resource)
            booked = await self.service.book(
                cell.resource,
                cell.template,
                cell.day,
                cell.price.holiday_multiplier,
                user_id=user_id,
                created_by=created_by,
                status=ReservationStatus.CONFIRMED,
            )
        except BookingError as exc:
            return _failure(cell, exc.reason, f"{_describe(cell)}: {exc.message}")
        except BaseORMException as exc:
            logger.exception("Database error while booking {}", _describe(cell))
            return _failure(cell, FailureReason.ERROR, f"{_describe(cell)}: {exc}")
        return booked.reservation

    def _check_abort(
        self, request: BulkBookingRequest, consecutive: int, failure: CellFailure
    ) -> None:
        if request.strict:
            raise BulkAborted(
                f"Strict mode: stopping at first failure. {failure.message}",
                code="STRICT_ABORT",
            )
        if not request.ignore_unavailable and consecutive > self.failure_threshold:
            raise BulkAborted(
                "Too many booking failures. Stopping bulk creation. "
                f"Last error: {failure.message}",
                code="TOO_MANY_FAILURES",
            )

    async def allocate(
        self,
        request: BulkBookingRequest,
        *,
        created_by: UUID,
        is_disconnected: DisconnectCheck | None = None,
        today: date | None = None,
    ) -> BulkRun:
        today = today or self.service.today()
        if request.from_date < today:
            raise ValidationError("From date cannot be in the past", code="PAST_DATE")
        _, cells = await self._plan(request)
        user_id = request.user_id or created_by

        run = BulkRun(
            response=BulkBookingResponse(
                successful=[],
                failed=[],
                summary=BulkSummary(
                    requested=len(cells), attempted=0, successful=0, failed=0, skipped=0
                ),
            )
        )
        result = run.response
        consecutive = 0

        for start in range(0, len(cells), self.concurrency):
            if is_disconnected is not None and await is_disconnected():
                logger.warning(
                    "Caller disconnected, stopping bulk booking after {} cells",
                    result.summary.attempted,
                )
                result.interrupted = True
                break

            batch: Sequence[Cell] = cells[start : start + self.concurrency]
            outcomes = await asyncio.gather(
                *(self._attempt(cell, user_id, created_by) for cell in batch)
            )

            # every outcome of the batch is recorded, committed cells included
            for cell, outcome in zip(batch, outcomes):
                result.summary.attempted += 1
                if isinstance(outcome, Reservation):
                    result.successful.append(outcome.id)
                    run.touched.add((cell.resource.id, cell.day))
                    consecutive = 0
                    continue

                result.failed.append(outcome)
                consecutive += 1
                logger.warning("Bulk cell failed: {}", outcome.message)
                if result.aborted:
                    continue
                try:
                    self._check_abort(request, consecutive, outcome)
                except BulkAborted as exc:
                    logger.warning("Bulk booking aborted: {}", exc.message)
                    result.aborted = True
                    result.error = exc.message

            if result.aborted:
                break

        result.summary.successful = len(result.successful)
        result.summary.failed = len(result.failed)
        result.summary.skipped = len(cells) - result.summary.attempted
        logger.info(
            "Bulk booking completed: successful={} failed={} skipped={} aborted={}",
            result.summary.successful,
            result.summary.failed,
            result.summary.skipped,
            result.aborted,
        )
        return run
