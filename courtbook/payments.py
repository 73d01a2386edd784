from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from courtbook import settings
from courtbook.errors import NotFound, StateError, ValidationError
from courtbook.models import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    Reservation,
    ReservationStatus,
)
from courtbook.pricing import round_amount, to_amount


@dataclass
class PaymentOutcome:
    reservation: Reservation
    payment: Payment
    transactions: list[PaymentTransaction]


def derive_payment_status(paid: Decimal, balance: Decimal) -> PaymentStatus:
    if balance <= 0:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


class PaymentReconciler:
    """
    Records payments reported by the external processor against a reservation.

    Keeps paid_amount + balance_amount == total_amount. The Payment row is a
    running aggregate; every call also appends a PaymentTransaction.
    """

    def __init__(
        self,
        connection_name: str = "default",
        tolerance: Decimal = settings.PAYMENT_TOLERANCE,
    ) -> None:
        self.connection_name = connection_name
        self.tolerance = tolerance

    @property
    def _db(self) -> BaseDBAsyncClient:
        return connections.get(self.connection_name)

    async def apply_payment(
        self,
        reservation_id: UUID,
        amount: object,
        method: PaymentMethod,
        transaction_id: str | None = None,
    ) -> PaymentOutcome:
        value = to_amount(amount)
        if value != round_amount(value):
            raise ValidationError(
                "Payment amount cannot have more than two decimal places",
                code="INVALID_AMOUNT",
            )
        if value == 0:
            raise ValidationError(
                "Payment amount must be positive", code="INVALID_AMOUNT"
            )

        async with in_transaction(self.connection_name) as conn:
            inst = (
                await Reservation.filter(id=reservation_id)
                .select_for_update()
                .using_db(conn)
                .first()
            )
            if inst is None:
                raise NotFound("Booking not found", code="BOOKING_NOT_FOUND")
            if inst.status == ReservationStatus.CANCELLED:
                raise StateError("Cannot pay for a cancelled booking", code="CANCELLED")
            if inst.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                raise StateError(
                    "Payment has already been processed for this booking",
                    code="ALREADY_PAID",
                )

            total = Decimal(inst.total_amount)
            paid = Decimal(inst.paid_amount) + value
            if paid - total > self.tolerance:
                raise StateError(
                    "Payment exceeds the balance due",
                    code="OVERPAYMENT",
                    details={
                        "balance_amount": str(inst.balance_amount),
                        "amount": str(value),
                    },
                )
            # rounding overshoot within tolerance is clamped away
            paid = round_amount(min(max(paid, Decimal(0)), total))
            balance = max(total - paid, Decimal(0))
            status = derive_payment_status(paid, balance)

            payment = await Payment.get_or_none(reservation_id=inst.id, using_db=conn)
            if payment is None:
                payment = await Payment.create(
                    using_db=conn,
                    reservation_id=inst.id,
                    amount=paid,
                    method=method,
                    transaction_id=transaction_id,
                    status=status,
                )
            else:
                payment.amount = paid
                payment.method = method
                payment.transaction_id = transaction_id or payment.transaction_id
                payment.status = status
                await payment.save(using_db=conn)

            await PaymentTransaction.create(
                using_db=conn,
                payment_id=payment.id,
                amount=value,
                method=method,
                transaction_id=transaction_id,
            )

            inst.paid_amount = paid
            inst.balance_amount = balance
            inst.payment_status = status
            if status == PaymentStatus.PAID and inst.status == ReservationStatus.PENDING:
                inst.status = ReservationStatus.CONFIRMED
            await inst.save(
                using_db=conn,
                update_fields=[
                    "paid_amount",
                    "balance_amount",
                    "payment_status",
                    "status",
                    "updated_at",
                ],
            )

        logger.info(
            "Payment applied: reservation_id={} amount={} paid={} balance={} status={}",
            reservation_id,
            value,
            paid,
            balance,
            status,
        )
        return PaymentOutcome(
            reservation=inst,
            payment=payment,
            transactions=await self.transactions_of(payment.id),
        )

    async def transactions_of(self, payment_id: UUID) -> list[PaymentTransaction]:
        return (
            await PaymentTransaction.filter(payment_id=payment_id)
            .using_db(self._db)
            .order_by("id")
        )

    async def get_payment(self, reservation_id: UUID) -> Payment | None:
        return await Payment.get_or_none(
            reservation_id=reservation_id, using_db=self._db
        )
