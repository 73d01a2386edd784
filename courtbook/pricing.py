from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from courtbook.errors import ValidationError
from courtbook.timeslots import duration_hours

CENT = Decimal("0.01")
ONE = Decimal("1")


def to_amount(value: object, field: str = "amount") -> Decimal:
    """
    Coerce `value` to an unrounded Decimal.

    Raises ValidationError for negative, non-finite or non-numeric input.
    Floats go through str() so 0.1 stays 0.1.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", code="INVALID_AMOUNT")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(
            f"{field} must be numeric", code="INVALID_AMOUNT"
        ) from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", code="INVALID_AMOUNT")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", code="INVALID_AMOUNT")
    return amount


def round_amount(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AddOnCharge:
    kind: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PriceBreakdown:
    hourly_rate: Decimal
    duration_hours: Decimal
    holiday_multiplier: Decimal
    base_amount: Decimal  # rate x hours, before the holiday multiplier
    holiday_surcharge: Decimal
    add_ons_amount: Decimal
    total: Decimal  # the only rounded figure


def compute_price(
    hourly_rate: object,
    start_time: str,
    end_time: str,
    holiday_multiplier: object = ONE,
    add_ons: Iterable[AddOnCharge] = (),
) -> PriceBreakdown:
    """
    rate x duration x holiday multiplier + sum(quantity x unit price).

    Intermediate values are kept at full precision; only `total` is
    rounded to cents.
    """
    rate = to_amount(hourly_rate, "hourly_rate")
    multiplier = to_amount(holiday_multiplier, "holiday_multiplier")
    if multiplier < ONE:
        raise ValidationError(
            "holiday_multiplier must be at least 1", code="INVALID_MULTIPLIER"
        )

    hours = duration_hours(start_time, end_time)
    base = rate * hours
    slot_amount = base * multiplier

    add_ons_amount = Decimal(0)
    for add_on in add_ons:
        if add_on.quantity < 1:
            raise ValidationError(
                f"Add-on '{add_on.kind}' quantity must be at least 1",
                code="INVALID_ADD_ON",
            )
        to_amount(add_on.unit_price, f"add-on '{add_on.kind}' price")
        add_ons_amount += add_on.subtotal

    return PriceBreakdown(
        hourly_rate=rate,
        duration_hours=hours,
        holiday_multiplier=multiplier,
        base_amount=base,
        holiday_surcharge=slot_amount - base,
        add_ons_amount=add_ons_amount,
        total=round_amount(slot_amount + add_ons_amount),
    )
