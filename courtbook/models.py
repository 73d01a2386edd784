from decimal import Decimal
from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class ReservationStatus(StrEnum):
    PENDING = "pending"  # just created, awaiting payment or confirmation
    CONFIRMED = "confirmed"  # paid in full, admin override, or bulk-created
    COMPLETED = "completed"  # reservation date elapsed, marked done
    CANCELLED = "cancelled"  # cancelled by customer or admin


ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(StrEnum):
    ONLINE = "online"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class SportType(StrEnum):
    BADMINTON = "badminton"
    TENNIS = "tennis"
    FOOTBALL = "football"
    CRICKET = "cricket"
    SWIMMING = "swimming"
    BASKETBALL = "basketball"
    VOLLEYBALL = "volleyball"
    ARCHERY = "archery"
    TABLE_TENNIS = "table_tennis"
    SQUASH = "squash"
    OTHER = "other"


class TimestampedModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        abstract = True


class Resource(TimestampedModel):
    """A bookable court. Deactivated, never deleted, once it has reservations."""

    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=120)
    venue_id = fields.UUIDField()  # owned by venues-ms
    sport_type = fields.CharEnumField(SportType, default=SportType.OTHER)
    hourly_rate = fields.DecimalField(max_digits=10, decimal_places=2)
    is_active = fields.BooleanField(default=True)
    is_restricted = fields.BooleanField(default=False)  # private venue

    class Meta:  # type: ignore
        table = "resources"
        ordering = ["name"]


class SlotTemplate(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    resource: fields.ForeignKeyRelation[Resource] = fields.ForeignKeyField(
        "models.Resource", related_name="slot_templates"
    )
    day_of_week = fields.SmallIntField()  # 0 = Sunday
    start_time = fields.CharField(max_length=5)  # "HH:MM"
    end_time = fields.CharField(max_length=5)
    is_active = fields.BooleanField(default=True)

    class Meta:  # type: ignore
        table = "slot_templates"
        ordering = ["day_of_week", "start_time"]


GLOBAL_SCOPE = "global"


class HolidayEntry(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=120)
    date = fields.DateField()
    resource: fields.ForeignKeyNullableRelation[Resource] = fields.ForeignKeyField(
        "models.Resource", related_name="holidays", null=True
    )  # null means global
    scope_key = fields.CharField(max_length=36, default=GLOBAL_SCOPE)
    multiplier = fields.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("1.5")
    )
    description = fields.TextField(null=True)
    is_active = fields.BooleanField(default=True)

    class Meta:  # type: ignore
        table = "holidays"
        # resource is nullable, so uniqueness is enforced on scope_key
        unique_together = (("date", "scope_key"),)
        ordering = ["date"]


class Reservation(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    resource: fields.ForeignKeyRelation[Resource] = fields.ForeignKeyField(
        "models.Resource", related_name="reservations"
    )
    slot_template: fields.ForeignKeyRelation[SlotTemplate] = fields.ForeignKeyField(
        "models.SlotTemplate", related_name="reservations"
    )
    user_id = fields.UUIDField()  # who the reservation is for
    created_by = fields.UUIDField()  # differs from user_id for admin bulk bookings

    date = fields.DateField()
    start_time = fields.CharField(max_length=5)
    end_time = fields.CharField(max_length=5)

    status = fields.CharEnumField(ReservationStatus, default=ReservationStatus.PENDING)

    # "<resource>:<template>:<date>" while PENDING/CONFIRMED, NULL otherwise.
    # The unique index is what makes two concurrent inserts for one cell collide.
    active_slot_key = fields.CharField(max_length=120, null=True, unique=True)

    hourly_rate = fields.DecimalField(max_digits=10, decimal_places=2)  # snapshot
    holiday_multiplier = fields.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("1")
    )
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    paid_amount = fields.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0")
    )
    balance_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    currency = fields.CharField(max_length=3, default="EUR")

    add_ons: fields.ReverseRelation["AddOnLine"]

    class Meta:  # type: ignore
        table = "reservations"
        ordering = ["-created_at"]


class AddOnLine(Model):
    id = fields.IntField(primary_key=True)
    reservation: fields.ForeignKeyRelation[Reservation] = fields.ForeignKeyField(
        "models.Reservation", related_name="add_ons"
    )
    kind = fields.CharField(max_length=60)
    quantity = fields.IntField()
    unit_price = fields.DecimalField(max_digits=10, decimal_places=2)

    class Meta:  # type: ignore
        table = "reservation_add_ons"


class Payment(TimestampedModel):
    """Running payment aggregate, one per reservation."""

    id = fields.UUIDField(primary_key=True)
    reservation: fields.OneToOneRelation[Reservation] = fields.OneToOneField(
        "models.Reservation", related_name="payment"
    )
    amount = fields.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0")
    )
    method = fields.CharEnumField(PaymentMethod)
    transaction_id = fields.CharField(max_length=120, null=True)
    status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)

    class Meta:  # type: ignore
        table = "payments"


class PaymentTransaction(Model):
    """Immutable audit row, one per applied payment."""

    id = fields.IntField(primary_key=True)
    payment: fields.ForeignKeyRelation[Payment] = fields.ForeignKeyField(
        "models.Payment", related_name="transactions"
    )
    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    method = fields.CharEnumField(PaymentMethod)
    transaction_id = fields.CharField(max_length=120, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "payment_transactions"
        ordering = ["created_at"]
