from enum import StrEnum


class BookingScope(StrEnum):
    # Customer scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # book a single slot
    CANCEL = "bookings:cancel"  # cancel own booking

    # Venue staff scopes
    MANAGE = "bookings:manage"  # confirm / complete bookings
    BULK = "bookings:bulk"  # block-book courts across a date range

    # Service-to-service
    PAY = "bookings:pay"  # report payments from the payment processor

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"
    ADMIN_HOLIDAYS = "admin:holidays"
    ADMIN_CATALOG = "admin:courts"


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Book a court time slot.",
    BookingScope.CANCEL: "Cancel your own pending or confirmed booking.",
    BookingScope.MANAGE: "Confirm or complete bookings.",
    BookingScope.BULK: "Book many courts, dates and time slots in one request.",
    BookingScope.PAY: "Record payments against a booking.",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Modify or cancel any booking (admin).",
    BookingScope.ADMIN_HOLIDAYS: "Manage the holiday calendar (admin).",
    BookingScope.ADMIN_CATALOG: "Manage courts and their weekly time slots (admin).",
}
