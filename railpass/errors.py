"""Domain error taxonomy shared by the booking components.

Components raise these; the reservation coordinator turns them into typed
``BookingResult`` values so callers never see a half-finished booking.
Infrastructure failures are kept apart as ``StorageUnavailable``.
"""

from enum import Enum
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import OperationalError


class BookingErrorCode(str, Enum):
    SOLD_OUT = "sold_out"
    SCHEDULE_CLOSED = "schedule_closed"
    SEAT_TAKEN = "seat_taken"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYMENT_DECLINED = "payment_declined"
    ISSUANCE_ERROR = "issuance_error"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    DUPLICATE_BOOKING = "duplicate_booking"
    NOT_REFUNDABLE = "not_refundable"


class BookingError(Exception):
    code = BookingErrorCode.INVALID_REQUEST

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code.value.replace("_", " "))
        self.message = str(self)


class SoldOut(BookingError):
    code = BookingErrorCode.SOLD_OUT


class ScheduleClosed(BookingError):
    code = BookingErrorCode.SCHEDULE_CLOSED


class SeatTaken(BookingError):
    code = BookingErrorCode.SEAT_TAKEN


class InsufficientFunds(BookingError):
    code = BookingErrorCode.INSUFFICIENT_FUNDS


class PaymentDeclined(BookingError):
    code = BookingErrorCode.PAYMENT_DECLINED


class IssuanceError(BookingError):
    code = BookingErrorCode.ISSUANCE_ERROR


class StepTimeout(BookingError):
    code = BookingErrorCode.TIMEOUT


class NotFound(BookingError):
    code = BookingErrorCode.NOT_FOUND


class ScheduleNotFound(NotFound):
    pass


class WalletNotFound(NotFound):
    pass


class TicketNotFound(NotFound):
    pass


class InvalidRequest(BookingError):
    code = BookingErrorCode.INVALID_REQUEST


class DuplicateBooking(BookingError):
    code = BookingErrorCode.DUPLICATE_BOOKING


class NotRefundable(BookingError):
    code = BookingErrorCode.NOT_REFUNDABLE


class StorageUnavailable(Exception):
    """The datastore could not be reached; not a user-facing booking outcome."""


_TIMEOUT_MARKERS = (
    "database is locked",
    "statement timeout",
    "canceling statement",
    "lock timeout",
    "timeout expired",
)


def is_timeout(exc: BaseException) -> bool:
    """True when a driver error means a bounded wait ran out."""
    if not isinstance(exc, OperationalError):
        return False
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


HTTP_STATUS_BY_CODE = {
    BookingErrorCode.SOLD_OUT: status.HTTP_409_CONFLICT,
    BookingErrorCode.SCHEDULE_CLOSED: status.HTTP_409_CONFLICT,
    BookingErrorCode.SEAT_TAKEN: status.HTTP_409_CONFLICT,
    BookingErrorCode.DUPLICATE_BOOKING: status.HTTP_409_CONFLICT,
    BookingErrorCode.NOT_REFUNDABLE: status.HTTP_409_CONFLICT,
    BookingErrorCode.INSUFFICIENT_FUNDS: status.HTTP_402_PAYMENT_REQUIRED,
    BookingErrorCode.PAYMENT_DECLINED: status.HTTP_402_PAYMENT_REQUIRED,
    BookingErrorCode.ISSUANCE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    BookingErrorCode.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    BookingErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
}


def http_error(code: BookingErrorCode, message: str) -> HTTPException:
    return HTTPException(
        status_code=HTTP_STATUS_BY_CODE.get(code, status.HTTP_400_BAD_REQUEST),
        detail={"code": code.value, "message": message},
    )
