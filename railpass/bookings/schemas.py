from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

from railpass.errors import BookingErrorCode
from railpass.ledger.schemas import Transaction
from railpass.tickets.schemas import Ticket

class AttemptState(str, Enum):
    """Booking saga states"""
    REQUESTED = "requested"
    SEAT_HELD = "seat_held"
    PAID = "paid"
    ISSUED = "issued"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

# states a live booking or an interrupted one can be in
OPEN_STATES = (AttemptState.REQUESTED, AttemptState.SEAT_HELD, AttemptState.PAID)

class BookingRequest(BaseModel):
    """Request to book one seat on a schedule"""
    user_id: int
    schedule_id: int
    seat_number: str = Field(..., min_length=1, max_length=20)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)  # defaults to the schedule fare

    @validator('seat_number')
    def normalize_seat_number(cls, v):
        v = v.strip().upper()
        if not v:
            raise ValueError('Seat number is required')
        return v

class BookingResult(BaseModel):
    """Outcome of a booking attempt: a ticket or a typed error, never both"""
    success: bool
    attempt_id: str
    state: AttemptState
    ticket: Optional[Ticket] = None
    error_code: Optional[BookingErrorCode] = None
    message: Optional[str] = None

class BookingAttempt(BaseModel):
    id: str
    user_id: int
    schedule_id: int
    seat_number: str
    price: Decimal
    state: AttemptState
    hold_id: Optional[str] = None
    debit_transaction_id: Optional[int] = None
    ticket_id: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)

class RefundResponse(BaseModel):
    success: bool
    message: str
    ticket_id: int
    transaction: Transaction

class MaintenanceReport(BaseModel):
    attempts_recovered: int
    holds_expired: int
    ran_at: datetime
