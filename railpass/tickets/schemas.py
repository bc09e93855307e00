from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

class TicketStatus(str, Enum):
    """Ticket status enumeration"""
    ISSUED = "issued"
    USED = "used"
    VOID = "void"

class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    COMPLETED = "completed"
    REFUNDED = "refunded"

class VerificationOutcome(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    ALREADY_USED = "already_used"

class TicketDraft(BaseModel):
    """Everything needed to materialize a sold seat"""
    user_id: int
    schedule_id: int
    seat_number: str
    price: Decimal
    hold_id: Optional[str] = None
    payment_id: Optional[str] = None
    payment_method: str = "wallet"

class PresentedTicketData(BaseModel):
    """Fields carried by a ticket's QR code and presented at the gate"""
    user_id: int
    schedule_id: int
    seat_number: str
    price: Decimal
    issued_at: datetime
    nonce: str = Field(..., min_length=1, max_length=32)

class Ticket(BaseModel):
    id: int
    user_id: int
    schedule_id: int
    seat_number: str
    price: Decimal
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: PaymentStatus
    ticket_hash: str
    nonce: str
    qr_code: str
    status: TicketStatus
    issued_at: datetime
    used_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class TicketVerificationRequest(BaseModel):
    """Gate scan: either the raw QR string or the hash plus presented fields"""
    qr_code: Optional[str] = None
    ticket_hash: Optional[str] = Field(None, min_length=64, max_length=64)
    presented: Optional[PresentedTicketData] = None
    verified_by: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=255)

class VerificationResult(BaseModel):
    outcome: VerificationOutcome
    allow_entry: bool
    message: str
    reason: Optional[str] = None
    ticket_id: Optional[int] = None
    verification_id: Optional[int] = None
    verified_at: datetime

class TicketVerification(BaseModel):
    id: int
    ticket_id: int
    verified_by: Optional[str] = None
    location: Optional[str] = None
    outcome: VerificationOutcome
    reason: Optional[str] = None
    verified_at: datetime

    class Config:
        from_attributes = True

class TicketWithVerifications(Ticket):
    verifications: List[TicketVerification] = []
