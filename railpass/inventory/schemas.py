from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum

class HoldStatus(str, Enum):
    """Seat hold status enumeration"""
    HELD = "held"
    CONSUMED = "consumed"
    RELEASED = "released"

class ReservationToken(BaseModel):
    """Seats held against a schedule until consumed by a ticket or released"""
    hold_id: str
    schedule_id: int
    seat_count: int = Field(1, ge=1)
    seat_number: Optional[str] = None
    created_at: datetime

class SeatMap(BaseModel):
    """Seat occupancy for one schedule"""
    schedule_id: int
    total_seats: int
    available_seats: int
    taken_seats: List[str]
