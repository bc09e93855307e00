from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime, date, time
from decimal import Decimal
from enum import Enum

class ScheduleStatus(str, Enum):
    """Schedule status enumeration"""
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"

# Trains
class TrainBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    train_number: str = Field(..., min_length=1, max_length=50)
    train_type: str = "intercity"
    from_station: str = Field(..., min_length=1, max_length=255)
    to_station: str = Field(..., min_length=1, max_length=255)
    departure_time: time
    arrival_time: time
    total_seats: int = Field(..., gt=0, le=2000)

    @validator('to_station')
    def validate_stations(cls, v, values):
        if 'from_station' in values and v == values['from_station']:
            raise ValueError('Origin and destination must differ')
        return v

class TrainCreate(TrainBase):
    pass

class Train(TrainBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# Schedules
class ScheduleCreate(BaseModel):
    train_id: int
    journey_date: date
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    available_seats: Optional[int] = Field(None, ge=0)  # defaults to the train's capacity

class Schedule(BaseModel):
    id: int
    train_id: int
    journey_date: date
    price: Decimal
    available_seats: int
    status: ScheduleStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ScheduleDetail(Schedule):
    train: Train

class ScheduleStatusUpdate(BaseModel):
    status: ScheduleStatus
    reason: Optional[str] = None

class ScheduleSearchResult(BaseModel):
    schedules: List[ScheduleDetail]
    total: int
    page: int
    per_page: int
