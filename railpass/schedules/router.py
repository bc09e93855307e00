from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from railpass.database import get_db
from railpass.errors import BookingError, http_error
from railpass.inventory.schemas import SeatMap
from railpass.inventory.tracker import InventoryTracker
from railpass.schedules.schemas import (
    ScheduleCreate, Schedule, ScheduleDetail, ScheduleSearchResult, ScheduleStatus,
    ScheduleStatusUpdate, Train, TrainCreate
)
from railpass.schedules.service import ScheduleService

router = APIRouter()

# Trains
@router.post("/trains", response_model=Train, status_code=status.HTTP_201_CREATED)
def create_train(
    train: TrainCreate,
    db: Session = Depends(get_db)
):
    """Register a train and its seat capacity"""
    try:
        return ScheduleService(db).create_train(train)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.get("/trains", response_model=List[Train])
def list_trains(
    skip: int = Query(0, ge=0, description="Number of trains to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of trains to return"),
    db: Session = Depends(get_db)
):
    """List registered trains"""
    return ScheduleService(db).list_trains(skip=skip, limit=limit)

# Schedules
@router.post("/", response_model=Schedule, status_code=status.HTTP_201_CREATED)
def create_schedule(
    schedule: ScheduleCreate,
    db: Session = Depends(get_db)
):
    """Open a dated schedule for a train"""
    try:
        return ScheduleService(db).create_schedule(schedule)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.get("/", response_model=ScheduleSearchResult)
def list_schedules(
    journey_date: Optional[date] = Query(None, description="Filter by journey date"),
    from_station: Optional[str] = Query(None, description="Filter by origin station"),
    to_station: Optional[str] = Query(None, description="Filter by destination station"),
    schedule_status: Optional[ScheduleStatus] = Query(None, alias="status", description="Filter by status"),
    skip: int = Query(0, ge=0, description="Number of schedules to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of schedules to return"),
    db: Session = Depends(get_db)
):
    """Search schedules"""
    schedules, total = ScheduleService(db).list_schedules(
        journey_date=journey_date,
        from_station=from_station,
        to_station=to_station,
        status=schedule_status,
        skip=skip,
        limit=limit
    )

    return ScheduleSearchResult(
        schedules=[ScheduleDetail.model_validate(s) for s in schedules],
        total=total,
        page=(skip // limit) + 1,
        per_page=limit
    )

@router.get("/{schedule_id}", response_model=ScheduleDetail)
def get_schedule(
    schedule_id: int,
    db: Session = Depends(get_db)
):
    """Get a schedule with its train"""
    schedule = ScheduleService(db).get_schedule(schedule_id)

    if not schedule:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Schedule not found"
        )

    return schedule

@router.get("/{schedule_id}/seats", response_model=SeatMap)
def get_seat_map(
    schedule_id: int,
    db: Session = Depends(get_db)
):
    """Seats already held or sold on a schedule"""
    try:
        return InventoryTracker(db).seat_map(schedule_id)
    except BookingError as e:
        raise http_error(e.code, e.message)

@router.patch("/{schedule_id}/status", response_model=Schedule)
def update_schedule_status(
    schedule_id: int,
    update: ScheduleStatusUpdate,
    db: Session = Depends(get_db)
):
    """Open, close or cancel a schedule"""
    try:
        return ScheduleService(db).update_status(schedule_id, update.status)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
