import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from railpass.database import retry_read
from railpass.models import Schedule, Train
from railpass.schedules.schemas import ScheduleCreate, ScheduleStatus, TrainCreate

logger = logging.getLogger(__name__)

# allowed status changes; cancelled is final
STATUS_TRANSITIONS = {
    ScheduleStatus.OPEN: {ScheduleStatus.CLOSED, ScheduleStatus.CANCELLED},
    ScheduleStatus.CLOSED: {ScheduleStatus.OPEN, ScheduleStatus.CANCELLED},
    ScheduleStatus.CANCELLED: set(),
}


def departure_of(schedule: Schedule) -> datetime:
    """Scheduled departure as a naive local datetime"""
    return datetime.combine(schedule.journey_date, schedule.train.departure_time)


class ScheduleService:
    """Trains and their dated schedules"""

    def __init__(self, db: Session):
        self.db = db

    def create_train(self, train: TrainCreate) -> Train:
        db_train = Train(**train.model_dump())

        try:
            self.db.add(db_train)
            self.db.commit()
            self.db.refresh(db_train)
        except IntegrityError:
            self.db.rollback()
            raise ValueError("Train number already exists")

        logger.info("Created train %s (%s seats)", db_train.train_number, db_train.total_seats)
        return db_train

    @retry_read
    def get_train(self, train_id: int) -> Optional[Train]:
        return self.db.query(Train).filter(Train.id == train_id).first()

    @retry_read
    def list_trains(self, skip: int = 0, limit: int = 50) -> List[Train]:
        return self.db.query(Train).order_by(Train.train_number).offset(skip).limit(limit).all()

    def create_schedule(self, schedule: ScheduleCreate) -> Schedule:
        train = self.db.query(Train).filter(Train.id == schedule.train_id).first()
        if not train:
            raise ValueError("Train not found")

        seats = train.total_seats if schedule.available_seats is None else schedule.available_seats
        if seats > train.total_seats:
            raise ValueError(f"Available seats cannot exceed train capacity ({train.total_seats})")

        db_schedule = Schedule(
            train_id=train.id,
            journey_date=schedule.journey_date,
            price=schedule.price,
            available_seats=seats,
            status=ScheduleStatus.OPEN.value
        )

        try:
            self.db.add(db_schedule)
            self.db.commit()
            self.db.refresh(db_schedule)
        except IntegrityError:
            self.db.rollback()
            raise ValueError("Train already has a schedule on this date")

        logger.info("Opened schedule %s for train %s on %s", db_schedule.id, train.train_number, schedule.journey_date)
        return db_schedule

    @retry_read
    def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        return (
            self.db.query(Schedule)
            .options(joinedload(Schedule.train))
            .filter(Schedule.id == schedule_id)
            .first()
        )

    @retry_read
    def list_schedules(
        self,
        journey_date: Optional[date] = None,
        from_station: Optional[str] = None,
        to_station: Optional[str] = None,
        status: Optional[ScheduleStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Schedule], int]:
        query = self.db.query(Schedule).join(Train).options(joinedload(Schedule.train))

        if journey_date:
            query = query.filter(Schedule.journey_date == journey_date)
        if from_station:
            query = query.filter(Train.from_station.ilike(f"%{from_station}%"))
        if to_station:
            query = query.filter(Train.to_station.ilike(f"%{to_station}%"))
        if status:
            query = query.filter(Schedule.status == status.value)

        total = query.count()
        schedules = (
            query.order_by(Schedule.journey_date, Train.departure_time)
            .offset(skip)
            .limit(limit)
            .all()
        )
        return schedules, total

    def update_status(self, schedule_id: int, new_status: ScheduleStatus) -> Schedule:
        """Move a schedule between open/closed/cancelled"""

        schedule = self.db.query(Schedule).filter(Schedule.id == schedule_id).first()
        if not schedule:
            raise ValueError("Schedule not found")

        current = ScheduleStatus(schedule.status)
        if new_status == current:
            return schedule
        if new_status not in STATUS_TRANSITIONS[current]:
            raise ValueError(f"Cannot change schedule from {current.value} to {new_status.value}")

        # conditional on the status we validated against
        updated = (
            self.db.query(Schedule)
            .filter(Schedule.id == schedule_id, Schedule.status == current.value)
            .update({Schedule.status: new_status.value}, synchronize_session=False)
        )
        if updated != 1:
            self.db.rollback()
            raise ValueError("Schedule status changed concurrently, retry")

        self.db.commit()
        self.db.refresh(schedule)

        logger.info("Schedule %s: %s -> %s", schedule_id, current.value, new_status.value)
        return schedule
