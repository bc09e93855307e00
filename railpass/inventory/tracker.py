import logging
import uuid
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from railpass.database import retry_read
from railpass.errors import InvalidRequest, IssuanceError, ScheduleClosed, ScheduleNotFound, SeatTaken, SoldOut
from railpass.inventory.schemas import HoldStatus, ReservationToken, SeatMap
from railpass.models import Schedule, SeatHold, Train, utcnow

logger = logging.getLogger(__name__)


def is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "unique" in text or "duplicate key" in text


SEAT_INDEXES = ("uq_seat_holds_active_seat", "uq_tickets_active_seat")


def is_seat_conflict(exc: IntegrityError) -> bool:
    """True when the violation is one of the active-seat indexes.

    PostgreSQL names the index in the message; SQLite only lists the columns.
    """
    text = str(exc.orig).lower()
    if any(name in text for name in SEAT_INDEXES):
        return True
    return is_unique_violation(exc) and "seat_number" in text


class InventoryTracker:
    """Per-schedule seat counter guarded by conditional updates.

    Every method works inside the caller's session and never commits; a
    failed call leaves the session needing a rollback.
    """

    def __init__(self, db: Session):
        self.db = db

    def try_reserve(
        self,
        schedule_id: int,
        seat_count: int = 1,
        seat_number: Optional[str] = None,
        token_id: Optional[str] = None
    ) -> ReservationToken:
        """Hold seats on a schedule, or raise SoldOut / ScheduleClosed / SeatTaken"""

        if seat_count < 1:
            raise InvalidRequest("seat_count must be at least 1")
        if seat_number is not None and seat_count != 1:
            raise InvalidRequest("a numbered seat reservation holds exactly one seat")

        exists = self.db.query(Schedule.id).filter(Schedule.id == schedule_id).first()
        if not exists:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")

        hold = SeatHold(
            id=token_id or str(uuid.uuid4()),
            schedule_id=schedule_id,
            seat_number=seat_number,
            seat_count=seat_count,
            status=HoldStatus.HELD.value,
            created_at=utcnow()
        )

        # Claim the seat number before touching the counter so two requests
        # for the same seat race on the unique index, not on the last seat.
        self.db.add(hold)
        try:
            self.db.flush()
        except IntegrityError as exc:
            if is_seat_conflict(exc):
                raise SeatTaken(f"Seat {seat_number} is already taken") from exc
            raise

        updated = (
            self.db.query(Schedule)
            .filter(
                Schedule.id == schedule_id,
                Schedule.status == "open",
                Schedule.available_seats >= seat_count
            )
            .update(
                {Schedule.available_seats: Schedule.available_seats - seat_count},
                synchronize_session=False
            )
        )
        if updated != 1:
            self._raise_unavailable(schedule_id, seat_count)

        logger.debug("Held %d seat(s) on schedule %s as %s", seat_count, schedule_id, hold.id)

        return ReservationToken(
            hold_id=hold.id,
            schedule_id=schedule_id,
            seat_count=seat_count,
            seat_number=seat_number,
            created_at=hold.created_at
        )

    def release(self, token: Union[ReservationToken, str]) -> bool:
        """Give held seats back. Releasing twice is a no-op returning False."""

        hold_id = token.hold_id if isinstance(token, ReservationToken) else token
        return self._return_seats(hold_id, HoldStatus.HELD)

    def consume(self, token: Union[ReservationToken, str]) -> None:
        """Turn a hold into a sold seat; raises if the hold is gone"""

        hold_id = token.hold_id if isinstance(token, ReservationToken) else token
        updated = (
            self.db.query(SeatHold)
            .filter(SeatHold.id == hold_id, SeatHold.status == HoldStatus.HELD.value)
            .update({SeatHold.status: HoldStatus.CONSUMED.value}, synchronize_session=False)
        )
        if updated != 1:
            raise IssuanceError(f"Seat hold {hold_id} is no longer held")

    def restore(self, hold_id: str) -> bool:
        """Put a sold seat back on sale (refund path)"""
        return self._return_seats(hold_id, HoldStatus.CONSUMED)

    def expire_stale_holds(self, older_than: datetime) -> int:
        """Release holds that were never consumed or released"""

        stale_ids = [
            row.id for row in
            self.db.query(SeatHold.id)
            .filter(SeatHold.status == HoldStatus.HELD.value, SeatHold.created_at < older_than)
            .all()
        ]

        expired = 0
        for hold_id in stale_ids:
            if self.release(hold_id):
                expired += 1

        if expired:
            logger.warning("Expired %d stale seat hold(s)", expired)
        return expired

    @retry_read
    def is_seat_taken(self, schedule_id: int, seat_number: str) -> bool:
        return self.db.query(SeatHold.id).filter(
            SeatHold.schedule_id == schedule_id,
            SeatHold.seat_number == seat_number,
            SeatHold.status != HoldStatus.RELEASED.value
        ).first() is not None

    @retry_read
    def seat_map(self, schedule_id: int) -> SeatMap:
        schedule = self.db.query(Schedule).filter(Schedule.id == schedule_id).first()
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")

        taken: List[str] = [
            row.seat_number for row in
            self.db.query(SeatHold.seat_number)
            .filter(
                SeatHold.schedule_id == schedule_id,
                SeatHold.seat_number.isnot(None),
                SeatHold.status != HoldStatus.RELEASED.value
            )
            .order_by(SeatHold.seat_number)
            .all()
        ]

        return SeatMap(
            schedule_id=schedule.id,
            total_seats=schedule.train.total_seats,
            available_seats=schedule.available_seats,
            taken_seats=taken
        )

    def _return_seats(self, hold_id: str, from_status: HoldStatus) -> bool:
        hold = self.db.query(SeatHold.schedule_id, SeatHold.seat_count).filter(SeatHold.id == hold_id).first()
        if not hold:
            return False

        flipped = (
            self.db.query(SeatHold)
            .filter(SeatHold.id == hold_id, SeatHold.status == from_status.value)
            .update(
                {SeatHold.status: HoldStatus.RELEASED.value, SeatHold.released_at: utcnow()},
                synchronize_session=False
            )
        )
        if flipped != 1:
            return False

        capacity = (
            select(Train.total_seats)
            .where(Train.id == Schedule.train_id)
            .correlate(Schedule)
            .scalar_subquery()
        )
        restored = (
            self.db.query(Schedule)
            .filter(
                Schedule.id == hold.schedule_id,
                Schedule.available_seats + hold.seat_count <= capacity
            )
            .update(
                {Schedule.available_seats: Schedule.available_seats + hold.seat_count},
                synchronize_session=False
            )
        )
        if restored != 1:
            logger.error(
                "Seat counter for schedule %s already at capacity; hold %s not added back",
                hold.schedule_id, hold_id
            )
        return True

    def _raise_unavailable(self, schedule_id: int, seat_count: int):
        schedule = self.db.query(Schedule.status, Schedule.available_seats).filter(Schedule.id == schedule_id).first()
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        if schedule.status != "open":
            raise ScheduleClosed(f"Schedule {schedule_id} is {schedule.status}")
        raise SoldOut(f"Only {schedule.available_seats} seat(s) left, {seat_count} requested")
