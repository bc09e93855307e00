from datetime import timedelta

import pytest

from railpass.errors import IssuanceError, ScheduleClosed, ScheduleNotFound, SeatTaken, SoldOut
from railpass.inventory.tracker import InventoryTracker
from railpass.models import Schedule, SeatHold, utcnow


def reserve(session_factory, schedule_id, seat_number=None, seat_count=1):
    with session_factory() as db:
        token = InventoryTracker(db).try_reserve(schedule_id, seat_count, seat_number=seat_number)
        db.commit()
        return token


def test_reserve_decrements_counter(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=3)

    token = reserve(session_factory, schedule_id, "A1")

    assert token.schedule_id == schedule_id
    assert token.seat_number == "A1"
    assert seats_left(schedule_id) == 2


def test_sold_out_after_capacity(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=2)
    reserve(session_factory, schedule_id, "A1")
    reserve(session_factory, schedule_id, "A2")

    with session_factory() as db:
        with pytest.raises(SoldOut):
            InventoryTracker(db).try_reserve(schedule_id, 1, seat_number="A3")
        db.rollback()

    assert seats_left(schedule_id) == 0


def test_closed_schedule_rejected(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=2, status="closed")

    with session_factory() as db:
        with pytest.raises(ScheduleClosed):
            InventoryTracker(db).try_reserve(schedule_id, 1)
        db.rollback()

    assert seats_left(schedule_id) == 2


def test_unknown_schedule(session_factory):
    with session_factory() as db:
        with pytest.raises(ScheduleNotFound):
            InventoryTracker(db).try_reserve(9999, 1)


def test_same_seat_twice_is_taken(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=3)
    reserve(session_factory, schedule_id, "B2")

    with session_factory() as db:
        with pytest.raises(SeatTaken):
            InventoryTracker(db).try_reserve(schedule_id, 1, seat_number="B2")
        db.rollback()

    assert seats_left(schedule_id) == 2


def test_release_is_idempotent(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=3)
    token = reserve(session_factory, schedule_id, "C3")

    with session_factory() as db:
        tracker = InventoryTracker(db)
        assert tracker.release(token) is True
        assert tracker.release(token) is False
        db.commit()

    assert seats_left(schedule_id) == 3

    # the seat number can be claimed again once released
    reserve(session_factory, schedule_id, "C3")
    assert seats_left(schedule_id) == 2


def test_consume_then_release_is_noop(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=3)
    token = reserve(session_factory, schedule_id, "D4")

    with session_factory() as db:
        tracker = InventoryTracker(db)
        tracker.consume(token)
        assert tracker.release(token.hold_id) is False
        db.commit()

    assert seats_left(schedule_id) == 2

    with session_factory() as db:
        with pytest.raises(IssuanceError):
            InventoryTracker(db).consume(token)


def test_restore_returns_sold_seat(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=1)
    token = reserve(session_factory, schedule_id, "E5")

    with session_factory() as db:
        tracker = InventoryTracker(db)
        tracker.consume(token)
        db.commit()
    assert seats_left(schedule_id) == 0

    with session_factory() as db:
        tracker = InventoryTracker(db)
        assert tracker.restore(token.hold_id) is True
        assert tracker.restore(token.hold_id) is False
        db.commit()

    assert seats_left(schedule_id) == 1


def test_counter_never_exceeds_capacity(session_factory, make_schedule, seats_left):
    # counter already at capacity while a hold still exists
    schedule_id = make_schedule(seats=2)
    token = reserve(session_factory, schedule_id, "F1")

    with session_factory() as db:
        db.query(Schedule).filter(Schedule.id == schedule_id).update({Schedule.available_seats: 2})
        db.commit()

    with session_factory() as db:
        InventoryTracker(db).release(token)
        db.commit()

    assert seats_left(schedule_id) == 2


def test_expire_stale_holds(session_factory, make_schedule, seats_left):
    schedule_id = make_schedule(seats=3)
    stale = reserve(session_factory, schedule_id, "G1")
    fresh = reserve(session_factory, schedule_id, "G2")

    with session_factory() as db:
        db.query(SeatHold).filter(SeatHold.id == stale.hold_id).update(
            {SeatHold.created_at: utcnow() - timedelta(hours=1)}
        )
        db.commit()

    with session_factory() as db:
        expired = InventoryTracker(db).expire_stale_holds(utcnow() - timedelta(minutes=15))
        db.commit()

    assert expired == 1
    assert seats_left(schedule_id) == 2

    with session_factory() as db:
        tracker = InventoryTracker(db)
        assert not tracker.is_seat_taken(schedule_id, "G1")
        assert tracker.is_seat_taken(schedule_id, fresh.seat_number)


def test_seat_map(session_factory, make_schedule):
    schedule_id = make_schedule(seats=4)
    reserve(session_factory, schedule_id, "H2")
    reserve(session_factory, schedule_id, "H1")

    with session_factory() as db:
        seat_map = InventoryTracker(db).seat_map(schedule_id)

    assert seat_map.total_seats == 4
    assert seat_map.available_seats == 2
    assert seat_map.taken_seats == ["H1", "H2"]
