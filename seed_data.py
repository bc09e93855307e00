#!/usr/bin/env python3

from datetime import date, time, timedelta
from decimal import Decimal

from railpass.database import SessionLocal, init_db
from railpass.ledger.service import LedgerStore
from railpass.models import (
    BookingAttempt, Schedule, SeatHold, Ticket, TicketVerification, Train, Transaction, User, Wallet
)

TRAINS = [
    # name, number, type, from, to, departure, arrival, seats, fare
    ("Subarna Express", "701", "intercity", "Dhaka", "Chattogram", time(7, 0), time(12, 10), 120, Decimal("450.00")),
    ("Sonar Bangla Express", "787", "intercity", "Dhaka", "Chattogram", time(17, 0), time(22, 15), 120, Decimal("495.00")),
    ("Parabat Express", "709", "intercity", "Dhaka", "Sylhet", time(6, 20), time(13, 10), 90, Decimal("375.00")),
    ("Ekota Express", "705", "intercity", "Dhaka", "Dinajpur", time(10, 0), time(19, 40), 80, Decimal("620.00")),
    ("Sundarban Express", "725", "intercity", "Dhaka", "Khulna", time(8, 15), time(16, 30), 100, Decimal("550.00")),
    ("Mohanagar Provati", "703", "commuter", "Chattogram", "Dhaka", time(7, 45), time(14, 0), 60, Decimal("350.00")),
]

USERS = [
    ("Test Passenger", "passenger@railpass.local", "01700000001", Decimal("5000.00")),
    ("Budget Traveller", "budget@railpass.local", "01700000002", Decimal("300.00")),
    ("Empty Wallet", "empty@railpass.local", "01700000003", None),
]

SCHEDULE_DAYS = 7

def create_seed_data():
    init_db()
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for RailPass...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(BookingAttempt).delete()
        db.query(TicketVerification).delete()
        db.query(Ticket).delete()
        db.query(SeatHold).delete()
        db.query(Transaction).delete()
        db.query(Wallet).delete()
        db.query(User).delete()
        db.query(Schedule).delete()
        db.query(Train).delete()

        # 1. Create Trains
        print("Creating trains...")
        trains = []
        for name, number, train_type, origin, destination, departs, arrives, seats, fare in TRAINS:
            train = Train(
                name=name,
                train_number=number,
                train_type=train_type,
                from_station=origin,
                to_station=destination,
                departure_time=departs,
                arrival_time=arrives,
                total_seats=seats
            )
            trains.append((train, fare))
        db.add_all([train for train, _ in trains])
        db.flush()

        # 2. Create Schedules for the coming week
        print(f"Creating schedules for the next {SCHEDULE_DAYS} days...")
        today = date.today()
        schedule_count = 0
        for train, fare in trains:
            for offset in range(1, SCHEDULE_DAYS + 1):
                db.add(Schedule(
                    train_id=train.id,
                    journey_date=today + timedelta(days=offset),
                    price=fare,
                    available_seats=train.total_seats,
                    status="open"
                ))
                schedule_count += 1
        db.flush()

        # 3. Create Users with wallets
        print("Creating users and wallets...")
        ledger = LedgerStore(db)
        for name, email, phone, opening_balance in USERS:
            user = User(name=name, email=email, phone=phone)
            db.add(user)
            db.flush()

            wallet = ledger.open_wallet(user.id)
            if opening_balance:
                ledger.credit(wallet.id, opening_balance, "Opening balance", payment_method="opening")

        db.commit()

        print("✅ Seed data created successfully!")
        print(f"   - {len(trains)} trains")
        print(f"   - {schedule_count} schedules")
        print(f"   - {len(USERS)} users with wallets")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
