import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///./railpass_test.db")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("MAINTENANCE_INTERVAL_SECONDS", "0")
os.environ.setdefault("READ_RETRY_BACKOFF_SECONDS", "0.01")

from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from railpass import models  # noqa: F401
from railpass.database import Base, get_db, get_session_factory, make_engine
from railpass.ledger.service import LedgerStore
from railpass.main import app
from railpass.models import Schedule, Train, User

SECRET = "test-secret-key"


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'railpass.db'}", step_timeout=10)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_schedule(session_factory):
    """Create a train with one open schedule; returns the schedule id"""
    counter = {"n": 0}

    def _make(seats=3, price="450.00", days_ahead=5, status="open", available=None):
        counter["n"] += 1
        with session_factory() as db:
            train = Train(
                name=f"Test Express {counter['n']}",
                train_number=f"T{counter['n']:03d}",
                from_station="Dhaka",
                to_station="Chattogram",
                departure_time=time(7, 0),
                arrival_time=time(12, 10),
                total_seats=seats
            )
            db.add(train)
            db.flush()
            schedule = Schedule(
                train_id=train.id,
                journey_date=date.today() + timedelta(days=days_ahead),
                price=Decimal(price),
                available_seats=seats if available is None else available,
                status=status
            )
            db.add(schedule)
            db.commit()
            return schedule.id

    return _make


@pytest.fixture
def make_user(session_factory):
    """Create a user with a funded wallet; returns (user_id, wallet_id)"""
    counter = {"n": 0}

    def _make(balance="1000.00"):
        counter["n"] += 1
        with session_factory() as db:
            user = User(name=f"Passenger {counter['n']}", email=f"passenger{counter['n']}@example.com")
            db.add(user)
            db.flush()
            ledger = LedgerStore(db)
            wallet = ledger.open_wallet(user.id)
            if Decimal(balance) > 0:
                ledger.credit(wallet.id, balance, "Opening balance")
            db.commit()
            return user.id, wallet.id

    return _make


@pytest.fixture
def seats_left(session_factory):
    def _seats(schedule_id):
        with session_factory() as db:
            return db.query(Schedule.available_seats).filter(Schedule.id == schedule_id).scalar()

    return _seats


@pytest.fixture
def balance_of(session_factory):
    def _balance(wallet_id):
        with session_factory() as db:
            return LedgerStore(db).get_wallet(wallet_id).balance

    return _balance


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
