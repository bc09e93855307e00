from datetime import datetime, timezone

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Date, Time, Text, ForeignKey, Numeric, CheckConstraint, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from railpass.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# BigInteger keys fall back to plain INTEGER on SQLite so they still autoincrement
Id = BigInteger().with_variant(Integer, "sqlite")

# ================================
# Users
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(Id, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    wallet = relationship("Wallet", back_populates="user", uselist=False)
    tickets = relationship("Ticket", back_populates="user")

# ================================
# Trains & Schedules
# ================================
class Train(Base):
    __tablename__ = "trains"

    id = Column(Id, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    train_number = Column(String(50), unique=True, nullable=False, index=True)
    train_type = Column(String(50), default="intercity")
    from_station = Column(String(255), nullable=False)
    to_station = Column(String(255), nullable=False)
    departure_time = Column(Time, nullable=False)
    arrival_time = Column(Time, nullable=False)
    total_seats = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_trains_total_seats_positive"),
    )

    # Relationships
    schedules = relationship("Schedule", back_populates="train")

class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(Id, primary_key=True, index=True)
    train_id = Column(Id, ForeignKey("trains.id", ondelete="RESTRICT"), nullable=False, index=True)
    journey_date = Column(Date, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="open", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_schedules_available_seats_non_negative"),
        UniqueConstraint("train_id", "journey_date", name="uq_schedules_train_date"),
    )

    # Relationships
    train = relationship("Train", back_populates="schedules")
    tickets = relationship("Ticket", back_populates="schedule")
    seat_holds = relationship("SeatHold", back_populates="schedule")

# ================================
# Seat Holds (reservation tokens)
# ================================
class SeatHold(Base):
    __tablename__ = "seat_holds"

    id = Column(String(36), primary_key=True)
    schedule_id = Column(Id, ForeignKey("schedules.id"), nullable=False, index=True)
    seat_number = Column(String(20))
    seat_count = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="held", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    released_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("seat_count > 0", name="ck_seat_holds_seat_count_positive"),
        # first claim on a seat wins; released holds free the seat again
        Index(
            "uq_seat_holds_active_seat", "schedule_id", "seat_number", unique=True,
            postgresql_where=text("status != 'released'"),
            sqlite_where=text("status != 'released'"),
        ),
    )

    # Relationships
    schedule = relationship("Schedule", back_populates="seat_holds")

# ================================
# Tickets & Verifications
# ================================
class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Id, primary_key=True, index=True)
    user_id = Column(Id, ForeignKey("users.id"), nullable=False, index=True)
    schedule_id = Column(Id, ForeignKey("schedules.id"), nullable=False, index=True)
    hold_id = Column(String(36), ForeignKey("seat_holds.id"))
    seat_number = Column(String(20), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    payment_id = Column(String(100))
    payment_method = Column(String(50), default="wallet")
    payment_status = Column(String(20), nullable=False, default="completed")
    ticket_hash = Column(String(64), unique=True, nullable=False, index=True)
    nonce = Column(String(32), nullable=False)
    qr_code = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="issued", index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            "uq_tickets_active_seat", "schedule_id", "seat_number", unique=True,
            postgresql_where=text("status != 'void'"),
            sqlite_where=text("status != 'void'"),
        ),
    )

    # Relationships
    user = relationship("User", back_populates="tickets")
    schedule = relationship("Schedule", back_populates="tickets")
    verifications = relationship("TicketVerification", back_populates="ticket", order_by="TicketVerification.id")

class TicketVerification(Base):
    __tablename__ = "ticket_verifications"

    id = Column(Id, primary_key=True, index=True)
    ticket_id = Column(Id, ForeignKey("tickets.id"), nullable=False, index=True)
    verified_by = Column(String(100))
    location = Column(String(255), default="Unknown")
    outcome = Column(String(20), nullable=False, index=True)
    reason = Column(String(255))
    verified_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    ticket = relationship("Ticket", back_populates="verifications")

# ================================
# Wallets & Ledger
# ================================
class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Id, primary_key=True, index=True)
    user_id = Column(Id, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="BDT")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    # Relationships
    user = relationship("User", back_populates="wallet")
    transactions = relationship("Transaction", back_populates="wallet", order_by="Transaction.id")

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Id, primary_key=True, index=True)
    wallet_id = Column(Id, ForeignKey("wallets.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(String(10), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="completed")
    description = Column(String(255))
    reference = Column(String(64), index=True)
    reverses_id = Column(Id, ForeignKey("transactions.id"), unique=True)
    payment_id = Column(String(100))
    payment_method = Column(String(50))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("type IN ('credit', 'debit')", name="ck_transactions_type"),
    )

    # Relationships
    wallet = relationship("Wallet", back_populates="transactions")

# ================================
# Booking Attempts (saga log)
# ================================
class BookingAttempt(Base):
    __tablename__ = "booking_attempts"

    id = Column(String(36), primary_key=True)
    user_id = Column(Id, ForeignKey("users.id"), nullable=False, index=True)
    schedule_id = Column(Id, ForeignKey("schedules.id"), nullable=False, index=True)
    seat_number = Column(String(20), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    state = Column(String(20), nullable=False, default="requested", index=True)
    hold_id = Column(String(36), ForeignKey("seat_holds.id"))
    debit_transaction_id = Column(Id, ForeignKey("transactions.id"))
    ticket_id = Column(Id, ForeignKey("tickets.id"))
    error_code = Column(String(50))
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
