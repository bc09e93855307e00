import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from railpass.bookings.schemas import (
    AttemptState, BookingAttempt as BookingAttemptSchema, BookingResult, MaintenanceReport, OPEN_STATES
)
from railpass.config import settings
from railpass.errors import (
    BookingError, DuplicateBooking, IssuanceError, NotFound, NotRefundable, PaymentDeclined,
    ScheduleClosed, ScheduleNotFound, SeatTaken, SoldOut, StepTimeout, StorageUnavailable,
    TicketNotFound, WalletNotFound, is_timeout
)
from railpass.inventory.tracker import InventoryTracker, is_seat_conflict
from railpass.ledger.schemas import Transaction as TransactionSchema
from railpass.ledger.service import LedgerStore, to_amount
from railpass.models import BookingAttempt, Schedule, Ticket, User, Wallet, utcnow
from railpass.schedules.service import departure_of
from railpass.tickets.issuer import TicketIssuer
from railpass.tickets.schemas import PaymentStatus, Ticket as TicketSchema, TicketDraft, TicketStatus

logger = logging.getLogger(__name__)


class AttemptSuperseded(Exception):
    """The attempt left the expected state (compensated elsewhere) mid-step."""


class ReservationCoordinator:
    """Runs reserve -> debit -> issue as a saga with compensation.

    Each step commits its own transaction together with the attempt's state
    change. The state change is conditional on the previous state, so a step
    racing with compensation (or with the recovery sweep) rolls itself back
    instead of leaving a debit or a hold behind.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        secret: Optional[str] = None,
        hold_ttl_seconds: Optional[int] = None,
        one_ticket_per_user: Optional[bool] = None
    ):
        self.session_factory = session_factory
        self.secret = secret
        self.hold_ttl = timedelta(
            seconds=settings.SEAT_HOLD_TTL_SECONDS if hold_ttl_seconds is None else hold_ttl_seconds
        )
        self.one_ticket_per_user = (
            settings.ONE_TICKET_PER_USER_PER_SCHEDULE if one_ticket_per_user is None else one_ticket_per_user
        )

    # ------------------------------------------------------------------
    # book
    # ------------------------------------------------------------------
    def book(self, user_id: int, schedule_id: int, seat_number: str, price=None) -> BookingResult:
        attempt_id = str(uuid.uuid4())

        # Requested
        try:
            wallet_id, amount = self._open_attempt(attempt_id, user_id, schedule_id, seat_number, price)
        except BookingError as e:
            logger.info("Booking %s rejected: %s", attempt_id, e.code.value)
            return self._failure(attempt_id, e)
        except DBAPIError as exc:
            if is_timeout(exc):
                return self._failure(attempt_id, StepTimeout("Booking could not be recorded in time"))
            logger.exception("Booking %s could not be recorded", attempt_id)
            raise StorageUnavailable("Could not record booking attempt") from exc

        # Requested -> SeatHeld
        try:
            hold_id = self._step("reserve", IssuanceError, lambda: self._reserve(attempt_id, schedule_id, seat_number))
        except (BookingError, AttemptSuperseded) as e:
            return self._compensate(attempt_id, self._as_booking_error(e))
        except StorageUnavailable:
            self._compensate_quietly(attempt_id)
            raise

        # SeatHeld -> Paid
        try:
            debit_id = self._step(
                "debit", PaymentDeclined,
                lambda: self._debit(attempt_id, wallet_id, amount, schedule_id, seat_number)
            )
        except (BookingError, AttemptSuperseded) as e:
            return self._compensate(attempt_id, self._as_booking_error(e))
        except StorageUnavailable:
            self._compensate_quietly(attempt_id)
            raise

        # Paid -> Issued
        draft = TicketDraft(
            user_id=user_id,
            schedule_id=schedule_id,
            seat_number=seat_number,
            price=amount,
            hold_id=hold_id,
            payment_id=str(debit_id),
            payment_method="wallet"
        )
        try:
            ticket = self._step("issue", IssuanceError, lambda: self._issue(attempt_id, draft))
        except (BookingError, AttemptSuperseded) as e:
            return self._compensate(attempt_id, self._as_booking_error(e))
        except StorageUnavailable:
            self._compensate_quietly(attempt_id)
            raise

        logger.info("Booking %s issued ticket %s (schedule %s seat %s)", attempt_id, ticket.id, schedule_id, seat_number)
        return BookingResult(
            success=True,
            attempt_id=attempt_id,
            state=AttemptState.ISSUED,
            ticket=ticket,
            message="Ticket issued"
        )

    def _open_attempt(self, attempt_id, user_id, schedule_id, seat_number, price) -> Tuple[int, Decimal]:
        """Validate the request and persist the attempt in REQUESTED"""

        with self._session() as db:
            schedule = db.query(Schedule).filter(Schedule.id == schedule_id).first()
            if not schedule:
                raise ScheduleNotFound(f"Schedule {schedule_id} not found")
            if schedule.status != "open":
                raise ScheduleClosed(f"Schedule {schedule_id} is {schedule.status}")
            if not db.query(User.id).filter(User.id == user_id).first():
                raise NotFound(f"User {user_id} not found")

            wallet = db.query(Wallet.id).filter(Wallet.user_id == user_id).first()
            if not wallet:
                raise WalletNotFound(f"No wallet for user {user_id}")

            amount = to_amount(schedule.price if price is None else price)

            if self.one_ticket_per_user:
                existing = db.query(Ticket.id).filter(
                    Ticket.user_id == user_id,
                    Ticket.schedule_id == schedule_id,
                    Ticket.status != TicketStatus.VOID.value
                ).first()
                if existing:
                    raise DuplicateBooking("You already have a ticket for this train schedule")

            if InventoryTracker(db).is_seat_taken(schedule_id, seat_number):
                raise SeatTaken(f"Seat {seat_number} is already taken")
            if schedule.available_seats < 1:
                raise SoldOut("No seats available for this schedule")

            db.add(BookingAttempt(
                id=attempt_id,
                user_id=user_id,
                schedule_id=schedule_id,
                seat_number=seat_number,
                price=amount,
                state=AttemptState.REQUESTED.value
            ))
            db.commit()
            return wallet.id, amount

    def _reserve(self, attempt_id, schedule_id, seat_number) -> str:
        with self._session() as db:
            with db.begin():
                token = InventoryTracker(db).try_reserve(schedule_id, 1, seat_number=seat_number)
                self._advance(db, attempt_id, AttemptState.REQUESTED, AttemptState.SEAT_HELD, hold_id=token.hold_id)
            logger.info("Booking %s holds seat %s on schedule %s", attempt_id, seat_number, schedule_id)
            return token.hold_id

    def _debit(self, attempt_id, wallet_id, amount, schedule_id, seat_number) -> int:
        with self._session() as db:
            with db.begin():
                transaction = LedgerStore(db).debit(
                    wallet_id,
                    amount,
                    f"Ticket for schedule {schedule_id}, seat {seat_number}",
                    reference=attempt_id
                )
                transaction_id = transaction.id
                self._advance(db, attempt_id, AttemptState.SEAT_HELD, AttemptState.PAID,
                              debit_transaction_id=transaction_id)
            logger.info("Booking %s paid %s (transaction %s)", attempt_id, amount, transaction_id)
            return transaction_id

    def _issue(self, attempt_id, draft: TicketDraft) -> TicketSchema:
        with self._session() as db:
            with db.begin():
                InventoryTracker(db).consume(draft.hold_id)
                ticket = TicketIssuer(db, secret=self.secret).issue(draft)
                self._advance(db, attempt_id, AttemptState.PAID, AttemptState.ISSUED, ticket_id=ticket.id)
                issued = TicketSchema.model_validate(ticket)
            return issued

    def _step(self, name: str, failure_cls, fn: Callable):
        """Run one saga step, mapping driver errors onto the booking taxonomy"""
        try:
            return fn()
        except (BookingError, AttemptSuperseded):
            raise
        except IntegrityError as exc:
            if is_seat_conflict(exc):
                raise SeatTaken("Seat was taken by a concurrent booking") from exc
            logger.exception("Step %s hit an integrity error", name)
            raise failure_cls(f"{name} failed: {exc.orig}") from exc
        except DBAPIError as exc:
            if is_timeout(exc):
                logger.warning("Step %s timed out: %s", name, exc.orig)
                raise StepTimeout(f"{name} did not complete within {settings.STEP_TIMEOUT_SECONDS}s") from exc
            logger.exception("Step %s lost the datastore", name)
            raise StorageUnavailable(f"{name} failed: {exc.orig}") from exc
        except Exception as exc:
            logger.exception("Step %s failed", name)
            raise failure_cls(f"{name} failed: {exc}") from exc

    def _advance(self, db: Session, attempt_id: str, from_state: AttemptState, to_state: AttemptState, **fields):
        values = {BookingAttempt.state: to_state.value, BookingAttempt.updated_at: utcnow()}
        values.update({getattr(BookingAttempt, key): value for key, value in fields.items()})

        updated = (
            db.query(BookingAttempt)
            .filter(BookingAttempt.id == attempt_id, BookingAttempt.state == from_state.value)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise AttemptSuperseded(f"Attempt {attempt_id} is no longer {from_state.value}")

    # ------------------------------------------------------------------
    # compensation
    # ------------------------------------------------------------------
    def _compensate(self, attempt_id: str, error: BookingError) -> BookingResult:
        """Undo whatever the attempt did, then report the error"""

        try:
            self._roll_back_attempt(attempt_id, error)
        except DBAPIError as exc:
            logger.exception("Compensation for booking %s deferred to recovery", attempt_id)
            raise StorageUnavailable(f"Could not compensate booking {attempt_id}") from exc

        return self._failure(attempt_id, error)

    def _compensate_quietly(self, attempt_id: str):
        try:
            self._roll_back_attempt(attempt_id, StepTimeout("storage unavailable"))
        except DBAPIError:
            logger.exception("Compensation for booking %s deferred to recovery", attempt_id)

    def _roll_back_attempt(self, attempt_id: str, error: BookingError) -> bool:
        with self._session() as db:
            with db.begin():
                (
                    db.query(BookingAttempt)
                    .filter(
                        BookingAttempt.id == attempt_id,
                        BookingAttempt.state.in_([s.value for s in OPEN_STATES])
                    )
                    .update(
                        {
                            BookingAttempt.state: AttemptState.ROLLED_BACK.value,
                            BookingAttempt.error_code: error.code.value,
                            BookingAttempt.error_message: error.message[:500],
                            BookingAttempt.updated_at: utcnow()
                        },
                        synchronize_session=False
                    )
                )

                attempt = db.query(BookingAttempt).filter(BookingAttempt.id == attempt_id).first()
                if not attempt or attempt.state != AttemptState.ROLLED_BACK.value:
                    return False

                if attempt.debit_transaction_id:
                    LedgerStore(db).reverse(
                        attempt.debit_transaction_id,
                        f"Refund for failed booking {attempt_id}"
                    )
                if attempt.hold_id:
                    InventoryTracker(db).release(attempt.hold_id)

                self._advance(db, attempt_id, AttemptState.ROLLED_BACK, AttemptState.FAILED)

            logger.warning("Booking %s rolled back: %s", attempt_id, error.code.value)
            return True

    def recover_stale_attempts(self, older_than: Optional[datetime] = None) -> MaintenanceReport:
        """Finish interrupted bookings and free seats nobody will ever pay for"""

        cutoff = older_than or (utcnow() - self.hold_ttl)

        with self._session() as db:
            stale_ids = [
                row.id for row in
                db.query(BookingAttempt.id)
                .filter(
                    BookingAttempt.state.in_([s.value for s in OPEN_STATES] + [AttemptState.ROLLED_BACK.value]),
                    BookingAttempt.updated_at < cutoff
                )
                .all()
            ]

        recovered = 0
        for attempt_id in stale_ids:
            if self._roll_back_attempt(attempt_id, StepTimeout("Booking abandoned before completion")):
                recovered += 1

        with self._session() as db:
            with db.begin():
                expired = InventoryTracker(db).expire_stale_holds(cutoff)

        if recovered or expired:
            logger.warning("Recovery rolled back %d booking(s), expired %d hold(s)", recovered, expired)
        return MaintenanceReport(attempts_recovered=recovered, holds_expired=expired, ran_at=utcnow())

    # ------------------------------------------------------------------
    # refund
    # ------------------------------------------------------------------
    def refund(self, ticket_id: int, reason: Optional[str] = None) -> TransactionSchema:
        """Void an unused ticket before departure, credit the wallet, free the seat"""

        try:
            with self._session() as db:
                with db.begin():
                    ticket = (
                        db.query(Ticket)
                        .options(joinedload(Ticket.schedule).joinedload(Schedule.train))
                        .filter(Ticket.id == ticket_id)
                        .first()
                    )
                    if not ticket:
                        raise TicketNotFound(f"Ticket {ticket_id} not found")
                    if ticket.status != TicketStatus.ISSUED.value:
                        raise NotRefundable(f"Ticket is {ticket.status}")
                    if departure_of(ticket.schedule) <= datetime.now():
                        raise NotRefundable("Train has already departed")

                    voided = (
                        db.query(Ticket)
                        .filter(Ticket.id == ticket_id, Ticket.status == TicketStatus.ISSUED.value)
                        .update(
                            {
                                Ticket.status: TicketStatus.VOID.value,
                                Ticket.payment_status: PaymentStatus.REFUNDED.value
                            },
                            synchronize_session=False
                        )
                    )
                    if voided != 1:
                        raise NotRefundable("Ticket was used or refunded concurrently")

                    wallet = db.query(Wallet).filter(Wallet.user_id == ticket.user_id).first()
                    if not wallet:
                        raise WalletNotFound(f"No wallet for user {ticket.user_id}")

                    description = f"Refund for ticket {ticket_id}"
                    if reason:
                        description = f"{description}: {reason}"[:255]
                    transaction = LedgerStore(db).credit(
                        wallet.id,
                        ticket.price,
                        description,
                        reference=f"refund:{ticket_id}",
                        payment_id=ticket.payment_id,
                        payment_method=ticket.payment_method
                    )
                    if ticket.hold_id:
                        InventoryTracker(db).restore(ticket.hold_id)

                    refunded = TransactionSchema.model_validate(transaction)
        except (BookingError, IntegrityError):
            raise
        except DBAPIError as exc:
            if is_timeout(exc):
                logger.warning("Refund of ticket %s timed out: %s", ticket_id, exc.orig)
                raise StepTimeout(f"refund did not complete within {settings.STEP_TIMEOUT_SECONDS}s") from exc
            logger.exception("Refund of ticket %s lost the datastore", ticket_id)
            raise StorageUnavailable(f"refund failed: {exc.orig}") from exc

        logger.info("Ticket %s refunded %s to wallet %s", ticket_id, refunded.amount, refunded.wallet_id)
        return refunded

    def get_attempt(self, attempt_id: str) -> Optional[BookingAttemptSchema]:
        with self._session() as db:
            attempt = db.query(BookingAttempt).filter(BookingAttempt.id == attempt_id).first()
            return BookingAttemptSchema.model_validate(attempt) if attempt else None

    # ------------------------------------------------------------------
    def _session(self) -> Session:
        return self.session_factory()

    @staticmethod
    def _as_booking_error(exc: Exception) -> BookingError:
        if isinstance(exc, BookingError):
            return exc
        return StepTimeout(str(exc))

    @staticmethod
    def _failure(attempt_id: str, error: BookingError) -> BookingResult:
        return BookingResult(
            success=False,
            attempt_id=attempt_id,
            state=AttemptState.FAILED,
            error_code=error.code,
            message=error.message
        )
