from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from typing import Optional

from railpass.bookings.coordinator import ReservationCoordinator
from railpass.bookings.schemas import (
    BookingAttempt, BookingRequest, BookingResult, MaintenanceReport, RefundRequest, RefundResponse
)
from railpass.database import get_session_factory
from railpass.errors import BookingError, http_error

router = APIRouter()

def get_coordinator(session_factory: sessionmaker = Depends(get_session_factory)) -> ReservationCoordinator:
    return ReservationCoordinator(session_factory)

@router.post("/", response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def book_ticket(
    request: BookingRequest,
    coordinator: ReservationCoordinator = Depends(get_coordinator)
):
    """Reserve a seat, pay from the wallet and issue the ticket in one call"""

    result = coordinator.book(
        user_id=request.user_id,
        schedule_id=request.schedule_id,
        seat_number=request.seat_number,
        price=request.price
    )

    if not result.success:
        error = http_error(result.error_code, result.message)
        # the attempt id lets clients look up what happened
        return JSONResponse(
            status_code=error.status_code,
            content={"detail": {**error.detail, "attempt_id": result.attempt_id}}
        )

    return result

@router.post("/tickets/{ticket_id}/refund", response_model=RefundResponse)
def refund_ticket(
    ticket_id: int,
    request: Optional[RefundRequest] = None,
    coordinator: ReservationCoordinator = Depends(get_coordinator)
):
    """Cancel an unused ticket before departure and refund its price to the wallet"""

    try:
        transaction = coordinator.refund(ticket_id, reason=request.reason if request else None)
    except BookingError as e:
        raise http_error(e.code, e.message)

    return RefundResponse(
        success=True,
        message="Ticket cancelled and refunded to wallet",
        ticket_id=ticket_id,
        transaction=transaction
    )

@router.get("/attempts/{attempt_id}", response_model=BookingAttempt)
def get_booking_attempt(
    attempt_id: str,
    coordinator: ReservationCoordinator = Depends(get_coordinator)
):
    """Saga state of a booking attempt"""

    attempt = coordinator.get_attempt(attempt_id)
    if not attempt:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking attempt not found"
        )
    return attempt

@router.post("/maintenance/recover", response_model=MaintenanceReport)
def recover_stale_bookings(
    coordinator: ReservationCoordinator = Depends(get_coordinator)
):
    """Roll back interrupted bookings and expire abandoned seat holds"""
    return coordinator.recover_stale_attempts()
