"""
Booking Module

Runs a booking as a saga over the inventory, ledger and ticket components:

- coordinator.py: ReservationCoordinator (book, refund, recovery sweep)
- router.py: FastAPI endpoints for bookings and refunds
- schemas.py: Pydantic models for booking attempts and results
"""

from .router import router
from .coordinator import ReservationCoordinator
from .schemas import AttemptState, BookingRequest, BookingResult, MaintenanceReport

__all__ = [
    "router",
    "ReservationCoordinator",
    "AttemptState",
    "BookingRequest",
    "BookingResult",
    "MaintenanceReport"
]
