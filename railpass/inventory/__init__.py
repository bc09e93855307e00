"""Seat inventory: per-schedule counters and seat holds"""

from .tracker import InventoryTracker
from .schemas import HoldStatus, ReservationToken, SeatMap

__all__ = ["InventoryTracker", "HoldStatus", "ReservationToken", "SeatMap"]
