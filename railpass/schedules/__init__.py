"""Trains and dated schedules that seats are sold against"""

from .router import router
from .service import ScheduleService

__all__ = ["router", "ScheduleService"]
