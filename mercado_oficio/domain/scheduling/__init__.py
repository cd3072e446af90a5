"""Scheduling domain - provider availability and client slot selection"""

from .availability import AvailabilityWindow, parse_availability
from .selector import ScheduleSelector, TimeSlot, propose_candidate_dates

__all__ = [
    "AvailabilityWindow",
    "ScheduleSelector",
    "TimeSlot",
    "parse_availability",
    "propose_candidate_dates",
]
