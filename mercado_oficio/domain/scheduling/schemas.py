"""Scheduling schemas - Pydantic models for slots and availability"""

import datetime

from pydantic import BaseModel, field_validator

from ...shared.validators import parse_hhmm


class SlotRequest(BaseModel):
    """A work session the client wants to book"""

    date: datetime.date
    startTime: str  # HH:MM
    endTime: str  # HH:MM

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parse_hhmm(v)
        return v.strip()


class SlotResponse(BaseModel):
    id: int
    date: datetime.date
    startTime: str
    endTime: str
    durationHours: float


class AvailabilityWindowResponse(BaseModel):
    weekday: str
    startTime: str
    endTime: str


class CandidateDatesResponse(BaseModel):
    weekday: str
    windows: list[AvailabilityWindowResponse]
    dates: list[datetime.date]
    hoursRemaining: float
