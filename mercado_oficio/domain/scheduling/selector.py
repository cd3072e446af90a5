"""
Schedule selection - composes the work sessions that cover a quote's hours.

The selector is the single place where slot rules live. The budget service
replays the client's submitted slots through it server-side, so whatever the
client believes about ``hours_remaining`` is advisory only.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterator, Optional, Union

from ...config import CANDIDATE_DATES_HORIZON_DAYS
from ...errors import NotFoundError, ValidationError
from ...shared.validators import (
    format_hhmm,
    hours_to_minutes,
    minutes_between,
    minutes_to_hours,
    normalize_weekday,
    parse_hhmm,
    weekday_of,
)
from .availability import AvailabilityWindow, windows_for_weekday

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSlot:
    slot_date: date
    start_time: time
    end_time: time

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start_time, self.end_time)

    @property
    def duration_hours(self) -> Decimal:
        return minutes_to_hours(self.duration_minutes)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.end_time)

    def overlaps(self, other: "TimeSlot") -> bool:
        return (
            self.slot_date == other.slot_date
            and self.start_time < other.end_time
            and other.start_time < self.end_time
        )

    def as_dict(self) -> dict:
        return {
            "date": self.slot_date.isoformat(),
            "startTime": format_hhmm(self.start_time),
            "endTime": format_hhmm(self.end_time),
            "durationHours": float(self.duration_hours),
        }


def propose_candidate_dates(
    weekday: str,
    horizon_days: int = CANDIDATE_DATES_HORIZON_DAYS,
    start: Optional[date] = None,
) -> Iterator[date]:
    """Yield every date in ``[start, start + horizon_days)`` falling on ``weekday``, ascending"""
    try:
        target = normalize_weekday(weekday)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    first = start or date.today()
    for offset in range(horizon_days):
        candidate = first + timedelta(days=offset)
        if weekday_of(candidate) == target:
            yield candidate


class ScheduleSelector:
    """Holds the slots picked so far against a budget's estimated hours"""

    def __init__(
        self,
        estimated_hours: Union[Decimal, int, float, str],
        availability: list[AvailabilityWindow],
        earliest_date: Optional[date] = None,
    ):
        self.required_minutes = hours_to_minutes(estimated_hours)
        self.availability = list(availability)
        self.earliest_date = earliest_date
        self.slots: list[TimeSlot] = []

    @property
    def allocated_minutes(self) -> int:
        return sum(slot.duration_minutes for slot in self.slots)

    @property
    def remaining_minutes(self) -> Decimal:
        return self.required_minutes - self.allocated_minutes

    @property
    def hours_remaining(self) -> Decimal:
        return minutes_to_hours(self.remaining_minutes)

    @property
    def is_ready(self) -> bool:
        return self.remaining_minutes == 0

    def candidate_dates(self, weekday: str, horizon_days: int = CANDIDATE_DATES_HORIZON_DAYS) -> Iterator[date]:
        return propose_candidate_dates(weekday, horizon_days, start=self.earliest_date)

    def add_slot(
        self,
        slot_date: date,
        start_time: Union[str, time],
        end_time: Union[str, time],
    ) -> TimeSlot:
        """Validate and append a slot; raises ValidationError when any rule fails"""
        try:
            start = parse_hhmm(start_time)
            end = parse_hhmm(end_time)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        slot = TimeSlot(slot_date=slot_date, start_time=start, end_time=end)

        if slot.duration_minutes <= 0:
            raise ValidationError(
                f"La hora de fin ({format_hhmm(end)}) debe ser posterior a la de inicio ({format_hhmm(start)})"
            )

        if slot.duration_minutes > self.remaining_minutes:
            raise ValidationError(
                f"Solo tienes {self.hours_remaining}h disponibles; "
                f"el horario dura {slot.duration_hours}h"
            )

        if self.earliest_date and slot_date < self.earliest_date:
            raise ValidationError(f"La fecha {slot_date.isoformat()} ya pasó")

        weekday = weekday_of(slot_date)
        day_windows = windows_for_weekday(self.availability, weekday)
        if not day_windows:
            raise ValidationError(f"El prestador no tiene disponibilidad los {weekday}")

        if not any(window.contains(start, end) for window in day_windows):
            ranges = ", ".join(
                f"{format_hhmm(w.start_time)}-{format_hhmm(w.end_time)}" for w in day_windows
            )
            raise ValidationError(
                f"El horario {format_hhmm(start)}-{format_hhmm(end)} está fuera de la "
                f"disponibilidad del {weekday} ({ranges})"
            )

        for existing in self.slots:
            if existing.overlaps(slot):
                raise ValidationError(
                    f"El horario se superpone con otro ya seleccionado el {slot_date.isoformat()}"
                )

        self.slots.append(slot)
        logger.debug(f"Slot added {slot.as_dict()} - {self.hours_remaining}h remaining")
        return slot

    def remove_slot(self, index: int) -> TimeSlot:
        if index < 0 or index >= len(self.slots):
            raise NotFoundError(f"No selected slot at position {index}")
        return self.slots.pop(index)
