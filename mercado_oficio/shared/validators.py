"""Shared validation utilities"""

import re
import unicodedata
from datetime import date, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

# Weekday vocabulary indexed by date.weekday() (Monday == 0)
WEEKDAYS = ("LUNES", "MARTES", "MIERCOLES", "JUEVES", "VIERNES", "SABADO", "DOMINGO")

HHMM_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")

HOUR_QUANTUM = Decimal("0.01")


def normalize_weekday(value: Optional[str]) -> str:
    """
    Normalize a weekday name to the uppercase vocabulary.

    Accepts any case and accented spellings ("miércoles", "Sábado").

    Raises:
        ValueError: If the value is not a known weekday
    """
    if not value or not isinstance(value, str):
        raise ValueError("Weekday is required")

    stripped = unicodedata.normalize("NFKD", value.strip())
    ascii_name = "".join(c for c in stripped if not unicodedata.combining(c)).upper()

    if ascii_name not in WEEKDAYS:
        raise ValueError(f'El día "{value}" no es válido')
    return ascii_name


def weekday_of(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_hhmm(value: Union[str, time, None]) -> time:
    """
    Parse a 24h ``HH:MM`` string.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not value or not isinstance(value, str):
        raise ValueError("Time is required (HH:MM)")

    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f'La hora "{value}" no es válida. Use formato HH:mm')
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def minutes_between(start: time, end: time) -> int:
    """Minutes from start to end on the same day (negative if end is earlier)"""
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def minutes_to_hours(minutes: Union[int, Decimal]) -> Decimal:
    return (Decimal(minutes) / Decimal(60)).quantize(HOUR_QUANTUM, rounding=ROUND_HALF_UP)


def hours_to_minutes(hours: Union[int, float, str, Decimal]) -> Decimal:
    """Exact minutes for an hour figure; kept as Decimal so fractional minutes are never lost"""
    return Decimal(str(hours)) * Decimal(60)


def is_whole_minutes(hours: Union[int, float, str, Decimal]) -> bool:
    """True when ``hours`` has at most two decimals and maps to an integral number of minutes"""
    value = Decimal(str(hours))
    if value != value.quantize(HOUR_QUANTUM):
        return False
    return hours_to_minutes(value) % 1 == 0
