"""
Availability parsing - normalizes a provider's weekly availability.

Provider profiles store availability in one of two shapes:

- a mapping of weekday to comma-joined ranges::

      {"lunes": "09:00-13:00, 15:00-18:00", "miércoles": "14:00-18:00"}

- an already structured list::

      [{"dia": "LUNES", "horaInicio": "09:00", "horaFin": "13:00"}]

Either shape may also arrive JSON-encoded as a string. Both are normalized to
a list of ``AvailabilityWindow``. Malformed entries are logged and skipped so
one bad range never hides the rest of the week.
"""

import json
import logging
from dataclasses import dataclass
from datetime import time
from typing import Any, Iterable, Optional

from ...shared.validators import WEEKDAYS, format_hhmm, normalize_weekday, parse_hhmm

logger = logging.getLogger(__name__)

_WEEKDAY_KEYS = ("dia", "weekday", "day")
_START_KEYS = ("horaInicio", "startTime", "start_time", "start")
_END_KEYS = ("horaFin", "endTime", "end_time", "end")


@dataclass(frozen=True)
class AvailabilityWindow:
    weekday: str
    start_time: time
    end_time: time

    def contains(self, start: time, end: time) -> bool:
        return self.start_time <= start and end <= self.end_time

    def as_dict(self) -> dict:
        return {
            "weekday": self.weekday,
            "startTime": format_hhmm(self.start_time),
            "endTime": format_hhmm(self.end_time),
        }


def _first(entry: dict, keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        if key in entry and entry[key] not in (None, ""):
            return entry[key]
    return None


def _build_window(weekday: Any, start: Any, end: Any) -> Optional[AvailabilityWindow]:
    try:
        window = AvailabilityWindow(
            weekday=normalize_weekday(weekday),
            start_time=parse_hhmm(start.strip() if isinstance(start, str) else start),
            end_time=parse_hhmm(end.strip() if isinstance(end, str) else end),
        )
    except (ValueError, AttributeError) as e:
        logger.warning(f"⚠️ Skipping availability entry {weekday!r} {start!r}-{end!r}: {e}")
        return None

    if window.end_time <= window.start_time:
        logger.warning(
            f"⚠️ Skipping availability entry {weekday!r}: end {end!r} is not after start {start!r}"
        )
        return None
    return window


def _parse_mapping(raw: dict) -> list[AvailabilityWindow]:
    windows = []
    for day, ranges in raw.items():
        if not isinstance(ranges, str):
            logger.warning(f"⚠️ Skipping availability for {day!r}: expected a string of ranges")
            continue
        for chunk in ranges.split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            parts = chunk.split("-")
            if len(parts) != 2:
                logger.warning(f"⚠️ Skipping malformed range {chunk!r} for {day!r}")
                continue
            window = _build_window(day, parts[0], parts[1])
            if window:
                windows.append(window)
    return windows


def _parse_list(raw: list) -> list[AvailabilityWindow]:
    windows = []
    for entry in raw:
        if not isinstance(entry, dict):
            logger.warning(f"⚠️ Skipping availability entry {entry!r}: expected an object")
            continue
        window = _build_window(
            _first(entry, _WEEKDAY_KEYS), _first(entry, _START_KEYS), _first(entry, _END_KEYS)
        )
        if window:
            windows.append(window)
    return windows


def parse_availability(raw: Any) -> list[AvailabilityWindow]:
    """
    Parse raw availability into windows ordered by weekday then start time.

    Never raises: empty or unparsable input yields an empty list.
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"⚠️ Could not decode availability JSON: {e}")
            return []

    if isinstance(raw, dict):
        windows = _parse_mapping(raw)
    elif isinstance(raw, list):
        windows = _parse_list(raw)
    else:
        logger.warning(f"⚠️ Unsupported availability type: {type(raw).__name__}")
        return []

    return sorted(windows, key=lambda w: (WEEKDAYS.index(w.weekday), w.start_time, w.end_time))


def windows_for_weekday(windows: Iterable[AvailabilityWindow], weekday: str) -> list[AvailabilityWindow]:
    return [w for w in windows if w.weekday == weekday]
