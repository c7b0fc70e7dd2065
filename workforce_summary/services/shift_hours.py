from __future__ import annotations

from typing import Iterable

from workforce_summary.models import ShiftInterval


def parse_time_to_minutes(raw: str | None) -> int:
    """Minutes since midnight for ``HH:MM`` or ``HH:MM:SS``; malformed input is 0."""
    if not raw or not isinstance(raw, str):
        return 0
    parts = raw.strip().split(":")
    try:
        hours = int(parts[0])
    except ValueError:
        hours = 0
    try:
        minutes = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        minutes = 0
    return hours * 60 + minutes


def shift_minutes(shift: ShiftInterval) -> int:
    # Overnight shifts (end before start) are not wrapped to the next day.
    start_minutes = parse_time_to_minutes(shift.start)
    end_minutes = parse_time_to_minutes(shift.end)
    return max(0, end_minutes - start_minutes)


def calculate_shift_hours(shifts: Iterable[ShiftInterval] | None) -> float:
    if not shifts:
        return 0.0
    total_minutes = sum(shift_minutes(shift) for shift in shifts)
    return total_minutes / 60
