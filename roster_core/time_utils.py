"""Wall-clock time helpers for weekly recurring schedules.

All times are local "HH:MM" strings; there is no timezone handling.
"""

from __future__ import annotations

from typing import Any

MINUTES_PER_DAY = 24 * 60
DEFAULT_TIME = "08:00"
WORKDAY_START = "08:00"
WORKDAY_END = "18:00"


def parse_hhmm_to_minutes(value: Any) -> int | None:
    """Parse HH:MM (or HH:MM:SS) into minutes after midnight."""
    if not value or ":" not in str(value):
        return None
    parts = str(value).strip().split(":")
    try:
        h = int(parts[0])
        m = int(parts[1])
    except (TypeError, ValueError):
        return None
    if h < 0 or h > 23 or m < 0 or m > 59:
        return None
    return h * 60 + m


def minutes_to_hhmm(total: int) -> str:
    total %= MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def normalize_time(raw: Any) -> str:
    """Return a zero-padded "HH:MM", dropping seconds.

    Missing values fall back to 08:00.
    """
    if raw is None or str(raw).strip() == "":
        return DEFAULT_TIME
    minutes = parse_hhmm_to_minutes(raw)
    if minutes is None:
        raise ValueError(f"invalid time of day: {raw!r}")
    return minutes_to_hhmm(minutes)


def to_hours(hhmm: str | None) -> float:
    minutes = parse_hhmm_to_minutes(hhmm)
    if minutes is None:
        return 0.0
    return minutes / 60.0


def add_minutes(hhmm: str, minutes: int) -> str:
    """Shift a time by `minutes`, wrapping modulo 24 hours."""
    start = parse_hhmm_to_minutes(hhmm)
    if start is None:
        raise ValueError(f"invalid time of day: {hhmm!r}")
    return minutes_to_hhmm(start + int(minutes))


def calc_shift_hours(start: str | None, end: str | None) -> float:
    """Duration of a window in decimal hours; an end before the start wraps past midnight."""
    s = parse_hhmm_to_minutes(start)
    e = parse_hhmm_to_minutes(end)
    if s is None or e is None:
        return 0.0
    diff = e - s
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff / 60.0


def overlaps(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Half-open interval test; touching windows do not overlap."""
    a0 = parse_hhmm_to_minutes(start_a)
    a1 = parse_hhmm_to_minutes(end_a)
    b0 = parse_hhmm_to_minutes(start_b)
    b1 = parse_hhmm_to_minutes(end_b)
    if None in (a0, a1, b0, b1):
        return False
    return a0 < b1 and a1 > b0


def find_slot(
    windows: list[dict[str, Any]],
    duration_minutes: int,
    window_start: str = WORKDAY_START,
    window_end: str = WORKDAY_END,
) -> str | None:
    """Return the earliest start inside the working window that fits.

    Candidates are the window opening plus every booked window's end time,
    scanned in ascending order. Returns None when nothing fits.
    """
    open_min = parse_hhmm_to_minutes(window_start)
    close_min = parse_hhmm_to_minutes(window_end)
    if open_min is None or close_min is None or duration_minutes <= 0:
        return None

    booked = sorted(
        (parse_hhmm_to_minutes(w["start"]), parse_hhmm_to_minutes(w["end"]))
        for w in windows
    )
    candidates = sorted({open_min, *(end for _, end in booked if end is not None)})

    for candidate in candidates:
        if candidate < open_min:
            continue
        if candidate + duration_minutes > close_min:
            break
        finish = candidate + duration_minutes
        if not any(s < finish and e > candidate for s, e in booked if s is not None and e is not None):
            return minutes_to_hhmm(candidate)
    return None
