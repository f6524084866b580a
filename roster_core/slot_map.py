"""Per-caregiver, per-weekday index of booked windows."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from .time_utils import calc_shift_hours, normalize_time, overlaps

WEEKDAYS = range(7)


def _empty_week() -> dict[int, list[dict[str, Any]]]:
    return {day: [] for day in WEEKDAYS}


def build_slot_map(
    caregiver_ids: list[str],
    existing_schedules: list[dict[str, Any]],
) -> dict[str, dict[int, list[dict[str, Any]]]]:
    """Index existing bookings by caregiver and day of week.

    Every caregiver id gets all seven days, even without bookings. Entries for
    caregivers outside `caregiver_ids` or without a weekday are ignored.
    """
    slot_map = {str(cg_id): _empty_week() for cg_id in caregiver_ids}
    for s in existing_schedules:
        cg_id = str(s.get("caregiver_id"))
        day = s.get("day_of_week")
        if cg_id not in slot_map or day is None:
            continue
        slot_map[cg_id][int(day)].append(
            {
                "start": normalize_time(s.get("start_time")),
                "end": normalize_time(s.get("end_time")),
                "client_id": s.get("client_id"),
                "client_name": s.get("client_name", ""),
                "schedule_id": s.get("id"),
                "is_existing": True,
            }
        )
    for week in slot_map.values():
        for windows in week.values():
            windows.sort(key=lambda w: w["start"])
    return slot_map


def reserve_window(
    slot_map: dict[str, dict[int, list[dict[str, Any]]]],
    caregiver_id: str,
    day: int,
    window: dict[str, Any],
) -> None:
    """Book a window in memory, keeping the day's windows disjoint and ordered."""
    windows = slot_map[caregiver_id][day]
    clash = next((w for w in windows if overlaps(window["start"], window["end"], w["start"], w["end"])), None)
    if clash is not None:
        raise ValueError(
            f"window {window['start']}-{window['end']} overlaps "
            f"{clash['start']}-{clash['end']} for caregiver {caregiver_id} on day {day}"
        )
    windows.append(window)
    windows.sort(key=lambda w: w["start"])


def existing_hours_by_caregiver(existing_schedules: list[dict[str, Any]]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for s in existing_schedules:
        start = normalize_time(s.get("start_time"))
        end = normalize_time(s.get("end_time"))
        totals[str(s.get("caregiver_id"))] += calc_shift_hours(start, end)
    return dict(totals)
