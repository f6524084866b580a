from __future__ import annotations

import hashlib
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from .ranking import RankedCaregiver, rank_caregivers
from .slot_map import build_slot_map, existing_hours_by_caregiver, reserve_window
from .time_utils import WORKDAY_END, WORKDAY_START, add_minutes, find_slot, normalize_time, overlaps

DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

# Mid-week first, weekend last.
DAY_PRIORITY = (1, 3, 2, 4, 5, 0, 6)

CAPACITY_EPSILON = 0.01

REASON_AT_CAPACITY = "All caregivers at hour capacity."
REASON_NO_SLOT = "No available time slot found for any caregiver."
REASON_UNKNOWN_CLIENT = "Client record not found."


@dataclass
class RunState:
    proposals: list[dict[str, Any]]
    unscheduled: list[dict[str, Any]]
    remaining: dict[str, float]
    slot_map: dict[str, dict[int, list[dict[str, Any]]]]
    proposed_hours: dict[str, float]


def proposal_key(caregiver_id: str, client_id: str, day: int, start: str, end: str) -> str:
    """Stable content hash of a proposed weekly slot."""
    raw = f"{caregiver_id}|{client_id}|{day}|{start}|{end}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def hours_per_visit(hours_per_week: float, visits_per_week: int) -> float:
    return round(float(hours_per_week) / int(visits_per_week), 2)


def _initial_state(
    caregivers: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
) -> RunState:
    cg_ids = [str(cg.get("id")) for cg in caregivers]
    existing_hours = existing_hours_by_caregiver(existing_schedules)
    remaining = {
        str(cg.get("id")): max(0.0, float(cg.get("target_hours") or 0) - existing_hours.get(str(cg.get("id")), 0.0))
        for cg in caregivers
    }
    return RunState(
        proposals=[],
        unscheduled=[],
        remaining=remaining,
        slot_map=build_slot_map(cg_ids, existing_schedules),
        proposed_hours=defaultdict(float),
    )


def _unscheduled_row(client: dict[str, Any], visit_number: int, reason: str) -> dict[str, Any]:
    return {
        "client_id": str(client.get("id")),
        "client_name": str(client.get("name") or ""),
        "visit_number": visit_number,
        "reason": reason,
    }


def _try_place(
    state: RunState,
    client: dict[str, Any],
    ranked: list[RankedCaregiver],
    placed_days: set[int],
    *,
    visit_number: int,
    visit_hours: float,
    visit_minutes: int,
    day_order: tuple[int, ...],
    window_start: str,
    window_end: str,
) -> dict[str, Any] | None:
    client_id = str(client.get("id"))
    client_name = str(client.get("name") or "")

    for day in day_order:
        if day in placed_days:
            continue
        for cand in ranked:
            cg_id = cand.caregiver_id
            if state.remaining[cg_id] < visit_hours - CAPACITY_EPSILON:
                continue

            day_windows = state.slot_map[cg_id][day]
            start = find_slot(day_windows, visit_minutes, window_start, window_end)
            if start is None:
                continue
            end = add_minutes(start, visit_minutes)

            conflicts = [
                {"client_name": w["client_name"], "start": w["start"], "end": w["end"]}
                for w in day_windows
                if w["is_existing"] and overlaps(start, end, w["start"], w["end"])
            ]

            reserve_window(
                state.slot_map,
                cg_id,
                day,
                {
                    "start": start,
                    "end": end,
                    "client_id": client_id,
                    "client_name": client_name,
                    "schedule_id": None,
                    "is_existing": False,
                },
            )
            state.remaining[cg_id] -= visit_hours
            state.proposed_hours[cg_id] += visit_hours
            placed_days.add(day)

            return {
                "proposal_id": f"{client_id}::{visit_number}::{cg_id}",
                "proposal_key": proposal_key(cg_id, client_id, day, start, end),
                "client_id": client_id,
                "client_name": client_name,
                "caregiver_id": cg_id,
                "caregiver_name": cand.caregiver_name,
                "day_of_week": day,
                "day_name": DAY_NAMES[day],
                "start_time": start,
                "end_time": end,
                "hours_per_visit": visit_hours,
                "score": cand.score,
                "reasons": list(cand.reasons),
                "has_conflict": bool(conflicts),
                "conflicts_with": conflicts,
            }
    return None


def _schedule_client(
    state: RunState,
    client: dict[str, Any],
    caregivers: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
    *,
    day_order: tuple[int, ...],
    window_start: str,
    window_end: str,
) -> None:
    visits = int(client.get("visits_per_week") or 0)

    if client.get("record_found") is False:
        for v in range(visits):
            state.unscheduled.append(_unscheduled_row(client, v + 1, REASON_UNKNOWN_CLIENT))
        return

    visit_hours = hours_per_visit(client["hours_per_week"], visits)
    visit_minutes = round(visit_hours * 60)

    client_id = str(client.get("id"))
    placed_days = {
        int(s["day_of_week"])
        for s in existing_schedules
        if str(s.get("client_id")) == client_id and s.get("day_of_week") is not None
    }
    ranked = rank_caregivers(client, caregivers, existing_schedules, state.remaining)

    for v in range(visits):
        proposal = _try_place(
            state,
            client,
            ranked,
            placed_days,
            visit_number=v + 1,
            visit_hours=visit_hours,
            visit_minutes=visit_minutes,
            day_order=day_order,
            window_start=window_start,
            window_end=window_end,
        )
        if proposal is not None:
            state.proposals.append(proposal)
            continue

        top = ranked[0] if ranked else None
        if top is not None and state.remaining[top.caregiver_id] < visit_hours - CAPACITY_EPSILON:
            reason = REASON_AT_CAPACITY
        else:
            reason = REASON_NO_SLOT
        state.unscheduled.append(_unscheduled_row(client, v + 1, reason))


def build_summary(
    state: RunState,
    caregivers: list[dict[str, Any]],
    clients: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
) -> dict[str, Any]:
    existing_hours = existing_hours_by_caregiver(existing_schedules)

    cg_rows = []
    for cg in caregivers:
        cg_id = str(cg.get("id"))
        target = float(cg.get("target_hours") or 0)
        existing = existing_hours.get(cg_id, 0.0)
        proposed = state.proposed_hours.get(cg_id, 0.0)
        total = existing + proposed
        cg_rows.append(
            {
                "id": cg_id,
                "name": str(cg.get("name") or ""),
                "target_hours": target,
                "existing_hours": round(existing, 2),
                "proposed_new_hours": round(proposed, 2),
                "total_hours": round(total, 2),
                "remaining_capacity": round(state.remaining[cg_id], 2),
                "utilization_pct": min(100, int(total / target * 100 + 0.5)) if target > 0 else 0,
            }
        )

    placed_by_client: dict[str, int] = defaultdict(int)
    for p in state.proposals:
        placed_by_client[p["client_id"]] += 1

    cl_rows = []
    for cl in clients:
        cl_id = str(cl.get("id"))
        needed = int(cl.get("visits_per_week") or 0)
        placed = placed_by_client.get(cl_id, 0)
        cl_rows.append(
            {
                "id": cl_id,
                "name": str(cl.get("name") or ""),
                "visits_needed": needed,
                "visits_placed": placed,
                "hours_per_week": float(cl.get("hours_per_week") or 0),
                "fully_scheduled": placed >= needed,
            }
        )

    return {
        "caregivers": cg_rows,
        "clients": cl_rows,
        "total_proposals": len(state.proposals),
        "conflict_count": sum(1 for p in state.proposals if p["has_conflict"]),
        "unscheduled_count": len(state.unscheduled),
        "fully_scheduled_clients": sum(1 for c in cl_rows if c["fully_scheduled"]),
        "total_clients": len(cl_rows),
    }


def optimize_roster(
    caregivers: list[dict[str, Any]],
    clients: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
    *,
    day_order: tuple[int, ...] = DAY_PRIORITY,
    window_start: str = WORKDAY_START,
    window_end: str = WORKDAY_END,
) -> dict[str, Any]:
    """Greedily place every client's weekly visits on top of existing bookings.

    Clients are processed in input order; each visit takes the first weekday
    in `day_order` where the best-ranked caregiver with enough remaining hours
    has an open slot. Nothing is persisted and no input is modified.

    Returns ``{"proposals", "unscheduled", "summary"}``.
    """
    window_start = normalize_time(window_start)
    window_end = normalize_time(window_end)
    cg_ids = {str(cg.get("id")) for cg in caregivers}
    baseline = [s for s in existing_schedules if str(s.get("caregiver_id")) in cg_ids]

    state = _initial_state(caregivers, baseline)
    for client in clients:
        _schedule_client(
            state,
            client,
            caregivers,
            baseline,
            day_order=tuple(day_order),
            window_start=window_start,
            window_end=window_end,
        )

    return {
        "proposals": state.proposals,
        "unscheduled": state.unscheduled,
        "summary": build_summary(state, caregivers, clients, baseline),
    }


def explain_proposal(result: dict[str, Any], proposal_id: str) -> dict[str, Any]:
    for item in result.get("proposals", []):
        if item.get("proposal_id") == proposal_id:
            return {
                "proposal_id": proposal_id,
                "caregiver": item.get("caregiver_name"),
                "client": item.get("client_name"),
                "slot": {
                    "day_of_week": item.get("day_of_week"),
                    "day_name": item.get("day_name"),
                    "start_time": item.get("start_time"),
                    "end_time": item.get("end_time"),
                },
                "score": item.get("score"),
                "reasons": item.get("reasons", []),
                "conflicts_with": item.get("conflicts_with", []),
            }
    raise KeyError(f"proposal_id not found: {proposal_id}")
