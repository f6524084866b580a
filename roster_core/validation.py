"""Post-hoc audit of an optimizer result.

Checks the guarantees a run must keep regardless of how it was produced, so a
stored or hand-edited result can be verified before it is applied.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from .optimizer import CAPACITY_EPSILON
from .slot_map import existing_hours_by_caregiver
from .time_utils import normalize_time, overlaps

HARD_VIOLATIONS = frozenset({
    "overlap_same_day",
    "capacity_exceeded",
    "excluded_caregiver",
    "client_day_double_booked",
})

SOFT_VIOLATIONS = frozenset({
    "visit_count_mismatch",
})


def is_hard(violation: str) -> bool:
    return violation in HARD_VIOLATIONS


def validate_plan(
    result: dict[str, Any],
    caregivers: list[dict[str, Any]],
    clients: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Return one violation dict per broken guarantee.

    Each dict is ``{violation, caregiver_id, client_id, day_of_week, detail}``.
    """
    violations: list[dict[str, Any]] = []
    proposals = result.get("proposals", [])

    def add(violation: str, detail: str, *, caregiver_id=None, client_id=None, day=None) -> None:
        violations.append({
            "violation": violation,
            "caregiver_id": caregiver_id,
            "client_id": client_id,
            "day_of_week": day,
            "detail": detail,
        })

    # Double booking per caregiver and day, existing and proposed together.
    windows: dict[tuple[str, int], list[tuple[str, str, str]]] = defaultdict(list)
    for s in existing_schedules:
        if s.get("day_of_week") is None:
            continue
        key = (str(s.get("caregiver_id")), int(s["day_of_week"]))
        windows[key].append((normalize_time(s.get("start_time")), normalize_time(s.get("end_time")), "existing"))
    for p in proposals:
        key = (str(p["caregiver_id"]), int(p["day_of_week"]))
        windows[key].append((p["start_time"], p["end_time"], p.get("proposal_id", "")))

    for (cg_id, day), rows in windows.items():
        for i, (s0, e0, src0) in enumerate(rows):
            for s1, e1, src1 in rows[i + 1:]:
                if src0 == "existing" and src1 == "existing":
                    continue
                if overlaps(s0, e0, s1, e1):
                    add(
                        "overlap_same_day",
                        f"{s0}-{e0} ({src0}) overlaps {s1}-{e1} ({src1})",
                        caregiver_id=cg_id,
                        day=day,
                    )

    # Capacity.
    existing_hours = existing_hours_by_caregiver(existing_schedules)
    proposed_hours: dict[str, float] = defaultdict(float)
    for p in proposals:
        proposed_hours[str(p["caregiver_id"])] += float(p.get("hours_per_visit") or 0)
    for cg in caregivers:
        cg_id = str(cg.get("id"))
        target = float(cg.get("target_hours") or 0)
        existing = existing_hours.get(cg_id, 0.0)
        proposed = proposed_hours.get(cg_id, 0.0)
        if proposed > 0 and existing + proposed > max(target, existing) + CAPACITY_EPSILON:
            add(
                "capacity_exceeded",
                f"{existing + proposed:.2f}h booked against a target of {target:.2f}h",
                caregiver_id=cg_id,
            )

    # Exclusions and one visit per client per day.
    client_by_id = {str(c.get("id")): c for c in clients}
    client_days: dict[str, set[int]] = defaultdict(set)
    for s in existing_schedules:
        if s.get("day_of_week") is not None:
            client_days[str(s.get("client_id"))].add(int(s["day_of_week"]))

    for p in proposals:
        cl_id = str(p["client_id"])
        day = int(p["day_of_week"])
        excluded = {str(v) for v in (client_by_id.get(cl_id, {}).get("excluded_caregivers") or [])}
        if str(p["caregiver_id"]) in excluded:
            add(
                "excluded_caregiver",
                f"caregiver {p['caregiver_id']} is on the exclusion list",
                caregiver_id=str(p["caregiver_id"]),
                client_id=cl_id,
                day=day,
            )
        if day in client_days[cl_id]:
            add(
                "client_day_double_booked",
                f"client already has a visit on day {day}",
                caregiver_id=str(p["caregiver_id"]),
                client_id=cl_id,
                day=day,
            )
        client_days[cl_id].add(day)

    # Every requested visit is either proposed or reported unscheduled.
    placed: dict[str, int] = defaultdict(int)
    for p in proposals:
        placed[str(p["client_id"])] += 1
    unplaced: dict[str, int] = defaultdict(int)
    for u in result.get("unscheduled", []):
        unplaced[str(u["client_id"])] += 1
    for cl in clients:
        cl_id = str(cl.get("id"))
        needed = int(cl.get("visits_per_week") or 0)
        if placed[cl_id] + unplaced[cl_id] != needed:
            add(
                "visit_count_mismatch",
                f"{placed[cl_id]} placed + {unplaced[cl_id]} unscheduled != {needed} requested",
                client_id=cl_id,
            )

    return violations
