"""Dry-run and apply entry points around the optimizer.

`run_optimization` reads from a store and never writes. `apply_proposals`
writes each approved proposal on its own so that one failure does not undo
the others.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Protocol
from uuid import uuid4

from .optimizer import DAY_PRIORITY, optimize_roster
from .time_utils import WORKDAY_END, WORKDAY_START, normalize_time

logger = logging.getLogger(__name__)

OPTIMIZER_NOTE = "Created by Roster Optimizer"
SCHEDULE_TYPE_RECURRING = "recurring"

_PROPOSAL_FIELDS = ("caregiver_id", "client_id", "day_of_week", "start_time", "end_time")


class ScheduleStore(Protocol):
    def load_caregivers(self, ids: list[str]) -> list[dict[str, Any]]: ...

    def load_clients(self, ids: list[str]) -> list[dict[str, Any]]: ...

    def load_existing_schedules(self, caregiver_ids: list[str]) -> list[dict[str, Any]]: ...

    def insert_schedule(self, entry: dict[str, Any]) -> str: ...


def _positive_number(value: Any, label: str, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"{label} must be finite, got {value!r}")
    if number < 0 or (number == 0 and not allow_zero):
        raise ValueError(f"{label} must be positive, got {value!r}")
    return number


def validate_run_input(caregivers: list[dict[str, Any]], clients: list[dict[str, Any]]) -> None:
    """Reject requests the optimizer cannot make sense of."""
    if not caregivers or not clients:
        raise ValueError("Need at least one caregiver and one client")

    for cg in caregivers:
        if not cg.get("id"):
            raise ValueError(f"caregiver without id: {cg!r}")
        _positive_number(cg.get("target_hours"), f"target_hours for caregiver {cg['id']}", allow_zero=True)

    for cl in clients:
        if not cl.get("id"):
            raise ValueError(f"client without id: {cl!r}")
        _positive_number(cl.get("hours_per_week"), f"hours_per_week for client {cl['id']}")
        visits = _positive_number(cl.get("visits_per_week"), f"visits_per_week for client {cl['id']}")
        if visits != int(visits):
            raise ValueError(f"visits_per_week for client {cl['id']} must be a whole number")

    for label, rows in (("caregiver", caregivers), ("client", clients)):
        ids = [str(r["id"]) for r in rows]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate {label} ids: {dupes}")


def _merge_caregivers(requested: list[dict[str, Any]], records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_id = {str(r["id"]): r for r in records}
    merged = []
    for cg in requested:
        cg_id = str(cg["id"])
        info = by_id.get(cg_id, {})
        merged.append(
            {
                "id": cg_id,
                "name": info.get("name", ""),
                "target_hours": float(cg["target_hours"]),
            }
        )
    return merged


def _merge_clients(requested: list[dict[str, Any]], records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_id = {str(r["id"]): r for r in records}
    merged = []
    for cl in requested:
        cl_id = str(cl["id"])
        info = by_id.get(cl_id)
        merged.append(
            {
                "id": cl_id,
                "name": (info or {}).get("name", ""),
                "hours_per_week": float(cl["hours_per_week"]),
                "visits_per_week": int(float(cl["visits_per_week"])),
                "preferred_caregivers": list((info or {}).get("preferred_caregivers") or []),
                "excluded_caregivers": list((info or {}).get("excluded_caregivers") or []),
                "record_found": info is not None,
            }
        )
    return merged


def _existing_snapshot(existing: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": s.get("id"),
            "caregiver_id": str(s.get("caregiver_id")),
            "caregiver_name": s.get("caregiver_name", ""),
            "client_id": str(s.get("client_id")),
            "client_name": s.get("client_name", ""),
            "day_of_week": s.get("day_of_week"),
            "start_time": normalize_time(s.get("start_time")),
            "end_time": normalize_time(s.get("end_time")),
        }
        for s in existing
    ]


def run_optimization(
    store: ScheduleStore,
    caregivers: list[dict[str, Any]],
    clients: list[dict[str, Any]],
    *,
    day_order: tuple[int, ...] = DAY_PRIORITY,
    window_start: str = WORKDAY_START,
    window_end: str = WORKDAY_END,
) -> dict[str, Any]:
    """Propose new recurring shifts without writing anything.

    `caregivers` is ``[{id, target_hours}]`` and `clients` is
    ``[{id, hours_per_week, visits_per_week}]``. Names, preferences and
    exclusions come from the store, as does the existing booking baseline.
    Store read errors propagate unchanged.
    """
    validate_run_input(caregivers, clients)

    cg_ids = [str(cg["id"]) for cg in caregivers]
    cl_ids = [str(cl["id"]) for cl in clients]

    merged_caregivers = _merge_caregivers(caregivers, store.load_caregivers(cg_ids))
    merged_clients = _merge_clients(clients, store.load_clients(cl_ids))
    existing = _existing_snapshot(store.load_existing_schedules(cg_ids))

    missing = [c["id"] for c in merged_clients if not c["record_found"]]
    if missing:
        logger.warning("Clients not found in roster, their visits stay unscheduled: %s", missing)

    result = optimize_roster(
        merged_caregivers,
        merged_clients,
        existing,
        day_order=day_order,
        window_start=window_start,
        window_end=window_end,
    )
    logger.info(
        "Roster run: %d proposals, %d unscheduled visits, %d conflicts",
        result["summary"]["total_proposals"],
        result["summary"]["unscheduled_count"],
        result["summary"]["conflict_count"],
    )
    return {
        "proposals": result["proposals"],
        "existing_schedules": existing,
        "unscheduled": result["unscheduled"],
        "summary": result["summary"],
    }


def schedule_entry_from_proposal(proposal: dict[str, Any], *, note: str = OPTIMIZER_NOTE) -> dict[str, Any]:
    missing = [f for f in _PROPOSAL_FIELDS if proposal.get(f) is None]
    if missing:
        raise ValueError(f"proposal is missing {', '.join(missing)}")
    day = int(proposal["day_of_week"])
    if day < 0 or day > 6:
        raise ValueError(f"day_of_week out of range: {day}")
    return {
        "id": str(uuid4()),
        "caregiver_id": str(proposal["caregiver_id"]),
        "client_id": str(proposal["client_id"]),
        "schedule_type": SCHEDULE_TYPE_RECURRING,
        "day_of_week": day,
        "start_time": normalize_time(proposal["start_time"]),
        "end_time": normalize_time(proposal["end_time"]),
        "is_active": True,
        "notes": note,
        "proposal_key": proposal.get("proposal_key"),
    }


def apply_proposals(
    store: ScheduleStore,
    proposals: list[dict[str, Any]],
    *,
    note: str = OPTIMIZER_NOTE,
    skip_keys: set[str] | None = None,
) -> dict[str, Any]:
    """Persist operator-approved proposals as live recurring schedules.

    Every proposal is attempted; failures are collected in ``error_details``
    instead of raised. Applying the same list twice creates duplicates unless
    the caller passes the already-applied keys in `skip_keys`.
    """
    if not proposals:
        raise ValueError("No proposals to apply")

    skip_keys = skip_keys or set()
    created: list[str] = []
    skipped: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []

    for p in proposals:
        if p.get("proposal_key") and p["proposal_key"] in skip_keys:
            skipped.append(p)
            continue
        try:
            entry = schedule_entry_from_proposal(p, note=note)
            created.append(store.insert_schedule(entry))
        except Exception as exc:
            logger.exception("Applying proposal %s failed", p.get("proposal_id"))
            errors.append({"proposal": p, "error": str(exc)})

    return {
        "success": True,
        "created": len(created),
        "errors": len(errors),
        "error_details": errors,
        "created_ids": created,
        "skipped": len(skipped),
    }
