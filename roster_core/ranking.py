"""Caregiver ranking for a single client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SCORING = {
    "preferred": 20,
    "continuity": 10,
    "capacity": 5,
}

_REASONS = {
    "preferred": "preferred_by_client",
    "continuity": "continuity_of_care",
    "capacity": "has_remaining_capacity",
}


@dataclass
class RankedCaregiver:
    caregiver_id: str
    caregiver_name: str
    score: float
    score_detail: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)


def _id_set(values: Any) -> set[str]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    return {str(v) for v in values}


def rank_caregivers(
    client: dict[str, Any],
    caregivers: list[dict[str, Any]],
    existing_schedules: list[dict[str, Any]],
    remaining: dict[str, float],
) -> list[RankedCaregiver]:
    """Score caregivers for `client`, best first.

    Excluded caregivers are dropped. Ties keep input order.
    """
    client_id = str(client.get("id"))
    excluded = _id_set(client.get("excluded_caregivers"))
    preferred = _id_set(client.get("preferred_caregivers"))
    already_sees = {
        str(s.get("caregiver_id"))
        for s in existing_schedules
        if str(s.get("client_id")) == client_id
    }

    ranked: list[RankedCaregiver] = []
    for cg in caregivers:
        cg_id = str(cg.get("id"))
        if cg_id in excluded:
            continue
        detail = {
            "preferred": float(SCORING["preferred"]) if cg_id in preferred else 0.0,
            "continuity": float(SCORING["continuity"]) if cg_id in already_sees else 0.0,
            "capacity": float(SCORING["capacity"]) if remaining.get(cg_id, 0.0) > 0 else 0.0,
        }
        ranked.append(
            RankedCaregiver(
                caregiver_id=cg_id,
                caregiver_name=str(cg.get("name") or ""),
                score=sum(detail.values()),
                score_detail=detail,
                reasons=[_REASONS[k] for k, v in detail.items() if v > 0],
            )
        )

    # sorted() is stable, so equal scores keep roster order
    return sorted(ranked, key=lambda r: -r.score)
