"""Tests for the greedy roster engine."""

from __future__ import annotations

import copy

import pytest

from roster_core.optimizer import (
    DAY_PRIORITY,
    REASON_AT_CAPACITY,
    REASON_NO_SLOT,
    REASON_UNKNOWN_CLIENT,
    explain_proposal,
    hours_per_visit,
    optimize_roster,
    proposal_key,
)
from roster_core.validation import is_hard, validate_plan


def caregiver(cg_id, target, name=None):
    return {"id": cg_id, "name": name or f"Caregiver {cg_id}", "target_hours": target}


def client(cl_id, hours, visits, *, preferred=(), excluded=(), name=None):
    return {
        "id": cl_id,
        "name": name or f"Client {cl_id}",
        "hours_per_week": hours,
        "visits_per_week": visits,
        "preferred_caregivers": list(preferred),
        "excluded_caregivers": list(excluded),
    }


def booking(cg_id, cl_id, day, start, end):
    return {
        "id": f"s-{cg_id}-{cl_id}-{day}-{start}",
        "caregiver_id": cg_id,
        "caregiver_name": f"Caregiver {cg_id}",
        "client_id": cl_id,
        "client_name": f"Client {cl_id}",
        "day_of_week": day,
        "start_time": start,
        "end_time": end,
    }


def _slots(result):
    return [(p["caregiver_id"], p["day_of_week"], p["start_time"], p["end_time"]) for p in result["proposals"]]


class TestScenarios:
    def test_single_caregiver_two_visits(self):
        result = optimize_roster([caregiver("cg-1", 10)], [client("cl-1", 5, 2)], [])

        assert _slots(result) == [("cg-1", 1, "08:00", "10:30"), ("cg-1", 3, "08:00", "10:30")]
        assert [p["day_name"] for p in result["proposals"]] == ["Mon", "Wed"]
        assert all(p["hours_per_visit"] == 2.5 for p in result["proposals"])
        assert result["unscheduled"] == []

        summary = result["summary"]
        assert summary["conflict_count"] == 0
        assert summary["total_proposals"] == 2
        cg = summary["caregivers"][0]
        assert cg["utilization_pct"] == 50
        assert cg["proposed_new_hours"] == 5.0
        assert cg["remaining_capacity"] == 5.0

    def test_existing_booking_pushes_monday_visit(self):
        existing = [booking("cg-1", "cl-other", 1, "08:00", "12:00")]
        result = optimize_roster([caregiver("cg-1", 10)], [client("cl-1", 5, 2)], existing)

        assert _slots(result) == [("cg-1", 1, "12:00", "14:30"), ("cg-1", 3, "08:00", "10:30")]
        assert not any(p["has_conflict"] for p in result["proposals"])
        cg = result["summary"]["caregivers"][0]
        assert cg["existing_hours"] == 4.0
        assert cg["total_hours"] == 9.0
        assert cg["utilization_pct"] == 90

    def test_caregiver_without_capacity(self):
        result = optimize_roster([caregiver("cg-1", 1)], [client("cl-1", 2, 1)], [])

        assert result["proposals"] == []
        assert result["unscheduled"] == [
            {"client_id": "cl-1", "client_name": "Client cl-1", "visit_number": 1, "reason": REASON_AT_CAPACITY}
        ]
        assert REASON_AT_CAPACITY == "All caregivers at hour capacity."

    def test_only_caregiver_excluded(self):
        result = optimize_roster(
            [caregiver("cg-1", 40)],
            [client("cl-1", 4, 2, excluded=["cg-1"])],
            [],
        )

        assert result["proposals"] == []
        assert [u["reason"] for u in result["unscheduled"]] == [REASON_NO_SLOT, REASON_NO_SLOT]
        assert [u["visit_number"] for u in result["unscheduled"]] == [1, 2]
        assert REASON_NO_SLOT == "No available time slot found for any caregiver."

    def test_second_client_sees_first_clients_reservation(self):
        result = optimize_roster(
            [caregiver("cg-1", 40)],
            [client("cl-a", 2, 1), client("cl-b", 2, 1)],
            [],
        )

        assert _slots(result) == [("cg-1", 1, "08:00", "10:00"), ("cg-1", 1, "10:00", "12:00")]


class TestPlacement:
    def test_day_priority_order(self):
        assert DAY_PRIORITY == (1, 3, 2, 4, 5, 0, 6)
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 7, 7)], [])
        assert [p["day_of_week"] for p in result["proposals"]] == [1, 3, 2, 4, 5, 0, 6]

    def test_more_visits_than_days(self):
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 8, 8)], [])
        assert len(result["proposals"]) == 7
        assert len(result["unscheduled"]) == 1
        assert result["unscheduled"][0]["visit_number"] == 8
        assert result["unscheduled"][0]["reason"] == REASON_NO_SLOT

    def test_custom_day_order(self):
        result = optimize_roster(
            [caregiver("cg-1", 40)],
            [client("cl-1", 2, 2)],
            [],
            day_order=(6, 0),
        )
        assert [p["day_of_week"] for p in result["proposals"]] == [6, 0]

    def test_client_existing_day_not_double_booked(self):
        existing = [booking("cg-1", "cl-1", 1, "08:00", "09:00")]
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 2, 1)], existing)
        assert [p["day_of_week"] for p in result["proposals"]] == [3]

    def test_full_day_moves_to_next_priority_day(self):
        existing = [booking("cg-1", "cl-other", 1, "08:00", "18:00")]
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 2, 1)], existing)
        assert _slots(result) == [("cg-1", 3, "08:00", "10:00")]

    def test_preferred_caregiver_wins(self):
        result = optimize_roster(
            [caregiver("cg-1", 40), caregiver("cg-2", 40)],
            [client("cl-1", 4, 2, preferred=["cg-2"])],
            [],
        )
        assert {p["caregiver_id"] for p in result["proposals"]} == {"cg-2"}
        assert "preferred_by_client" in result["proposals"][0]["reasons"]

    def test_continuity_bonus(self):
        existing = [booking("cg-2", "cl-1", 2, "08:00", "09:00")]
        result = optimize_roster(
            [caregiver("cg-1", 40), caregiver("cg-2", 40)],
            [client("cl-1", 2, 1)],
            existing,
        )
        assert _slots(result) == [("cg-2", 1, "08:00", "10:00")]

    def test_falls_back_when_top_caregiver_runs_out(self):
        result = optimize_roster(
            [caregiver("cg-1", 3), caregiver("cg-2", 40)],
            [client("cl-1", 5, 2, preferred=["cg-1"])],
            [],
        )
        assert _slots(result) == [("cg-1", 1, "08:00", "10:30"), ("cg-2", 3, "08:00", "10:30")]

    def test_capacity_tolerance(self):
        result = optimize_roster([caregiver("cg-1", 4.995)], [client("cl-1", 5, 1)], [])
        assert len(result["proposals"]) == 1
        assert result["summary"]["caregivers"][0]["utilization_pct"] == 100

    def test_within_tolerance_reports_missing_slot(self):
        result = optimize_roster(
            [caregiver("cg-1", 2.495)],
            [client("cl-1", 2.5, 1)],
            [],
            window_start="08:00",
            window_end="10:00",
        )
        assert result["proposals"] == []
        assert result["unscheduled"][0]["reason"] == REASON_NO_SLOT

    def test_visit_longer_than_window(self):
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 11, 1)], [])
        assert result["proposals"] == []
        assert result["unscheduled"][0]["reason"] == REASON_NO_SLOT

    def test_existing_bookings_consume_capacity(self):
        existing = [booking("cg-1", "cl-other", 2, "08:00", "16:00")]
        result = optimize_roster([caregiver("cg-1", 10)], [client("cl-1", 6, 2)], existing)
        assert result["proposals"] == []
        assert [u["reason"] for u in result["unscheduled"]] == [REASON_AT_CAPACITY, REASON_AT_CAPACITY]

    def test_overnight_booking_consumes_capacity(self):
        existing = [booking("cg-1", "cl-other", 0, "22:00", "02:00")]
        result = optimize_roster([caregiver("cg-1", 5)], [client("cl-1", 2, 1)], existing)
        assert result["proposals"] == []
        assert result["unscheduled"][0]["reason"] == REASON_AT_CAPACITY

    def test_bookings_of_other_caregivers_ignored(self):
        existing = [booking("cg-9", "cl-other", 1, "08:00", "18:00")]
        result = optimize_roster([caregiver("cg-1", 10)], [client("cl-1", 2, 1)], existing)
        assert _slots(result) == [("cg-1", 1, "08:00", "10:00")]

    def test_fractional_visit_length(self):
        assert hours_per_visit(10, 3) == 3.33
        result = optimize_roster([caregiver("cg-1", 40)], [client("cl-1", 10, 3)], [])
        assert [p["end_time"] for p in result["proposals"]] == ["11:20", "11:20", "11:20"]

    def test_unknown_client_records_every_visit(self):
        missing = {**client("cl-x", 4, 2), "record_found": False}
        result = optimize_roster([caregiver("cg-1", 40)], [missing], [])
        assert result["proposals"] == []
        assert [u["reason"] for u in result["unscheduled"]] == [REASON_UNKNOWN_CLIENT] * 2


class TestProposalShape:
    def test_fields(self):
        result = optimize_roster([caregiver("cg-1", 10, name="Ana Silva")], [client("cl-1", 2, 1, name="Joe Doe")], [])
        p = result["proposals"][0]
        assert p["proposal_id"] == "cl-1::1::cg-1"
        assert p["proposal_key"] == proposal_key("cg-1", "cl-1", 1, "08:00", "10:00")
        assert p["caregiver_name"] == "Ana Silva"
        assert p["client_name"] == "Joe Doe"
        assert p["has_conflict"] is False
        assert p["conflicts_with"] == []

    def test_explain_proposal(self):
        result = optimize_roster([caregiver("cg-1", 10)], [client("cl-1", 2, 1)], [])
        explained = explain_proposal(result, "cl-1::1::cg-1")
        assert explained["slot"] == {"day_of_week": 1, "day_name": "Mon", "start_time": "08:00", "end_time": "10:00"}
        with pytest.raises(KeyError):
            explain_proposal(result, "nope")


class TestSummary:
    def test_client_rows(self):
        result = optimize_roster(
            [caregiver("cg-1", 40)],
            [client("cl-1", 4, 2), client("cl-2", 2, 1, excluded=["cg-1"])],
            [],
        )
        rows = {c["id"]: c for c in result["summary"]["clients"]}
        assert rows["cl-1"]["visits_placed"] == 2
        assert rows["cl-1"]["fully_scheduled"] is True
        assert rows["cl-2"]["visits_placed"] == 0
        assert rows["cl-2"]["fully_scheduled"] is False
        assert result["summary"]["fully_scheduled_clients"] == 1
        assert result["summary"]["total_clients"] == 2
        assert result["summary"]["unscheduled_count"] == 1

    def test_zero_target_utilization(self):
        result = optimize_roster([caregiver("cg-1", 0)], [client("cl-1", 2, 1)], [])
        assert result["summary"]["caregivers"][0]["utilization_pct"] == 0


# -- Invariants over a busier roster --

ROSTER_CAREGIVERS = [
    caregiver("cg-1", 20),
    caregiver("cg-2", 12),
    caregiver("cg-3", 30),
]

ROSTER_CLIENTS = [
    client("cl-1", 9, 3, preferred=["cg-2"]),
    client("cl-2", 10, 5, excluded=["cg-3"]),
    client("cl-3", 6, 2, preferred=["cg-1"], excluded=["cg-2"]),
    client("cl-4", 16, 4),
    client("cl-5", 12, 2, excluded=["cg-1", "cg-2", "cg-3"]),
    client("cl-6", 8, 4, preferred=["cg-3"]),
]

ROSTER_EXISTING = [
    booking("cg-1", "cl-1", 1, "08:00", "11:00"),
    booking("cg-1", "cl-9", 3, "09:00", "13:00"),
    booking("cg-2", "cl-9", 1, "12:00", "16:00"),
    booking("cg-3", "cl-4", 5, "08:00", "18:00"),
]


@pytest.fixture
def roster_result():
    return optimize_roster(ROSTER_CAREGIVERS, ROSTER_CLIENTS, ROSTER_EXISTING)


class TestInvariants:
    def test_no_hard_violations(self, roster_result):
        violations = validate_plan(roster_result, ROSTER_CAREGIVERS, ROSTER_CLIENTS, ROSTER_EXISTING)
        assert [v for v in violations if is_hard(v["violation"])] == []

    def test_conservation(self, roster_result):
        for cl in ROSTER_CLIENTS:
            placed = sum(1 for p in roster_result["proposals"] if p["client_id"] == cl["id"])
            missed = sum(1 for u in roster_result["unscheduled"] if u["client_id"] == cl["id"])
            assert placed + missed == cl["visits_per_week"]

    def test_capacity(self, roster_result):
        for row in roster_result["summary"]["caregivers"]:
            assert row["total_hours"] <= row["target_hours"] + 0.01

    def test_exclusions(self, roster_result):
        excluded = {cl["id"]: set(cl["excluded_caregivers"]) for cl in ROSTER_CLIENTS}
        for p in roster_result["proposals"]:
            assert p["caregiver_id"] not in excluded[p["client_id"]]

    def test_deterministic(self, roster_result):
        again = optimize_roster(ROSTER_CAREGIVERS, ROSTER_CLIENTS, ROSTER_EXISTING)
        assert again == roster_result

    def test_inputs_untouched(self):
        caregivers = copy.deepcopy(ROSTER_CAREGIVERS)
        clients = copy.deepcopy(ROSTER_CLIENTS)
        existing = copy.deepcopy(ROSTER_EXISTING)
        optimize_roster(caregivers, clients, existing)
        assert caregivers == ROSTER_CAREGIVERS
        assert clients == ROSTER_CLIENTS
        assert existing == ROSTER_EXISTING
