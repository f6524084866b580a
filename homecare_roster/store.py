"""SQLite-backed schedule store.

Implements the reads and the single write the optimizer needs, plus the
roster projection the operator screen starts from.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from roster_core.time_utils import calc_shift_hours, normalize_time

logger = logging.getLogger(__name__)

UTC = timezone.utc

SCHEMA = """
CREATE TABLE IF NOT EXISTS caregivers (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    phone TEXT,
    max_hours_per_week REAL,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    service_type TEXT,
    preferred_caregivers TEXT NOT NULL DEFAULT '[]',
    do_not_use_caregivers TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS client_assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    caregiver_id TEXT NOT NULL REFERENCES caregivers(id) ON DELETE CASCADE,
    hours_per_week REAL,
    assignment_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
);

CREATE TABLE IF NOT EXISTS schedules (
    id TEXT PRIMARY KEY,
    caregiver_id TEXT NOT NULL REFERENCES caregivers(id) ON DELETE CASCADE,
    client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    schedule_type TEXT NOT NULL DEFAULT 'recurring',
    day_of_week INTEGER CHECK (day_of_week BETWEEN 0 AND 6),
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    notes TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    proposal_key TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_schedules_caregiver ON schedules (caregiver_id, day_of_week);
CREATE INDEX IF NOT EXISTS idx_schedules_proposal_key ON schedules (proposal_key);
"""


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _full_name(first_name: str | None, last_name: str | None) -> str:
    return f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()


def _id_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [str(v) for v in json.loads(raw)]


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" for _ in values)


class SqliteScheduleStore:
    """Schedule store over a single SQLite file.

    Each write commits on its own, so a failed insert never rolls back an
    earlier one.
    """

    def __init__(self, db_path: str | Path, *, default_max_hours: float = 40.0):
        self.db_path = Path(db_path)
        self.default_max_hours = float(default_max_hours)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # ---- Seeding / operator data ------------------------------------------

    def add_caregiver(
        self,
        caregiver_id: str,
        first_name: str,
        last_name: str = "",
        *,
        phone: str | None = None,
        max_hours_per_week: float | None = None,
        is_active: bool = True,
    ) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO caregivers (id, first_name, last_name, phone, max_hours_per_week, is_active) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (caregiver_id, first_name, last_name, phone, max_hours_per_week, int(is_active)),
            )
            conn.commit()
        finally:
            conn.close()

    def add_client(
        self,
        client_id: str,
        first_name: str,
        last_name: str = "",
        *,
        service_type: str | None = None,
        preferred_caregivers: list[str] | None = None,
        excluded_caregivers: list[str] | None = None,
        is_active: bool = True,
    ) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO clients (id, first_name, last_name, service_type, "
                "preferred_caregivers, do_not_use_caregivers, is_active) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    client_id,
                    first_name,
                    last_name,
                    service_type,
                    json.dumps(list(preferred_caregivers or [])),
                    json.dumps(list(excluded_caregivers or [])),
                    int(is_active),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def add_assignment(
        self,
        client_id: str,
        caregiver_id: str,
        *,
        hours_per_week: float | None,
        assignment_date: str,
        status: str = "active",
    ) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO client_assignments (client_id, caregiver_id, hours_per_week, assignment_date, status) "
                "VALUES (?, ?, ?, ?, ?)",
                (client_id, caregiver_id, hours_per_week, assignment_date, status),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_client(self, client_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
            conn.commit()
        finally:
            conn.close()

    # ---- Reads -------------------------------------------------------------

    def load_caregivers(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT id, first_name, last_name FROM caregivers WHERE id IN ({_placeholders(ids)})",
                list(ids),
            ).fetchall()
        finally:
            conn.close()
        return [{"id": r["id"], "name": _full_name(r["first_name"], r["last_name"])} for r in rows]

    def load_clients(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT id, first_name, last_name, preferred_caregivers, do_not_use_caregivers "
                f"FROM clients WHERE id IN ({_placeholders(ids)})",
                list(ids),
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "id": r["id"],
                "name": _full_name(r["first_name"], r["last_name"]),
                "preferred_caregivers": _id_list(r["preferred_caregivers"]),
                "excluded_caregivers": _id_list(r["do_not_use_caregivers"]),
            }
            for r in rows
        ]

    def load_existing_schedules(self, caregiver_ids: list[str]) -> list[dict[str, Any]]:
        """Active recurring entries with a weekday for the given caregivers."""
        if not caregiver_ids:
            return []
        conn = self._connect()
        try:
            rows = conn.execute(
                f"""
                SELECT s.id, s.caregiver_id, s.client_id, s.day_of_week, s.start_time, s.end_time,
                       u.first_name AS cg_first, u.last_name AS cg_last,
                       c.first_name AS cl_first, c.last_name AS cl_last
                FROM schedules s
                JOIN caregivers u ON s.caregiver_id = u.id
                JOIN clients c ON s.client_id = c.id
                WHERE s.caregiver_id IN ({_placeholders(caregiver_ids)})
                  AND s.is_active = 1
                  AND s.schedule_type = 'recurring'
                  AND s.day_of_week IS NOT NULL
                ORDER BY s.caregiver_id, s.day_of_week, s.start_time
                """,
                list(caregiver_ids),
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "id": r["id"],
                "caregiver_id": r["caregiver_id"],
                "caregiver_name": _full_name(r["cg_first"], r["cg_last"]),
                "client_id": r["client_id"],
                "client_name": _full_name(r["cl_first"], r["cl_last"]),
                "day_of_week": r["day_of_week"],
                "start_time": normalize_time(r["start_time"]),
                "end_time": normalize_time(r["end_time"]),
            }
            for r in rows
        ]

    def applied_proposal_keys(self) -> set[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT DISTINCT proposal_key FROM schedules WHERE is_active = 1 AND proposal_key IS NOT NULL"
            ).fetchall()
        finally:
            conn.close()
        return {r["proposal_key"] for r in rows}

    def load_roster(self) -> dict[str, list[dict[str, Any]]]:
        """Active caregivers and clients with their derived weekly figures."""
        conn = self._connect()
        try:
            cg_rows = conn.execute(
                "SELECT id, first_name, last_name, phone, max_hours_per_week FROM caregivers "
                "WHERE is_active = 1 ORDER BY first_name, last_name"
            ).fetchall()
            cl_rows = conn.execute(
                "SELECT id, first_name, last_name, service_type, preferred_caregivers, do_not_use_caregivers "
                "FROM clients WHERE is_active = 1 ORDER BY last_name, first_name"
            ).fetchall()
            sched_rows = conn.execute(
                "SELECT caregiver_id, client_id, day_of_week, start_time, end_time FROM schedules "
                "WHERE is_active = 1 AND schedule_type = 'recurring' AND day_of_week IS NOT NULL"
            ).fetchall()
            assign_rows = conn.execute(
                "SELECT client_id, caregiver_id, hours_per_week, assignment_date FROM client_assignments "
                "WHERE status = 'active' ORDER BY assignment_date DESC, id DESC"
            ).fetchall()
        finally:
            conn.close()

        weekly_hours: dict[str, float] = defaultdict(float)
        client_days: dict[str, set[int]] = defaultdict(set)
        for s in sched_rows:
            weekly_hours[s["caregiver_id"]] += calc_shift_hours(
                normalize_time(s["start_time"]), normalize_time(s["end_time"])
            )
            client_days[s["client_id"]].add(int(s["day_of_week"]))

        client_count: dict[str, int] = defaultdict(int)
        latest_hours: dict[str, float] = {}
        current_caregivers: dict[str, list[str]] = defaultdict(list)
        for a in assign_rows:
            client_count[a["caregiver_id"]] += 1
            # rows are newest first
            latest_hours.setdefault(a["client_id"], float(a["hours_per_week"] or 0))
            if a["caregiver_id"] not in current_caregivers[a["client_id"]]:
                current_caregivers[a["client_id"]].append(a["caregiver_id"])

        caregivers = [
            {
                "id": r["id"],
                "name": _full_name(r["first_name"], r["last_name"]),
                "phone": r["phone"],
                "max_hours_per_week": float(
                    r["max_hours_per_week"] if r["max_hours_per_week"] is not None else self.default_max_hours
                ),
                "current_weekly_hours": round(weekly_hours.get(r["id"], 0.0), 2),
                "active_client_count": client_count.get(r["id"], 0),
            }
            for r in cg_rows
        ]
        clients = [
            {
                "id": r["id"],
                "name": _full_name(r["first_name"], r["last_name"]),
                "service_type": r["service_type"],
                "assigned_hours_per_week": latest_hours.get(r["id"], 0.0),
                "scheduled_days": sorted(client_days.get(r["id"], set())),
                "preferred_caregivers": _id_list(r["preferred_caregivers"]),
                "excluded_caregivers": _id_list(r["do_not_use_caregivers"]),
                "current_caregivers": sorted(current_caregivers.get(r["id"], [])),
            }
            for r in cl_rows
        ]
        return {"caregivers": caregivers, "clients": clients}

    # ---- Writes ------------------------------------------------------------

    def insert_schedule(self, entry: dict[str, Any]) -> str:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO schedules (
                    id, caregiver_id, client_id, schedule_type, day_of_week,
                    start_time, end_time, notes, is_active, proposal_key, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry["id"],
                    entry["caregiver_id"],
                    entry["client_id"],
                    entry.get("schedule_type", "recurring"),
                    entry["day_of_week"],
                    entry["start_time"],
                    entry["end_time"],
                    entry.get("notes"),
                    int(entry.get("is_active", True)),
                    entry.get("proposal_key"),
                    entry.get("created_at") or now_utc_iso(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Inserted schedule %s for caregiver %s", entry["id"], entry["caregiver_id"])
        return entry["id"]

    def add_schedule(
        self,
        schedule_id: str,
        caregiver_id: str,
        client_id: str,
        *,
        day_of_week: int | None,
        start_time: str,
        end_time: str,
        schedule_type: str = "recurring",
        is_active: bool = True,
    ) -> str:
        return self.insert_schedule(
            {
                "id": schedule_id,
                "caregiver_id": caregiver_id,
                "client_id": client_id,
                "schedule_type": schedule_type,
                "day_of_week": day_of_week,
                "start_time": start_time,
                "end_time": end_time,
                "is_active": is_active,
            }
        )

    def count_schedules(self) -> int:
        conn = self._connect()
        try:
            return int(conn.execute("SELECT COUNT(*) FROM schedules").fetchone()[0])
        finally:
            conn.close()
