from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def _json_dump(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)


def _json_load(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def run_root(artifact_root: Path) -> Path:
    path = artifact_root / "runs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_run(artifact_root: Path, run: dict[str, Any]) -> Path:
    root = run_root(artifact_root)
    rid = run["run_id"]
    target = root / rid
    target.mkdir(parents=True, exist_ok=True)
    _json_dump(target / "run.json", run)

    summary = run.get("summary", {})
    request = run.get("request", {})
    manifest = {
        "run_id": rid,
        "generated_at": run.get("generated_at"),
        "caregiver_ids": [str(c.get("id")) for c in request.get("caregivers", [])],
        "client_ids": [str(c.get("id")) for c in request.get("clients", [])],
        "applied_proposal_ids": [],
        "counts": {
            "proposals": summary.get("total_proposals", 0),
            "unscheduled": summary.get("unscheduled_count", 0),
            "conflicts": summary.get("conflict_count", 0),
            "fully_scheduled_clients": summary.get("fully_scheduled_clients", 0),
            "total_clients": summary.get("total_clients", 0),
        },
        "path": str(target.resolve()),
    }
    _json_dump(target / "manifest.json", manifest)
    _json_dump(root / "latest.json", manifest)
    return target


def list_runs(artifact_root: Path, limit: int = 20) -> list[dict[str, Any]]:
    root = run_root(artifact_root)
    manifests: list[dict[str, Any]] = []
    for child in root.iterdir():
        if not child.is_dir():
            continue
        manifest_file = child / "manifest.json"
        if not manifest_file.exists():
            continue
        try:
            manifests.append(_json_load(manifest_file))
        except json.JSONDecodeError:
            continue
    manifests.sort(key=lambda row: (row.get("generated_at") or "", row.get("run_id", "")), reverse=True)
    return manifests[:limit]


def load_run(artifact_root: Path, run_id: str | None = None) -> dict[str, Any]:
    root = run_root(artifact_root)
    if run_id:
        manifest_path = root / run_id / "manifest.json"
    else:
        manifest_path = root / "latest.json"
    if not manifest_path.exists():
        raise FileNotFoundError("run manifest not found")
    manifest = _json_load(manifest_path)
    rid = manifest["run_id"]
    path = root / rid / "run.json"
    if not path.exists():
        raise FileNotFoundError(f"run payload not found: {rid}")
    return _json_load(path)


def record_applied(artifact_root: Path, run_id: str, proposal_ids: list[str]) -> dict[str, Any]:
    """Add applied proposal ids to a run's manifest and return the manifest."""
    root = run_root(artifact_root)
    manifest_path = root / run_id / "manifest.json"
    if not manifest_path.exists():
        raise FileNotFoundError(f"run manifest not found: {run_id}")
    manifest = _json_load(manifest_path)
    applied = manifest.setdefault("applied_proposal_ids", [])
    for pid in proposal_ids:
        if pid not in applied:
            applied.append(pid)
    _json_dump(manifest_path, manifest)

    latest_path = root / "latest.json"
    if latest_path.exists() and _json_load(latest_path).get("run_id") == run_id:
        _json_dump(latest_path, manifest)
    return manifest
