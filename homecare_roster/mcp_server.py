"""homecare-roster MCP server.

Exposes tools for reading the roster, running the shift optimizer as a dry
run, persisting run artifacts, validating them, and applying approved
proposals to live schedules.
"""
from __future__ import annotations

import argparse
import logging
import os
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from mcp.server.fastmcp import FastMCP

from roster_core.boundary import apply_proposals as _apply_proposals
from roster_core.boundary import run_optimization as _run_optimization
from roster_core.validation import is_hard, validate_plan

from .config import RuntimeConfig, load_env, runtime_config
from .storage import list_runs as _list_runs
from .storage import load_run as _load_run
from .storage import record_applied as _record_applied
from .storage import save_run as _save_run
from .store import SqliteScheduleStore

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "homecare-roster",
    host=os.getenv("HOST", "127.0.0.1"),
    port=int(os.getenv("PORT", "8000")),
    instructions=(
        "Weekly roster optimizer for a home-care agency. "
        "Reads caregivers, clients and live recurring schedules, proposes new "
        "shifts as a dry run, and writes to live schedules only through the "
        "apply tools after an operator has reviewed the proposals."
    ),
)

_ENV_FILE: str | None = None


def _config() -> RuntimeConfig:
    load_env(_ENV_FILE or os.getenv("ROSTER_ENV_FILE"))
    return runtime_config()


def _store(cfg: RuntimeConfig | None = None) -> SqliteScheduleStore:
    cfg = cfg or _config()
    store = SqliteScheduleStore(cfg.db_path, default_max_hours=cfg.default_max_hours)
    store.init_schema()
    return store


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# -- Roster --

@mcp.tool()
def fetch_roster() -> dict[str, Any]:
    """Return all active caregivers and clients with their weekly figures."""
    return _store().load_roster()


# -- Optimization --

@mcp.tool()
def run_optimization(
    caregivers: list[dict[str, Any]],
    clients: list[dict[str, Any]],
) -> dict[str, Any]:
    """Propose new recurring shifts without touching live schedules.

    caregivers: [{id, target_hours}]
    clients: [{id, hours_per_week, visits_per_week}]

    The run is stored as an artifact; pass its run_id to apply_run later.
    """
    cfg = _config()
    result = _run_optimization(
        _store(cfg),
        caregivers,
        clients,
        window_start=cfg.window_start,
        window_end=cfg.window_end,
    )
    run = {
        "run_id": f"run-{uuid4().hex[:12]}",
        "generated_at": _now_iso(),
        "request": {"caregivers": caregivers, "clients": clients},
        **result,
    }
    _save_run(cfg.artifact_root, run)
    return run


@mcp.tool()
def apply_proposals(
    proposals: list[dict[str, Any]],
    skip_applied: bool = False,
) -> dict[str, Any]:
    """Write the given proposals to live schedules, one row each.

    Failures are reported per proposal in error_details. With skip_applied,
    proposals whose proposal_key is already live are skipped.
    """
    store = _store()
    skip_keys = store.applied_proposal_keys() if skip_applied else None
    return _apply_proposals(store, proposals, skip_keys=skip_keys)


@mcp.tool()
def apply_run(
    proposal_ids: list[str],
    run_id: str | None = None,
    skip_applied: bool = False,
) -> dict[str, Any]:
    """Apply selected proposals from a stored run (latest if run_id is omitted)."""
    cfg = _config()
    run = _load_run(cfg.artifact_root, run_id=run_id)
    by_id = {p["proposal_id"]: p for p in run.get("proposals", [])}
    unknown = [pid for pid in proposal_ids if pid not in by_id]
    if unknown:
        raise KeyError(f"proposal_id not found in run {run['run_id']}: {unknown}")

    store = _store(cfg)
    skip_keys = store.applied_proposal_keys() if skip_applied else None
    result = _apply_proposals(store, [by_id[pid] for pid in proposal_ids], skip_keys=skip_keys)

    failed = {e["proposal"].get("proposal_id") for e in result["error_details"]}
    live = [pid for pid in proposal_ids if pid not in failed]
    manifest = _record_applied(cfg.artifact_root, run["run_id"], live)
    result["run_id"] = run["run_id"]
    result["applied_proposal_ids"] = manifest["applied_proposal_ids"]
    return result


# -- Run artifacts --

@mcp.tool()
def list_runs(limit: int = 20) -> list[dict[str, Any]]:
    """List stored optimizer runs, newest first."""
    return _list_runs(_config().artifact_root, limit=limit)


@mcp.tool()
def load_run(run_id: str | None = None) -> dict[str, Any]:
    """Load a stored run by ID (or latest if omitted)."""
    return _load_run(_config().artifact_root, run_id=run_id)


@mcp.tool()
def validate_run(run_id: str | None = None) -> dict[str, Any]:
    """Audit a stored run for double bookings, capacity and exclusion breaches."""
    cfg = _config()
    run = _load_run(cfg.artifact_root, run_id=run_id)
    request = run.get("request", {})
    caregivers = request.get("caregivers", [])
    client_input = request.get("clients", [])

    records = {c["id"]: c for c in _store(cfg).load_clients([str(c["id"]) for c in client_input])}
    clients = [
        {**c, "excluded_caregivers": records.get(str(c["id"]), {}).get("excluded_caregivers", [])}
        for c in client_input
    ]
    violations = validate_plan(run, caregivers, clients, run.get("existing_schedules", []))
    return {
        "run_id": run["run_id"],
        "valid": not any(is_hard(v["violation"]) for v in violations),
        "violations": violations,
    }


# -- Server entrypoints --

async def _run_http() -> None:
    import uvicorn
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse, PlainTextResponse
    from starlette.routing import Route

    api_key = os.getenv("MCP_API_KEY")

    class BearerAuth(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            if request.url.path == "/health":
                return await call_next(request)
            auth = request.headers.get("authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != api_key:
                return JSONResponse({"error": "unauthorized"}, status_code=401)
            return await call_next(request)

    starlette_app = mcp.streamable_http_app()

    if api_key:
        starlette_app.add_middleware(BearerAuth)
    else:
        logger.warning("MCP_API_KEY is not set; the HTTP endpoint is unauthenticated")

    starlette_app.routes.append(
        Route("/health", lambda r: PlainTextResponse("ok"))
    )

    config = uvicorn.Config(
        starlette_app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run homecare-roster MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default=None,
        choices=["stdio", "sse", "streamable-http"],
        help="MCP transport (default: streamable-http when PORT is set, else stdio)",
    )
    args = parser.parse_args()
    _ENV_FILE = args.env_file

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    transport = args.transport
    if transport is None:
        transport = "streamable-http" if os.getenv("PORT") else "stdio"

    if transport == "streamable-http":
        import anyio
        anyio.run(_run_http)
    else:
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
