from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from roster_core.time_utils import WORKDAY_END, WORKDAY_START, normalize_time


@dataclass(frozen=True)
class RuntimeConfig:
    db_path: Path
    artifact_root: Path
    window_start: str
    window_end: str
    default_max_hours: float


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def runtime_config() -> RuntimeConfig:
    db_path = Path(os.getenv("ROSTER_DB_PATH", "./roster.db")).expanduser().resolve()
    artifact_root = Path(os.getenv("ROSTER_ARTIFACT_DIR", "./artifacts")).expanduser().resolve()
    window_start = normalize_time(os.getenv("ROSTER_WINDOW_START", WORKDAY_START))
    window_end = normalize_time(os.getenv("ROSTER_WINDOW_END", WORKDAY_END))
    if window_end <= window_start:
        raise ValueError(f"ROSTER_WINDOW_END ({window_end}) must be after ROSTER_WINDOW_START ({window_start})")
    default_max_hours = float(os.getenv("ROSTER_DEFAULT_MAX_HOURS", "40"))

    db_path.parent.mkdir(parents=True, exist_ok=True)
    artifact_root.mkdir(parents=True, exist_ok=True)
    return RuntimeConfig(
        db_path=db_path,
        artifact_root=artifact_root,
        window_start=window_start,
        window_end=window_end,
        default_max_hours=default_max_hours,
    )
