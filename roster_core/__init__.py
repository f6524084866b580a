"""Weekly roster optimizer core: pure data in, proposals out."""

from .boundary import apply_proposals, run_optimization, validate_run_input
from .optimizer import DAY_PRIORITY, explain_proposal, optimize_roster
from .ranking import rank_caregivers
from .slot_map import build_slot_map
from .time_utils import add_minutes, find_slot, normalize_time, overlaps, to_hours
from .validation import validate_plan

__all__ = [
    "DAY_PRIORITY",
    "add_minutes",
    "apply_proposals",
    "build_slot_map",
    "explain_proposal",
    "find_slot",
    "normalize_time",
    "optimize_roster",
    "overlaps",
    "rank_caregivers",
    "run_optimization",
    "to_hours",
    "validate_plan",
    "validate_run_input",
]
