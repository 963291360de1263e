"""Pure validation, cascade and impact computation (no I/O)."""

from .cascade import (
    CascadeComputationError,
    CascadeOutcome,
    recompute_all,
    run_cascade,
    stale_derived_fields,
)
from .impact import UpdatePlan, build_impact_report, fold_source_changes, plan_update
from .validator import validate_request

__all__ = [
    "CascadeComputationError",
    "CascadeOutcome",
    "UpdatePlan",
    "build_impact_report",
    "fold_source_changes",
    "plan_update",
    "recompute_all",
    "run_cascade",
    "stale_derived_fields",
    "validate_request",
]
