"""
Core runtime types for pyconverge.

This module contains the pieces every guard and body sees:
- RunContext: Opaque run configuration, run id and cancellation token
- CancellationToken: External stop signal for a run
- CURRENT_ACTION: Task-local id of the executing action
- evaluate_guard: Guard evaluation (Satisfied / Unsatisfied / GuardEvalError)
- invoke: Timeout-bounded call of a sync or async guard/body
"""

from pyconverge.core.context import (
    CURRENT_ACTION,
    CancellationToken,
    RunContext,
    get_current_action_id,
)
from pyconverge.core.guard import DeadlineExceeded, coerce_guard_status, evaluate_guard, invoke

__all__ = [
    "RunContext",
    "CancellationToken",
    "CURRENT_ACTION",
    "get_current_action_id",
    "evaluate_guard",
    "coerce_guard_status",
    "invoke",
    "DeadlineExceeded",
]
