"""
Status enums for convergence runs.

Following Dave Cheney's principle: "Make zero values useful"
Every action ends a run in exactly one ExecutionResult; the state machine is
the same for regular and refresh-only actions.
"""

from enum import Enum


class ExecutionResult(Enum):
    """
    Terminal result of one action in one run.

    Lifecycle (per run):
    pending → SKIPPED | SUCCEEDED | FAILED | NOT_RUN
    """

    SKIPPED = "SKIPPED"
    """Guard was satisfied (or a refresh-only action was not notified).

    The body did not run and no notifications fire.
    """

    SUCCEEDED = "SUCCEEDED"
    """Body ran and an attempt succeeded within the retry budget."""

    FAILED = "FAILED"
    """Body exhausted its attempts, or the guard probe itself failed."""

    NOT_RUN = "NOT_RUN"
    """A required predecessor failed or was not run, or the run was cancelled."""

    @property
    def is_ok(self) -> bool:
        """Check if this result leaves the host converged for this action."""
        return self in (ExecutionResult.SKIPPED, ExecutionResult.SUCCEEDED)

    @property
    def blocks_dependents(self) -> bool:
        """Check if dependents of an action with this result must not run."""
        return self in (ExecutionResult.FAILED, ExecutionResult.NOT_RUN)

    @property
    def changed(self) -> bool:
        """Check if the body actually executed a change."""
        return self == ExecutionResult.SUCCEEDED

    def __str__(self) -> str:
        return self.value


class GuardStatus(Enum):
    """
    Outcome of a guard probe that completed.

    A probe that fails to complete is not a status: it raises GuardEvalError.
    """

    SATISFIED = "SATISFIED"
    """The action's effect is already in place; skip the body."""

    UNSATISFIED = "UNSATISFIED"
    """The effect is missing; run the body."""

    @classmethod
    def from_bool(cls, value: bool) -> "GuardStatus":
        return cls.SATISFIED if value else cls.UNSATISFIED

    def __str__(self) -> str:
        return self.value
