"""
Error taxonomy for pyconverge.

Two families:
- Construction-time errors (GraphError and its subclasses, InvalidOptionsError)
  are raised to the caller before anything executes.
- Runtime errors (GuardEvalError, ActionExecutionError, AttemptTimeoutError)
  are raised inside the executor, captured on the owning action's outcome and
  never escape Executor.run().
"""

from __future__ import annotations


class ConvergeError(Exception):
    """Base class for all pyconverge errors."""


class InvalidOptionsError(ConvergeError, ValueError):
    """An action or retry option is unknown or out of range."""


# =============================================================================
# Construction-time (graph) errors
# =============================================================================


class GraphError(ConvergeError):
    """The dependency graph is malformed; the run is aborted before execution."""


class DuplicateActionError(GraphError):
    """An action id was added to the graph twice."""

    def __init__(self, action_id: str):
        super().__init__(f"Action '{action_id}' is already defined in this graph")
        self.action_id = action_id


class UnknownActionError(GraphError):
    """
    An edge references an action id that is not in the graph.

    Attributes:
        missing_id: The id that could not be resolved
        edge: (from_id, to_id) of the offending edge
        relation: "requires" or "notifies"
    """

    def __init__(self, missing_id: str, edge: tuple[str, str], relation: str):
        from_id, to_id = edge
        super().__init__(
            f"'{relation}' edge '{from_id}' -> '{to_id}' references unknown action '{missing_id}'"
        )
        self.missing_id = missing_id
        self.edge = edge
        self.relation = relation


class GraphCycleError(GraphError):
    """
    The requires/notify edges form a cycle.

    Attributes:
        cycle: Action ids along the cycle, first id repeated at the end
            (e.g. ["a", "b", "a"])
    """

    def __init__(self, cycle: list[str]):
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class InvalidEdgeError(GraphError):
    """An edge connects actions whose kinds cannot be ordered that way."""

    def __init__(self, action_id: str, target_id: str, message: str):
        super().__init__(message)
        self.action_id = action_id
        self.target_id = target_id


# =============================================================================
# Runtime (per-action) errors
# =============================================================================


class GuardEvalError(ConvergeError):
    """
    The guard probe itself failed (raised, timed out, or returned garbage).

    Distinct from "unsatisfied": the owning action is recorded as Failed
    and its body is not run.
    """

    def __init__(self, action_id: str, message: str):
        super().__init__(f"Guard of '{action_id}' failed: {message}")
        self.action_id = action_id


class ActionExecutionError(ConvergeError):
    """
    The action body reported failure (e.g. a non-zero exit status).

    Attributes:
        action_id: Failing action
        exit_code: Exit status if the body reported one
        retryable: False stops the retry loop after this attempt
    """

    def __init__(
        self,
        action_id: str,
        message: str,
        exit_code: int | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.action_id = action_id
        self.exit_code = exit_code
        self.retryable = retryable

    def is_retryable(self) -> bool:
        return self.retryable


class AttemptTimeoutError(ConvergeError, TimeoutError):
    """One attempt of an action body exceeded the action timeout (retryable)."""

    def __init__(self, action_id: str, timeout: float, attempt: int):
        super().__init__(
            f"Attempt {attempt} of '{action_id}' exceeded timeout of {timeout:g}s"
        )
        self.action_id = action_id
        self.timeout = timeout
        self.attempt = attempt


__all__ = [
    "ConvergeError",
    "InvalidOptionsError",
    "GraphError",
    "DuplicateActionError",
    "UnknownActionError",
    "GraphCycleError",
    "InvalidEdgeError",
    "GuardEvalError",
    "ActionExecutionError",
    "AttemptTimeoutError",
]
