"""
Per-action outcomes and the run report.

**Design Pattern**: State Machine results as values
Every action ends a run with one ActionOutcome; errors are data on the
outcome, not exceptions escaping the executor. The RunReport is what a caller
logs and maps to an exit code.

Example:
    ```python
    report = await Executor().run(graph, ctx)

    for outcome in report:
        print(outcome.action_id, outcome.result, outcome.attempts)

    if not report.ok:
        print(report.format())
    sys.exit(report.exit_code)
    ```
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from pyconverge.models import ExecutionResult

__all__ = ["ActionOutcome", "RunReport"]


@dataclass(frozen=True)
class ActionOutcome:
    """
    Terminal record of one action in one run.

    Attributes:
        action_id: The action
        result: Skipped / Succeeded / Failed / NotRun
        attempts: Body attempts made (0 when the body never ran)
        duration: Wall-clock seconds from start to terminal result
        error: Last error for Failed outcomes, else None
        reason: Short human explanation ("guard satisfied", "cancelled", ...)
        refreshed: True if this was a refresh-only action fired by a notification
    """

    action_id: str
    result: ExecutionResult
    attempts: int = 0
    duration: float = 0.0
    error: BaseException | None = None
    reason: str = ""
    refreshed: bool = False

    @property
    def ok(self) -> bool:
        return self.result.is_ok

    @property
    def changed(self) -> bool:
        return self.result.changed

    def describe(self) -> str:
        """One-line summary, with last error detail for failures."""
        line = f"{self.action_id}: {self.result}"
        details = []
        if self.attempts:
            details.append(f"attempts={self.attempts}")
        details.append(f"{self.duration:.2f}s")
        if self.refreshed:
            details.append("refresh")
        line += f" ({', '.join(details)})"
        if self.reason:
            line += f" - {self.reason}"
        if self.error is not None:
            line += f"\n    last error: {type(self.error).__name__}: {self.error}"
        return line


@dataclass
class RunReport:
    """
    Ordered outcomes of one run.

    Outcomes are listed in the order the actions reached a terminal result,
    so a required action always appears before its dependents.

    Attributes:
        run_id: Run identifier from the RunContext
        fingerprint: Graph fingerprint (see DependencyGraph.fingerprint)
        outcomes: ActionOutcome per action
        cancelled: True if the run was stopped by its cancellation token
        duration: Wall-clock seconds for the whole run
    """

    run_id: str
    fingerprint: str
    outcomes: list[ActionOutcome] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    def __iter__(self) -> Iterator[ActionOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, action_id: str) -> ActionOutcome:
        for outcome in self.outcomes:
            if outcome.action_id == action_id:
                return outcome
        raise KeyError(action_id)

    def __contains__(self, action_id: object) -> bool:
        return any(o.action_id == action_id for o in self.outcomes)

    @property
    def order(self) -> list[str]:
        """Action ids in the order they reached a terminal result."""
        return [o.action_id for o in self.outcomes]

    def _ids_with(self, result: ExecutionResult) -> list[str]:
        return [o.action_id for o in self.outcomes if o.result == result]

    @property
    def changed(self) -> list[str]:
        """Ids whose body ran and succeeded."""
        return self._ids_with(ExecutionResult.SUCCEEDED)

    @property
    def skipped(self) -> list[str]:
        return self._ids_with(ExecutionResult.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self._ids_with(ExecutionResult.FAILED)

    @property
    def not_run(self) -> list[str]:
        return self._ids_with(ExecutionResult.NOT_RUN)

    @property
    def ok(self) -> bool:
        """True if every action ended Succeeded or Skipped."""
        return all(o.ok for o in self.outcomes)

    @property
    def converged(self) -> bool:
        """True if nothing changed and nothing failed: the host was already in shape."""
        return self.ok and not self.changed

    @property
    def exit_code(self) -> int:
        """Process exit status for a CLI wrapper: 0 if ok, else 1."""
        return 0 if self.ok else 1

    def counts(self) -> dict[ExecutionResult, int]:
        """Number of outcomes per result, every result present."""
        counts = dict.fromkeys(ExecutionResult, 0)
        for outcome in self.outcomes:
            counts[outcome.result] += 1
        return counts

    def format(self) -> str:
        """Multi-line human summary of the run."""
        counts = self.counts()
        header = (
            f"Run {self.run_id} ({self.duration:.2f}s): "
            + ", ".join(f"{counts[r]} {r.value.lower()}" for r in ExecutionResult)
        )
        if self.cancelled:
            header += " [cancelled]"
        lines = [header]
        lines.extend(f"  {o.describe()}" for o in self.outcomes)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()
