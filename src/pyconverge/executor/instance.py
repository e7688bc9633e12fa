"""
Executor - runs a validated DependencyGraph to convergence.

A run has two passes over the topological order:

1. Main pass: every regular action, each started once all of its
   predecessors reached a terminal result. Successful actions add their
   notify targets to the pending-refresh set.
2. Refresh pass: every refresh-only action. Notified ones run with their
   guard bypassed, exactly once; the rest are recorded Skipped.

Actions with no dependency relation may run concurrently up to
`max_concurrency`. With the default of 1 the execution order is exactly
the topological order.

Design: Information Hiding (Parnas)
This module only decides *when* an action starts. What happens once it
starts (guard, retry, timeout) lives in execution.py; notification
bookkeeping lives in refresh.py.

Example:
    ```python
    executor = Executor(max_concurrency=4)
    report = await executor.run(graph, RunContext({"php_dir": "C:/php"}))
    print(report.format())
    ```
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from pyconverge.core import RunContext
from pyconverge.errors import InvalidOptionsError
from pyconverge.executor.dag import DependencyGraph
from pyconverge.executor.execution import execute_action
from pyconverge.executor.outcome import ActionOutcome, RunReport
from pyconverge.executor.refresh import PendingRefresh
from pyconverge.models import ExecutionResult

logger = logging.getLogger(__name__)

__all__ = ["Executor", "converge", "converge_sync"]


class Executor:
    """
    Schedules the actions of a graph and collects their outcomes.

    The executor holds no per-run state; one instance can run many graphs,
    sequentially or concurrently.

    Args:
        max_concurrency: Upper bound on actions executing at the same time
    """

    def __init__(self, max_concurrency: int = 1):
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
            raise InvalidOptionsError(
                f"max_concurrency must be an int, got {type(max_concurrency).__name__}"
            )
        if max_concurrency < 1:
            raise InvalidOptionsError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency

    async def run(self, graph: DependencyGraph, ctx: RunContext | None = None) -> RunReport:
        """
        Validate the graph and run it.

        Args:
            graph: Actions and edges to converge
            ctx: Run context; a fresh empty one if omitted

        Returns:
            RunReport with one outcome per action

        Raises:
            GraphError: If the graph is invalid (nothing runs)
            asyncio.CancelledError: If the awaiting task itself is cancelled
        """
        if ctx is None:
            ctx = RunContext()

        graph.validate()
        order = graph.topological_order()
        run = _Run(graph, ctx, self.max_concurrency)

        logger.info(
            f"Run {ctx.run_id} starting: {len(order)} actions "
            f"(graph {graph.fingerprint()}, max_concurrency={self.max_concurrency})"
        )
        started = time.monotonic()

        await run.phase([a for a in order if not graph[a].refresh_only], refresh_phase=False)
        await run.phase([a for a in order if graph[a].refresh_only], refresh_phase=True)

        report = RunReport(
            run_id=ctx.run_id,
            fingerprint=graph.fingerprint(),
            outcomes=run.outcomes,
            cancelled=ctx.cancelled,
            duration=time.monotonic() - started,
        )
        counts = report.counts()
        logger.info(
            f"Run {ctx.run_id} finished in {report.duration:.2f}s: "
            + ", ".join(f"{counts[r]} {r.value.lower()}" for r in ExecutionResult)
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def __repr__(self) -> str:
        return f"Executor(max_concurrency={self.max_concurrency})"


class _Run:
    """Mutable state of one run: outcomes so far and the pending-refresh set."""

    def __init__(self, graph: DependencyGraph, ctx: RunContext, max_concurrency: int):
        self.graph = graph
        self.ctx = ctx
        self.max_concurrency = max_concurrency
        self.pending = PendingRefresh()
        # Edges are fixed once validated; look them up once per run
        self.predecessors = graph.predecessor_map()
        self.requires = {a: graph.requires_of(a) for a in graph.ids}
        self.notifies = {a: graph.notifies_of(a) for a in graph.ids}
        self.results: dict[str, ActionOutcome] = {}
        self.outcomes: list[ActionOutcome] = []

    def _record(self, outcome: ActionOutcome) -> None:
        self.results[outcome.action_id] = outcome
        self.outcomes.append(outcome)

    def _ready(self, action_id: str) -> bool:
        return all(p in self.results for p in self.predecessors[action_id])

    async def phase(self, ids: list[str], refresh_phase: bool) -> None:
        remaining = list(ids)
        running: dict[asyncio.Task[ActionOutcome], str] = {}

        try:
            while remaining or running:
                if self.ctx.cancelled and remaining:
                    for action_id in remaining:
                        self._record(
                            ActionOutcome(
                                action_id=action_id,
                                result=ExecutionResult.NOT_RUN,
                                reason="cancelled",
                            )
                        )
                    logger.warning(
                        f"Run {self.ctx.run_id} cancelled ({self.ctx.cancellation.reason}); "
                        f"{len(remaining)} action(s) not started"
                    )
                    remaining = []

                for action_id in list(remaining):
                    if len(running) >= self.max_concurrency:
                        break
                    if not self._ready(action_id):
                        continue
                    remaining.remove(action_id)
                    task = asyncio.create_task(self._run_one(action_id, refresh_phase))
                    running[task] = action_id

                if not running:
                    if remaining:
                        # Predecessors outside this phase are recorded before it starts
                        raise RuntimeError(f"No runnable action among {remaining}")
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    running.pop(task)
                    self._record(task.result())
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    async def _run_one(self, action_id: str, refresh_phase: bool) -> ActionOutcome:
        action = self.graph[action_id]

        blockers = [
            r for r in self.requires[action_id] if self.results[r].result.blocks_dependents
        ]
        if blockers:
            reason = "required action(s) did not succeed: " + ", ".join(blockers)
            logger.info(f"{action_id}: not run ({reason})")
            return ActionOutcome(
                action_id=action_id, result=ExecutionResult.NOT_RUN, reason=reason
            )

        if refresh_phase:
            notifiers = await self.pending.claim(action_id)
            if notifiers is None:
                logger.debug(f"{action_id}: skipped (not notified)")
                return ActionOutcome(
                    action_id=action_id, result=ExecutionResult.SKIPPED, reason="not notified"
                )
            logger.info(f"{action_id}: refreshing (notified by {', '.join(notifiers)})")
            outcome = await execute_action(action, self.ctx, refresh=True)
        else:
            outcome = await execute_action(action, self.ctx)

        targets = self.notifies[action_id]
        if outcome.result is ExecutionResult.SUCCEEDED and targets:
            await self.pending.notify(action_id, targets)
        return outcome


async def converge(
    graph: DependencyGraph,
    ctx: RunContext | Mapping[str, Any] | None = None,
    *,
    max_concurrency: int = 1,
) -> RunReport:
    """
    Run `graph` once with a throwaway Executor.

    A plain mapping is wrapped in a RunContext.

    Example:
        ```python
        report = await converge(graph, {"php_dir": "C:/php"})
        ```
    """
    if ctx is not None and not isinstance(ctx, RunContext):
        ctx = RunContext(ctx)
    return await Executor(max_concurrency=max_concurrency).run(graph, ctx)


def converge_sync(
    graph: DependencyGraph,
    ctx: RunContext | Mapping[str, Any] | None = None,
    *,
    max_concurrency: int = 1,
) -> RunReport:
    """Blocking wrapper around converge() for scripts without an event loop."""
    return asyncio.run(converge(graph, ctx, max_concurrency=max_concurrency))
