"""
Graph construction and execution.

- DependencyGraph: actions plus `requires` / `notify` edges
- Executor: validates and runs a graph, returning a RunReport
- execute_action: guard, retry and timeout for one action
"""

from pyconverge.executor.dag import DagSummary, DependencyGraph
from pyconverge.executor.execution import check_should_retry, execute_action
from pyconverge.executor.instance import Executor, converge, converge_sync
from pyconverge.executor.outcome import ActionOutcome, RunReport
from pyconverge.executor.refresh import PendingRefresh

__all__ = [
    "DependencyGraph",
    "DagSummary",
    "Executor",
    "converge",
    "converge_sync",
    "execute_action",
    "check_should_retry",
    "ActionOutcome",
    "RunReport",
    "PendingRefresh",
]
