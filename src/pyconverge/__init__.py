"""
pyconverge: Idempotent task orchestration for single-host provisioning

Runs a graph of guarded, retryable, timeout-bounded actions in dependency
order. Running the same graph twice against an unchanged host changes
nothing the second time.

Design Pattern: Façade Pattern
This module re-exports the pieces a recipe needs, hiding the split between
models, runtime and executor.

From Dave Cheney: "A good package starts with its name"
Package "pyconverge" describes what a run does to the host.

Example:
    ```python
    import logging
    from pyconverge import Action, DependencyGraph, RetryPolicy, converge_sync
    from pyconverge.probes import directory_on_path, path_exists

    logging.basicConfig(level=logging.INFO)

    graph = DependencyGraph()
    graph.add_action(Action("download", download, guard=path_exists(ctx_key="zip_path"),
                            retry_policy=RetryPolicy.STANDARD, timeout=300))
    graph.add_action(Action("unzip", unzip, guard=path_exists(ctx_key="php_dir"),
                            requires=["download"]))
    graph.add_action(Action("set_path", set_path, guard=directory_on_path("C:/php"),
                            requires=["unzip"], notifies=["refresh_env"]))
    graph.add_action(Action("refresh_env", refresh_env, refresh_only=True))

    report = converge_sync(graph, {"zip_path": "C:/cache/php.zip", "php_dir": "C:/php"})
    raise SystemExit(report.exit_code)
    ```
"""

# Models - dependency-free value types
from pyconverge.models import (
    Action,
    ExecutionResult,
    GuardStatus,
    RetryableError,
    RetryPolicy,
)

# Runtime - what guards and bodies see
from pyconverge.core import (
    CancellationToken,
    RunContext,
    get_current_action_id,
)

# Errors
from pyconverge.errors import (
    ActionExecutionError,
    AttemptTimeoutError,
    ConvergeError,
    DuplicateActionError,
    GraphCycleError,
    GraphError,
    GuardEvalError,
    InvalidEdgeError,
    InvalidOptionsError,
    UnknownActionError,
)

# Execution
# Following Dave Cheney: "The name of an identifier includes its package name"
# pyconverge.Executor, pyconverge.converge (no Graph prefix needed)
from pyconverge.executor import (
    ActionOutcome,
    DependencyGraph,
    Executor,
    RunReport,
    converge,
    converge_sync,
)

__version__ = "0.1.0"

__all__ = [
    # Models
    "Action",
    "ExecutionResult",
    "GuardStatus",
    "RetryPolicy",
    "RetryableError",
    # Runtime
    "RunContext",
    "CancellationToken",
    "get_current_action_id",
    # Errors
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
    # Execution
    "DependencyGraph",
    "Executor",
    "converge",
    "converge_sync",
    "ActionOutcome",
    "RunReport",
]
