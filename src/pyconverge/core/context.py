"""Run-scoped execution context.

Provides RunContext, the explicit configuration object handed to every guard
and body, plus the cancellation token that stops a run between attempts.

Design: No Hidden Global State
    Settings such as the download cache directory or the install path are
    passed in through RunContext.config instead of a process-wide lookup,
    so isolated runs (and tests) never interfere with each other.

Design: Task-Local Current Action (contextvars)
    The executor sets CURRENT_ACTION around each guard/body call so that
    helpers (probes, command bodies, log formatting) can find out which
    action they serve without threading the id through every call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any

from uuid_extensions import uuid7

# =============================================================================
# Task-Local Context Variables
# =============================================================================

CURRENT_ACTION: ContextVar[str | None] = ContextVar("current_action", default=None)
"""Task-local id of the action whose guard or body is executing.

Usage:
    ```python
    token = CURRENT_ACTION.set(action.id)
    try:
        await invoke(action.body, ctx)
    finally:
        CURRENT_ACTION.reset(token)
    ```
"""


def get_current_action_id() -> str | None:
    """Return the id of the action being executed in this task, if any."""
    return CURRENT_ACTION.get()


# =============================================================================
# Cancellation
# =============================================================================


class CancellationToken:
    """
    External stop signal for a run.

    Setting the token stops the executor from starting new actions; the
    attempt currently executing is allowed to finish (or hit its timeout)
    and is not retried.

    Usage:
        ```python
        token = CancellationToken()
        ctx = RunContext(config, cancellation=token)
        task = asyncio.create_task(executor.run(graph, ctx))
        ...
        token.cancel("operator abort")
        report = await task
        assert report.cancelled
        ```
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Calling it again keeps the first reason."""
        if self.reason is None:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Wait until cancellation is requested or `timeout` seconds elapse.

        Returns:
            True if cancelled, False if the timeout elapsed first
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def __repr__(self) -> str:
        state = f"cancelled({self.reason!r})" if self.cancelled else "active"
        return f"CancellationToken({state})"


# =============================================================================
# RunContext - Run Configuration
# =============================================================================


class RunContext(Mapping[str, Any]):
    """
    Opaque key/value configuration for one run.

    The engine never interprets the configuration; guards and bodies read it.
    The mapping is copied and frozen on construction.

    Usage:
        ```python
        ctx = RunContext({"cache_dir": "C:/cache", "php_dir": "C:/php"})
        ctx["cache_dir"]
        ctx.get("proxy", None)
        ```

    Attributes:
        run_id: Time-ordered UUIDv7 string identifying this run
        cancellation: Token checked between actions and attempts
    """

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        run_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ):
        self._config: Mapping[str, Any] = MappingProxyType(dict(config or {}))
        self.run_id = run_id or str(uuid7())
        self.cancellation = cancellation or CancellationToken()

    @property
    def config(self) -> Mapping[str, Any]:
        """Read-only view of the configuration."""
        return self._config

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled

    def __getitem__(self, key: str) -> Any:
        return self._config[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._config)

    def __len__(self) -> int:
        return len(self._config)

    def with_config(self, **overrides: Any) -> RunContext:
        """Copy of this context with extra keys; shares run id and cancellation."""
        merged = dict(self._config)
        merged.update(overrides)
        return RunContext(merged, run_id=self.run_id, cancellation=self.cancellation)

    def __repr__(self) -> str:
        return f"RunContext(run_id={self.run_id!r}, keys={sorted(self._config)})"
